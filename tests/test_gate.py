import random

from personaforge.config.schema import GateConfig, PersonaConfig
from personaforge.core.models import HumanizationSettings
from personaforge.gate.admission import AdmissionGate, SlidingWindowLimiter

from tests.fakes import NOW, VirtualClock, make_account, make_event, make_policy


def _gate(clock: VirtualClock, **persona) -> AdmissionGate:
    return AdmissionGate(
        config=GateConfig(),
        clock=clock,
        persona=PersonaConfig(name="default", **persona) if persona else None,
        rng=random.Random(1),
    )


def test_stale_event_is_rejected(clock: VirtualClock) -> None:
    gate = _gate(clock)
    result = gate.admit(make_event(timestamp=NOW - 301), make_account(), make_policy())
    assert not result.accepted
    assert result.reason == "stale"


def test_private_chat_accepts_without_trigger(clock: VirtualClock) -> None:
    result = _gate(clock).admit(make_event(text="yo"), make_account(), make_policy())
    assert result.accepted
    assert result.trigger == "private"


def test_disabled_chat_rejects_even_private(clock: VirtualClock) -> None:
    result = _gate(clock).admit(make_event(), make_account(), make_policy(enabled=False))
    assert not result.accepted
    assert result.reason == "not_eligible"


def test_private_without_always_flag_uses_respond_probability(clock: VirtualClock) -> None:
    account = make_account(
        humanization=HumanizationSettings(always_respond_in_private=False, respond_probability=0.0)
    )
    result = _gate(clock).admit(make_event(), account, make_policy())
    assert result.reason == "not_eligible"


def test_group_requires_mention_trigger_or_reply(clock: VirtualClock) -> None:
    gate = _gate(clock, display_name="Alex", triggers=["pizza"])
    account = make_account()
    policy = make_policy()

    def admit(**kw):
        return gate.admit(make_event(is_private=False, sender_id=kw.pop("sender", "u"), **kw), account, policy)

    assert admit(text="just chatting").reason == "not_eligible"
    assert admit(text="hey @alex_bot what's up", sender="a").trigger == "mention"
    assert admit(text="Alex, are you there?", sender="b").trigger == "mention"
    assert admit(text="Alexander is here", sender="c").reason == "not_eligible"
    assert admit(text="who wants pizza", sender="d").trigger == "trigger:pizza"
    assert admit(text="ok", reply_to_self=True, sender="e").trigger == "reply_to_self"
    assert admit(text="hm", mentions_self=True, sender="f").trigger == "mention"


def test_group_voice_note_qualifies_only_by_transport_signals(clock: VirtualClock) -> None:
    gate = _gate(clock, display_name="Alex", triggers=["pizza"])

    def voice(text: str = "", **kw):
        event = make_event(is_private=False, text=text, kind="voice", media_path="/tmp/v.ogg", **kw)
        return gate.admit(event, make_account(), make_policy())

    assert voice(sender_id="a").reason == "not_eligible"
    assert voice(sender_id="b", reply_to_self=True).trigger == "reply_to_self"
    assert voice(sender_id="c", mentions_self=True).trigger == "mention"
    assert voice(sender_id="d", text="Alex listen to this").trigger == "mention"


def test_chat_triggers_come_from_policy(clock: VirtualClock) -> None:
    result = _gate(clock).admit(
        make_event(is_private=False, text="Anyone up for Football tonight?"),
        make_account(),
        make_policy(triggers=("football",)),
    )
    assert result.accepted
    assert result.trigger == "trigger:football"


def test_all_messages_mode_uses_respond_probability(clock: VirtualClock) -> None:
    gate = _gate(clock)
    policy = make_policy(reply_mode="all_messages")
    always = make_account(humanization=HumanizationSettings(respond_probability=1.0))
    never = make_account(humanization=HumanizationSettings(respond_probability=0.0))
    assert gate.admit(make_event(is_private=False, sender_id="a"), always, policy).accepted
    assert not gate.admit(make_event(is_private=False, sender_id="b"), never, policy).accepted


def test_flood_control_rejects_sixth_message_in_window(clock: VirtualClock) -> None:
    gate = _gate(clock)
    account, policy = make_account(), make_policy()
    results = []
    for _ in range(7):
        results.append(gate.admit(make_event(timestamp=clock.now()), account, policy))
        clock.advance(1)
    assert [r.accepted for r in results] == [True] * 5 + [False] * 2
    assert results[5].reason == "rate_limited"
    assert results[5].detail == "flood"

    clock.advance(60)
    assert gate.admit(make_event(timestamp=clock.now()), account, policy).accepted


def test_flood_window_never_exceeds_five_accepted() -> None:
    clock = VirtualClock()
    gate = _gate(clock)
    account, policy = make_account(), make_policy()
    rng = random.Random(42)
    accepted: list[float] = []
    for _ in range(400):
        clock.advance(rng.uniform(0, 8))
        if gate.admit(make_event(timestamp=clock.now()), account, policy).accepted:
            accepted.append(clock.now())
    for ts in accepted:
        in_window = [t for t in accepted if ts - 60 < t <= ts]
        assert len(in_window) <= 5


def test_flood_state_is_per_sender(clock: VirtualClock) -> None:
    gate = _gate(clock)
    account, policy = make_account(), make_policy()
    for _ in range(5):
        assert gate.admit(make_event(sender_id="a"), account, policy).accepted
    assert not gate.admit(make_event(sender_id="a"), account, policy).accepted
    assert gate.admit(make_event(sender_id="b"), account, policy).accepted


def test_group_cooldown_rate_limits_chat(clock: VirtualClock) -> None:
    gate = _gate(clock)
    account = make_account()
    policy = make_policy(reply_mode="all_messages", cooldown_seconds=5.0)
    assert gate.admit(make_event(is_private=False, sender_id="a"), account, policy).accepted
    second = gate.admit(make_event(is_private=False, sender_id="b"), account, policy)
    assert second.reason == "rate_limited"
    assert second.detail == "chat_cooldown"
    clock.advance(5)
    assert gate.admit(make_event(is_private=False, sender_id="b", timestamp=clock.now()), account, policy).accepted


def test_sliding_window_prunes_old_entries() -> None:
    limiter = SlidingWindowLimiter(max_events=2, window_seconds=10)
    assert limiter.try_acquire("k", 0.0)
    assert limiter.try_acquire("k", 1.0)
    assert not limiter.try_acquire("k", 2.0)
    assert limiter.count("k", 10.5) == 1
    assert limiter.try_acquire("k", 10.5)
