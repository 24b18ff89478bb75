import httpx

from personaforge.channels.bridge import BridgeTransport, parse_inbound
from personaforge.config.schema import NotifyConfig, TransportConfig
from personaforge.notify.owner import OwnerNotifier


def test_parse_inbound_maps_bridge_payload() -> None:
    event = parse_inbound(
        "acc",
        {
            "chatId": "g-1",
            "senderId": "u-7",
            "messageId": "m-3",
            "text": "  @alex_bot hi  ",
            "timestamp": 1_760_000_000_123,
            "isGroup": True,
            "senderName": "Bob",
            "mentionedSelf": True,
        },
    )
    assert event is not None
    assert event.text == "@alex_bot hi"
    assert event.timestamp == 1_760_000_000.123
    assert not event.is_private
    assert event.mentions_self
    assert event.kind == "text"


def test_parse_inbound_media_and_malformed() -> None:
    voice = parse_inbound(
        "acc",
        {"chatId": "c", "senderId": "u", "media": {"kind": "voice", "path": "/tmp/a.ogg"}, "timestamp": 5},
    )
    assert voice is not None
    assert voice.kind == "voice"
    assert voice.media_path == "/tmp/a.ogg"
    assert voice.is_private
    assert voice.message_id is None

    assert parse_inbound("acc", {"chatId": "c", "senderId": "u", "text": ""}) is None
    assert parse_inbound("acc", {"senderId": "u", "text": "hi"}) is None


def test_bridge_url_is_per_account() -> None:
    transport = BridgeTransport(TransportConfig(bridge_url="ws://bridge:3001/{account}"), "work-phone")
    assert transport.url == "ws://bridge:3001/work-phone"


async def test_notifier_posts_to_every_owner_once_per_key() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    now = [1000.0]
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = OwnerNotifier(
        NotifyConfig(bot_token="123:abc", owner_chat_ids=["1", "2"], alert_cooldown_seconds=60),
        clock=lambda: now[0],
        client=client,
    )

    await notifier.notify("worker down", key="worker_fault:acc")
    await notifier.notify("worker down", key="worker_fault:acc")
    assert len(requests) == 2
    assert requests[0].url.path == "/bot123:abc/sendMessage"

    now[0] += 61
    await notifier.notify("worker down", key="worker_fault:acc")
    assert len(requests) == 4
    await client.aclose()


async def test_notifier_without_credentials_only_logs() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = OwnerNotifier(NotifyConfig(), client=client)
    assert not notifier.configured
    await notifier.notify("hello")
    await client.aclose()


async def test_notifier_swallows_http_errors() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(502)))
    notifier = OwnerNotifier(NotifyConfig(bot_token="t", owner_chat_ids=["1"]), client=client)
    await notifier.notify("still fine")
    await client.aclose()
