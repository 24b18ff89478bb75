"""Account, chat policy and security CLI commands."""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from .core import app, console, make_runtime, require_account

account_app = typer.Typer(help="Manage accounts")
app.add_typer(account_app, name="account")

security_app = typer.Typer(help="Manage sender strikes and blocks")
app.add_typer(security_app, name="security")


@account_app.command("add")
def account_add(
    account_id: str = typer.Argument(..., help="Account ID (bridge session name)"),
    username: str = typer.Option("", "--username", "-u", help="Account @username for mention detection"),
    persona: str = typer.Option("default", "--persona", "-p", help="Persona name from config"),
    min_delay: float | None = typer.Option(None, "--min-delay", help="Minimum read delay (seconds)"),
    max_delay: float | None = typer.Option(None, "--max-delay", help="Maximum read delay (seconds)"),
    cpm: int | None = typer.Option(None, "--cpm", help="Typing speed (chars per minute)"),
    reply_probability: float | None = typer.Option(None, "--reply-probability", help="Chance to send as a reply"),
    inactive: bool = typer.Option(False, "--inactive", help="Do not start with `run`"),
) -> None:
    """Create or update an account."""
    from personaforge.config.loader import load_config
    from personaforge.core.models import Account, HumanizationSettings

    config = load_config()
    if persona not in config.personas:
        console.print(f"[red]Unknown persona: {persona}[/red] (known: {', '.join(config.personas)})")
        raise typer.Exit(1)

    defaults = config.humanization
    settings = HumanizationSettings(
        min_read_delay_seconds=defaults.min_read_delay_seconds if min_delay is None else min_delay,
        max_read_delay_seconds=defaults.max_read_delay_seconds if max_delay is None else max_delay,
        typing_speed_cpm=defaults.typing_speed_cpm if cpm is None else cpm,
        reply_probability=defaults.reply_probability if reply_probability is None else reply_probability,
        respond_probability=defaults.respond_probability,
        always_respond_in_private=defaults.always_respond_in_private,
        ignore_older_than_seconds=defaults.ignore_older_than_seconds,
    )
    if settings.max_read_delay_seconds < settings.min_read_delay_seconds:
        console.print("[red]--max-delay must be >= --min-delay[/red]")
        raise typer.Exit(1)

    runtime = make_runtime(config)
    try:
        runtime.registry.upsert_account(
            Account(
                account_id=account_id,
                username=username.lstrip("@"),
                persona=persona,
                humanization=settings,
                active=not inactive,
            )
        )
    finally:
        runtime.close()
    console.print(f"[green]✓[/green] Saved account {account_id} (persona {persona})")


@account_app.command("list")
def account_list() -> None:
    """List accounts."""
    from personaforge.config.loader import load_config

    runtime = make_runtime(load_config())
    try:
        accounts = runtime.registry.list_accounts()
    finally:
        runtime.close()

    if not accounts:
        console.print("No accounts.")
        return

    table = Table(title="Accounts")
    table.add_column("Account", style="cyan")
    table.add_column("Username")
    table.add_column("Persona")
    table.add_column("Delay")
    table.add_column("CPM")
    table.add_column("State")
    for account in accounts:
        h = account.humanization
        table.add_row(
            account.account_id,
            f"@{account.username}" if account.username else "-",
            account.persona,
            f"{h.min_read_delay_seconds:.0f}-{h.max_read_delay_seconds:.0f}s",
            str(h.typing_speed_cpm),
            account.state,
        )
    console.print(table)


@account_app.command("remove")
def account_remove(
    account_id: str = typer.Argument(..., help="Account ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete an account with its memory, strikes and history."""
    from personaforge.config.loader import load_config

    runtime = make_runtime(load_config())
    try:
        require_account(runtime, account_id)
        if not yes and not typer.confirm(f"Delete {account_id} and all its stored data?"):
            raise typer.Exit()
        asyncio.run(runtime.supervisor.delete_account(account_id))
    finally:
        runtime.close()
    console.print(f"[green]✓[/green] Removed account {account_id}")


@account_app.command("chat")
def account_chat(
    account_id: str = typer.Argument(..., help="Account ID"),
    chat_id: str = typer.Argument(..., help="Chat ID"),
    enabled: bool | None = typer.Option(None, "--enabled/--disabled", help="Respond in this chat"),
    all_messages: bool | None = typer.Option(
        None, "--all-messages/--mention-only", help="Reply mode for group chats"
    ),
    trigger: list[str] | None = typer.Option(None, "--trigger", "-t", help="Trigger word (repeatable)"),
    cooldown: float | None = typer.Option(None, "--cooldown", help="Seconds between accepted turns"),
    memory: bool | None = typer.Option(None, "--memory/--no-memory", help="Semantic memory for this chat"),
    depth: int | None = typer.Option(None, "--depth", help="Context depth (turns)"),
) -> None:
    """Show or update the policy of one chat."""
    from dataclasses import replace

    from personaforge.config.loader import load_config

    config = load_config()
    runtime = make_runtime(config)
    try:
        require_account(runtime, account_id)
        policy = runtime.policy_for(account_id, chat_id)
        changes: dict[str, object] = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if all_messages is not None:
            changes["reply_mode"] = "all_messages" if all_messages else "mention_only"
        if trigger:
            changes["triggers"] = tuple(t.strip() for t in trigger if t.strip())
        if cooldown is not None:
            changes["cooldown_seconds"] = max(0.0, cooldown)
        if memory is not None:
            changes["memory_enabled"] = memory
        if depth is not None:
            changes["context_depth"] = max(0, depth)
        if changes:
            policy = replace(policy, **changes)
            runtime.registry.upsert_chat_policy(policy)
            console.print(f"[green]✓[/green] Updated policy for {account_id}/{chat_id}")
    finally:
        runtime.close()

    console.print(
        f"enabled={policy.enabled} mode={policy.reply_mode} triggers={list(policy.triggers)} "
        f"cooldown={policy.cooldown_seconds:g}s memory={policy.memory_enabled} depth={policy.context_depth}"
    )


@security_app.command("unblock")
def security_unblock(
    account_id: str = typer.Argument(..., help="Account ID"),
    sender_id: str = typer.Argument(..., help="Sender ID"),
    reset: bool = typer.Option(False, "--reset", help="Also clear the strike count"),
) -> None:
    """Lift a sender block, optionally resetting strikes."""
    from personaforge.config.loader import load_config

    runtime = make_runtime(load_config())
    try:
        changed = runtime.screen.reset(account_id, sender_id) if reset else runtime.screen.unblock(account_id, sender_id)
    finally:
        runtime.close()
    if not changed:
        console.print(f"[yellow]No security state for {account_id}/{sender_id}[/yellow]")
        return
    console.print(f"[green]✓[/green] {'Reset' if reset else 'Unblocked'} {account_id}/{sender_id}")
