"""CLI commands for personaforge."""

import asyncio
import signal
import time
from datetime import datetime

import typer
from rich.table import Table

from personaforge import __logo__
from personaforge.cli.core import app, configure_logging, console, make_runtime


@app.command()
def onboard():
    """Initialize personaforge configuration and data directory."""
    from personaforge.config.loader import get_config_path, save_config
    from personaforge.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print(f"[green]✓[/green] Data directory at {config.storage.data_path}")

    console.print(f"\n{__logo__} personaforge is ready!")
    console.print("\nNext steps:")
    console.print("  1. Set the LLM model and api base in [cyan]~/.personaforge/config.json[/cyan]")
    console.print("  2. Add an account: [cyan]personaforge account add alice --persona default[/cyan]")
    console.print("  3. Start the bridge and run: [cyan]personaforge run[/cyan]")


@app.command()
def run(
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Run workers for every active account until interrupted."""
    from personaforge.config.loader import load_config

    config = load_config()
    configure_logging(config.logging, verbose=verbose)
    runtime = make_runtime(config)

    accounts = [a for a in runtime.registry.list_accounts() if a.active]
    if not accounts:
        console.print("[yellow]Warning: No active accounts[/yellow]")
    else:
        console.print(f"[green]✓[/green] Accounts: {', '.join(a.account_id for a in accounts)}")
    console.print(f"[green]✓[/green] LLM: {config.llm.model} (max {config.llm.max_concurrency} concurrent)")

    async def main_loop() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await runtime.run(stop)

    try:
        asyncio.run(main_loop())
    finally:
        runtime.close()
        console.print("\nShut down.")


@app.command()
def status():
    """Show configuration, accounts and stored state."""
    from personaforge.config.loader import get_config_path, load_config
    from personaforge.security.store import SecurityStore
    from personaforge.storage.registry import AccountRegistry

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} personaforge Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Data: {config.storage.data_path}")
    console.print(f"Model: {config.llm.model}  Embeddings: {config.llm.embedding_model}")
    console.print(f"Search: {config.search.mode}  Flagged action: {config.security.flagged_action}")

    registry = AccountRegistry(config.resolve_db_path(config.storage.registry_db))
    security_store = SecurityStore(config.resolve_db_path(config.security.db_path))
    try:
        accounts = registry.list_accounts()
        now = time.time()
        blocked = [state for account in accounts for state in security_store.list_blocked(account.account_id, now=now)]
    finally:
        registry.close()
        security_store.close()

    table = Table(title="Accounts")
    table.add_column("Account", style="cyan")
    table.add_column("Persona")
    table.add_column("Active")
    table.add_column("State")
    for account in accounts:
        state_style = {"running": "green", "faulted": "red"}.get(account.state, "dim")
        table.add_row(
            account.account_id,
            account.persona,
            "yes" if account.active else "no",
            f"[{state_style}]{account.state}[/{state_style}]",
        )
    console.print(table)

    if blocked:
        console.print(f"\nBlocked senders: {len(blocked)}")
        for state in blocked[:20]:
            until = datetime.fromtimestamp(state.blocked_until or 0).strftime("%Y-%m-%d %H:%M")
            console.print(f"  {state.account_id}/{state.sender_id}: {state.strikes} strikes, until {until}")


from personaforge.cli import account_commands  # noqa: E402,F401
