"""
CLI interface for Avatar Studio.

Provides command-line access to accounts, generation, history and audits.
"""

import dataclasses
import logging
import sys
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from avatar_studio.config.loader import ServiceConfig, default_service_config, load_service_config
from avatar_studio.core.errors import MeteringError
from avatar_studio.core.orchestrator import GenerationRequest, build_orchestrator
from avatar_studio.core.pricing import credits_for_payment
from avatar_studio.storage.models import ContentKind, SubscriptionTier
from avatar_studio.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _config(ctx: typer.Context) -> ServiceConfig:
    return ctx.obj["config"]


def _orchestrator(ctx: typer.Context):
    return build_orchestrator(_config(ctx))


def _parse_attributes(values: List[str]) -> dict:
    """Parse repeated ``key=value`` options."""
    attributes = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got '{item}'")
        attributes[key.strip()] = value.strip()
    return attributes


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML service configuration"
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db",
        help="Override the configured database path"
    )
):
    """Avatar Studio CLI."""
    try:
        config = load_service_config(config_path) if config_path else default_service_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    if db_path:
        config = dataclasses.replace(config, database=dataclasses.replace(config.database, path=db_path))
    ctx.obj = {"config": config}

    if ctx.invoked_subcommand is None:
        console.print("Avatar Studio - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Avatar Studio database."""
    try:
        initialize_schema(_config(ctx).database.path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("open-account")
def open_account(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    credits: int = typer.Option(0, "--credits", min=0, help="Starting balance"),
    tier: SubscriptionTier = typer.Option(SubscriptionTier.FREE, "--tier", help="Subscription tier")
):
    """Create an account with a starting credit balance."""
    orchestrator = _orchestrator(ctx)
    try:
        account = orchestrator.ledger.open_account(account_id, tier=tier, initial_balance=credits)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Opened {account.id} ({account.tier.value}) with {account.balance} credits")


@app.command()
def balance(ctx: typer.Context, account_id: str = typer.Argument(..., help="Account identifier")):
    """Show an account's credit balance."""
    orchestrator = _orchestrator(ctx)
    try:
        account = orchestrator.ledger.get_account(account_id)
    except MeteringError as e:
        console.print(f"[red]{e.code.value}:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"{account.id}: [bold]{account.balance}[/] credits ({account.tier.value})")


@app.command()
def generate(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account to charge"),
    kind: ContentKind = typer.Option(ContentKind.IMAGE, "--kind", "-k", help="Content kind"),
    prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Free-text prompt"),
    attribute: Optional[List[str]] = typer.Option(
        None,
        "--attr",
        "-a",
        help="Appearance attribute as key=value (repeatable); exclusive with --prompt"
    ),
    avatar_id: Optional[str] = typer.Option(None, "--avatar", help="Target avatar"),
    style: Optional[str] = typer.Option(None, "--style", "-s", help="Style tag"),
    scene: Optional[str] = typer.Option(None, "--scene", help="Scene description")
):
    """Generate an image or video and charge the account."""
    attributes = _parse_attributes(attribute) if attribute else None
    try:
        request = GenerationRequest.build(
            account_id=account_id,
            kind=kind,
            prompt=prompt,
            attributes=attributes,
            avatar_id=avatar_id,
            style=style,
            scene_description=scene,
        )
    except ValueError as e:
        console.print(f"[red]Invalid request:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    orchestrator = _orchestrator(ctx)
    try:
        result = orchestrator.generate(request)
    except MeteringError as e:
        console.print(f"[red]{e.code.value}:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    finally:
        orchestrator.shutdown()

    console.print(f"[green]✓[/] {result.generation.kind.value} generated: {result.generation.url}")
    console.print(f"Prompt: {result.generation.prompt}")
    console.print(f"Credits remaining: [bold]{result.credits_remaining}[/]")


@app.command()
def history(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    avatar_id: Optional[str] = typer.Option(None, "--avatar", help="Filter to one avatar"),
    kind: Optional[ContentKind] = typer.Option(None, "--kind", "-k", help="Filter by content kind")
):
    """List an account's generations, newest first."""
    generations = _orchestrator(ctx).list_generations(account_id, avatar_id=avatar_id, kind=kind)
    if not generations:
        console.print("\n[dim]No generations found.[/]")
        return

    table = Table(title=f"Generations for {account_id}")
    table.add_column("Created")
    table.add_column("Kind")
    table.add_column("Avatar")
    table.add_column("URL")
    table.add_column("Prompt")
    for generation in generations:
        table.add_row(
            generation.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            generation.kind.value,
            generation.avatar_id or "-",
            generation.url,
            generation.prompt,
        )
    console.print(table)


@app.command()
def usage(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum entries to show")
):
    """Show the usage log for an account."""
    recorder = _orchestrator(ctx).usage
    entries = recorder.list_entries(account_id, limit=limit)
    if not entries:
        console.print("\n[dim]No usage recorded.[/]")
        return

    table = Table(title=f"Usage for {account_id}")
    table.add_column("Created")
    table.add_column("Action")
    table.add_column("Credits", justify="right")
    table.add_column("Request")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.action,
            str(entry.credits_used),
            entry.request_id,
        )
    console.print(table)
    console.print(f"Total credits used: [bold]{recorder.total_credits_used(account_id)}[/]")


@app.command()
def settle(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account to credit"),
    payment_id: str = typer.Argument(..., help="Settled payment identifier"),
    amount_cents: int = typer.Argument(..., min=1, help="Settled amount in cents")
):
    """Grant credits for a settled payment. Replays are ignored."""
    config = _config(ctx)
    orchestrator = _orchestrator(ctx)
    credits = credits_for_payment(amount_cents, config.payments.credits_per_usd)
    if credits == 0:
        console.print("[red]Error:[/] payment too small to grant credits")
        sys.exit(EXIT_CODE_FAIL)
    try:
        applied = orchestrator.ledger.grant(account_id, credits, f"payment:{payment_id}")
    except MeteringError as e:
        console.print(f"[red]{e.code.value}:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if applied:
        console.print(f"[green]✓[/] Granted {credits} credits to {account_id}")
    else:
        console.print(f"[yellow]Payment {payment_id} already settled[/]")


@app.command()
def reconcile(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account to audit"),
    repair: bool = typer.Option(
        False,
        "--repair",
        "-r",
        help="Write missing usage entries for completed generations"
    )
):
    """
    Audit an account's balance against its ledger journal and usage log.

    Exits with an error code when the account is inconsistent.
    """
    orchestrator = _orchestrator(ctx)
    try:
        if repair:
            repaired = orchestrator.repair_usage_log(account_id)
            orchestrator.usage.flush()
            for request_id in repaired:
                console.print(f"[green]✓[/] Restored usage entry for {request_id}")
        report = orchestrator.ledger.reconcile(account_id)
    except MeteringError as e:
        console.print(f"[red]{e.code.value}:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("\n[bold]Ledger Reconciliation[/bold]")
    console.print("-" * 40)
    console.print(f"Account: {report.account_id}")
    console.print(f"Balance: {report.balance}")
    console.print(f"Expected balance: {report.expected_balance}")
    for request_id in report.unmatched_debits:
        console.print(f"[yellow]Unmatched debit:[/] {request_id}")

    if report.consistent:
        console.print("\n[bold]Verdict:[/bold] [green]CONSISTENT[/]")
        sys.exit(EXIT_CODE_PASS)
    console.print("\n[bold]Verdict:[/bold] [red]INCONSISTENT[/]")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    log_level: str = typer.Option("info", "--log-level", help="Logging level")
):
    """Run the HTTP API."""
    import uvicorn

    from avatar_studio.api.app import create_app

    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)]
    )
    uvicorn.run(create_app(config=_config(ctx)), host=host, port=port, log_level=log_level.lower())


if __name__ == "__main__":
    app()
