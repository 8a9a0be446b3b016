"""msgguard CLI: operator tooling for the messaging guard."""

import asyncio
import sys

import click
from rich.console import Console
from rich.table import Table

from msgguard import __version__
from msgguard.config import load_settings
from msgguard.errors import MessagingError
from msgguard.log import configure_logging

console = Console()


def _run(ctx: click.Context, action):
    """Open the engine, run ``action(engine)`` and close it again."""
    from msgguard.engine import MessagingEngine

    async def _main():
        engine = MessagingEngine(ctx.obj["settings"])
        await engine.start()
        try:
            return await action(engine)
        finally:
            await engine.stop()

    try:
        return asyncio.run(_main())
    except MessagingError as e:
        console.print(f"[red]{e.reason_code}:[/] {e.message}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="YAML settings file")
@click.option("--db", "db_path", default=None, help="SQLite database path")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, db_path: str | None):
    """msgguard: messaging access control and moderation.

    Inspect and change workspace messaging policies, review suspensions,
    export the moderation audit trail and dry-run the content guard.
    """
    from pathlib import Path

    settings = load_settings(config_path)
    if db_path:
        settings.db_path = Path(db_path)
    configure_logging(settings.environment, settings.log_level)
    ctx.obj = {"settings": settings}


# ── Database ─────────────────────────────────────────────────────────


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Create the database schema (idempotent)."""

    async def action(engine):
        return None

    _run(ctx, action)
    console.print(f"[green]Schema ready at[/] {ctx.obj['settings'].db_path}")


# ── Content guard ────────────────────────────────────────────────────


@main.command()
@click.argument("body")
@click.option("--word", "-w", "words", multiple=True, help="Sensitive word (repeatable)")
@click.option("--mode", default="flag", type=click.Choice(["off", "flag", "block"]))
@click.option("--minor/--no-minor", default=True, help="Treat the thread as involving students")
def scan(body: str, words: tuple, mode: str, minor: bool):
    """Run the content guard on BODY without storing anything."""
    from msgguard.moderation.content_guard import detect_flags, should_block
    from msgguard.policies.models import GuardMode, normalize_sensitive_words

    flags = detect_flags(body, normalize_sensitive_words(words))
    if not flags:
        console.print("[green]No findings.[/]")
        return

    table = Table(title=f"Findings ({len(flags)})")
    table.add_column("Type", style="cyan")
    table.add_column("Matched value")
    for flag in flags:
        table.add_row(flag.type.value, flag.matched_value)
    console.print(table)

    if should_block(GuardMode(mode), minor, flags):
        console.print("[red]Decision: BLOCK[/]")
    else:
        console.print("[yellow]Decision: store and flag[/]")


# ── Policy ───────────────────────────────────────────────────────────


@main.group()
def policy():
    """Workspace messaging policies."""


def _print_policy(p):
    table = Table(title=f"Messaging policy: {p.org_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("guard_mode", p.guard_mode.value)
    table.add_row("sensitive_words", ", ".join(p.sensitive_words) or "-")
    table.add_row("retention_days", str(p.retention_days))
    table.add_row("charter_version", str(p.charter_version))
    table.add_row("supervision_enabled", "yes" if p.supervision_enabled else "no")
    console.print(table)


@policy.command("show")
@click.argument("org_id")
@click.pass_context
def policy_show(ctx: click.Context, org_id: str):
    """Show the policy of ORG_ID (defaults when never configured)."""

    async def action(engine):
        return await engine.policies.load(org_id)

    _print_policy(_run(ctx, action))


@policy.command("set")
@click.argument("org_id")
@click.option("--guard-mode", type=click.Choice(["off", "flag", "block"]), default=None)
@click.option("--word", "-w", "words", multiple=True, help="Replace the sensitive-word list")
@click.option("--retention-days", type=int, default=None)
@click.option("--charter-version", type=int, default=None)
@click.option("--supervision/--no-supervision", default=None)
@click.pass_context
def policy_set(
    ctx: click.Context,
    org_id: str,
    guard_mode: str | None,
    words: tuple,
    retention_days: int | None,
    charter_version: int | None,
    supervision: bool | None,
):
    """Update only the given fields of ORG_ID's policy."""
    from msgguard.policies.models import GuardMode, PolicyUpdate

    update = PolicyUpdate(
        guard_mode=GuardMode(guard_mode) if guard_mode else None,
        sensitive_words=list(words) if words else None,
        retention_days=retention_days,
        charter_version=charter_version,
        supervision_enabled=supervision,
    )

    async def action(engine):
        return await engine.policies.update(org_id, update)

    _print_policy(_run(ctx, action))


# ── Suspensions ──────────────────────────────────────────────────────


@main.group()
def suspensions():
    """Messaging suspensions."""


@suspensions.command("list")
@click.argument("org_id")
@click.pass_context
def suspensions_list(ctx: click.Context, org_id: str):
    """List active suspensions of ORG_ID."""

    async def action(engine):
        return await engine.suspensions.list_active(org_id)

    rows = _run(ctx, action)
    if not rows:
        console.print("[dim]No active suspensions.[/]")
        return

    table = Table(title=f"Active suspensions ({len(rows)})")
    table.add_column("User", style="cyan")
    table.add_column("Reason")
    table.add_column("Until")
    table.add_column("By", style="dim")
    for s in rows:
        table.add_row(s.user_id, s.reason, s.suspended_until or "indefinite", s.created_by or "")
    console.print(table)


# ── Audit ────────────────────────────────────────────────────────────


@main.group()
def audit():
    """Moderation audit trail."""


@audit.command("export")
@click.argument("org_id")
@click.option("--format", "fmt", default="json", type=click.Choice(["json", "csv"]))
@click.option("--output", "-o", default=None, help="Write to a file instead of stdout")
@click.pass_context
def audit_export(ctx: click.Context, org_id: str, fmt: str, output: str | None):
    """Export the moderation audit entries of ORG_ID."""

    async def action(engine):
        return await engine.audit.export(org_id, fmt=fmt)

    data = _run(ctx, action)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(data)
        console.print(f"[green]Audit export written to:[/] {output}")
    else:
        click.echo(data)


# ── Retention ────────────────────────────────────────────────────────


@main.command()
@click.argument("org_id")
@click.pass_context
def purge(ctx: click.Context, org_id: str):
    """Redact messages of ORG_ID older than its retention window."""

    async def action(engine):
        return await engine.moderation.purge_workspace(org_id)

    count = _run(ctx, action)
    console.print(f"[green]Redacted {count} message(s).[/]")


if __name__ == "__main__":
    main()
