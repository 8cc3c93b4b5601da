"""
Add or list pool accounts from the command line.

    python scripts/manage_accounts.py add speechmatics YOUR_API_KEY --name "My Account"
    python scripts/manage_accounts.py list --provider elevenlabs
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.table import Table

repo_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
src_root = os.path.join(repo_root, "src")
if src_root not in sys.path:
    sys.path.insert(0, src_root)

from credential_pool import CredentialPool, PoolError, Provider  # noqa: E402
from tracker_api.db import init_db_runtime  # noqa: E402

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage credential pool accounts")
    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Validate and add an account")
    add.add_argument("provider", choices=[p.value for p in Provider])
    add.add_argument("credential")
    add.add_argument("--name")
    add.add_argument("--priority", type=int)
    add.add_argument("--capacity", type=float, dest="total_capacity")
    add.add_argument("--plan", choices=["free", "trial", "paid"], dest="plan_type")
    add.add_argument("--monthly-limit", type=int, dest="monthly_limit")
    add.add_argument("--skip-validation", action="store_true")

    listing = subparsers.add_parser("list", help="Show every account and its state")
    listing.add_argument("--provider", choices=[p.value for p in Provider])
    return parser


async def add_account(pool: CredentialPool, args: argparse.Namespace) -> int:
    try:
        with console.status(f"Validating {args.provider} credential..."):
            account = await pool.add_account(
                args.provider,
                args.credential,
                validate=not args.skip_validation,
                name=args.name,
                priority=args.priority,
                total_capacity=args.total_capacity,
                plan_type=args.plan_type,
                monthly_limit=args.monthly_limit,
            )
    except PoolError as e:
        console.print(f"[bold red]Failed:[/bold red] {rich_escape(str(e))}")
        return 1

    capacity = "unlimited" if not account.total_capacity else f"{account.total_capacity:g}"
    console.print(
        Panel(
            f"[bold]ID:[/bold] {account.id}\n"
            f"[bold]Name:[/bold] {rich_escape(account.name)}\n"
            f"[bold]Provider:[/bold] {account.provider}\n"
            f"[bold]Priority:[/bold] {account.priority}\n"
            f"[bold]Plan:[/bold] {account.plan_type}\n"
            f"[bold]Capacity:[/bold] {capacity}\n"
            f"[bold]Trial ends:[/bold] {account.trial_ends_at or 'never'}",
            title="[green]Account added[/green]",
            expand=False,
        )
    )
    return 0


async def list_accounts(pool: CredentialPool, args: argparse.Namespace) -> int:
    summaries = await pool.list_accounts_status(args.provider)
    if not summaries:
        console.print("[yellow]No accounts configured.[/yellow]")
        return 0

    table = Table(title="Credential pool")
    for column in ("ID", "Provider", "Name", "Key", "Priority", "Status", "Usage", "Requests"):
        table.add_column(column)

    status_styles = {"active": "green", "exhausted": "yellow", "expired": "yellow"}
    for summary in summaries:
        style = status_styles.get(summary.status, "red")
        usage = (
            "unlimited"
            if not summary.total_capacity
            else f"{summary.usage_percentage:.1f}%"
        )
        table.add_row(
            str(summary.id),
            summary.provider,
            rich_escape(summary.name),
            summary.credential,
            str(summary.priority),
            f"[{style}]{summary.status}[/{style}]",
            usage,
            f"{summary.successful_requests}/{summary.total_requests}",
        )
    console.print(table)
    return 0


async def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    engine, session_maker = await init_db_runtime(Path(repo_root))
    pool = CredentialPool(session_maker)
    try:
        if args.command == "add":
            return await add_account(pool, args)
        return await list_accounts(pool, args)
    finally:
        await pool.close()
        await engine.dispose()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
