"""Entry point for the vitals health & metrics service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vitals.config import settings
from vitals.health import HealthSnapshot, Status
from vitals.monitor import build_monitor

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_STYLE = {
    Status.HEALTHY: "green",
    Status.DEGRADED: "yellow",
    Status.UNHEALTHY: "bold red",
}


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel(f"Starting {settings.app_name} API Server", style="bold green"))
    uvicorn.run(
        "vitals.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


async def _check_once() -> HealthSnapshot:
    monitor = build_monitor()
    await monitor.sampler.sample()
    return await monitor.perform_manual_check()


def render_snapshot(snapshot: HealthSnapshot) -> Table:
    table = Table(title=f"{settings.app_name} health ({settings.app_env})")
    table.add_column("Dependency")
    table.add_column("Status")
    table.add_column("Response", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Message")

    for name, check in snapshot.checks.items():
        table.add_row(
            name,
            f"[{_STYLE[check.status]}]{check.status.value}[/]",
            f"{check.response_time:.0f}ms",
            str(check.metadata.consecutive_failures),
            check.message,
        )
    return table


def run_check() -> int:
    """Run one manual sweep and print the results; returns the exit code."""
    with console.status("[bold green]Checking dependencies..."):
        snapshot = asyncio.run(_check_once())

    console.print(render_snapshot(snapshot))
    summary = snapshot.summary
    console.print(
        f"\nOverall: [{_STYLE[snapshot.status]}]{snapshot.status.value}[/] "
        f"[dim]({summary.healthy} healthy / {summary.degraded} degraded / "
        f"{summary.unhealthy} unhealthy)[/dim]"
    )
    return 1 if snapshot.status == Status.UNHEALTHY else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="vitals health & metrics service")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")
    sub.add_parser("check", help="Probe every dependency once and print the results")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        sys.exit(run_check())
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
