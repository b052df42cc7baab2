"""Trinetra doctor - environment diagnostics.

Checks that tmux is usable, that the server port is free and that the data and
logs directories are writable. Exits 1 if any check fails (warnings do not).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import socket
import sys
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from rich.console import Console

from trinetra.config import config
from trinetra.core import tmux_bridge
from trinetra.core.errors import ExternalToolUnavailable, TransientToolFailure


@dataclass
class CheckResult:
    name: str
    passed: bool
    message: str
    warning: bool = False
    suggestion: Optional[str] = None


async def check_tmux_available() -> CheckResult:
    try:
        version = await tmux_bridge.tmux_version()
    except (ExternalToolUnavailable, TransientToolFailure) as e:
        return CheckResult(
            name="tmux available",
            passed=False,
            message=f"tmux is not installed or not runnable ({e.message})",
            suggestion="Install tmux (brew install tmux / sudo apt install tmux)",
        )
    return CheckResult(name="tmux available", passed=True, message=f"tmux is installed ({version})")


async def check_tmux_list_sessions() -> CheckResult:
    try:
        names = await tmux_bridge.list_sessions(owned_only=False)
    except (ExternalToolUnavailable, TransientToolFailure) as e:
        return CheckResult(
            name="tmux list-sessions",
            passed=False,
            message=f"tmux list-sessions failed: {e.details or e.message}",
            suggestion="Check tmux installation and permissions",
        )
    if not names:
        return CheckResult(name="tmux list-sessions", passed=True, message="tmux is available (no active sessions)")
    suffix = "" if len(names) == 1 else "s"
    return CheckResult(
        name="tmux list-sessions", passed=True, message=f"tmux server is running ({len(names)} session{suffix} active)"
    )


def check_server_port(host: str, port: int) -> CheckResult:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return CheckResult(
                name="Server port",
                passed=False,
                warning=True,
                message=f"Port {port} is already in use",
                suggestion=f"Stop the process using port {port}, or set TRINETRA_PORT to a different port",
            )
    return CheckResult(name="Server port", passed=True, message=f"Port {port} is available")


def check_writable_dir(name: str, path: Path) -> CheckResult:
    created = not path.exists()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return CheckResult(
            name=name,
            passed=False,
            message=f"Cannot create {name.lower()} at {path}",
            suggestion=f'Create the directory manually: mkdir -p "{path}"',
        )

    probe = path / f".trinetra-doctor-{uuid.uuid4().hex[:8]}"
    try:
        probe.write_text("test", encoding="utf-8")
        probe.unlink()
    except OSError:
        return CheckResult(
            name=name,
            passed=False,
            message=f"{name} exists but is not writable ({path})",
            suggestion=f'Fix permissions: chmod 755 "{path}"',
        )

    if created:
        return CheckResult(name=name, passed=True, message=f"{name} created at {path}")
    return CheckResult(name=name, passed=True, message=f"{name} exists and is writable ({path})")


async def run_checks() -> list[CheckResult]:
    return [
        await check_tmux_available(),
        await check_tmux_list_sessions(),
        check_server_port(config.server.host, config.server.port),
        check_writable_dir("Data directory", config.data_dir),
        check_writable_dir("Logs directory", config.logs_dir),
    ]


def _print_report(console: Console, results: list[CheckResult]) -> None:
    console.print()
    console.print("[bold cyan]Trinetra Doctor[/bold cyan]")
    console.print()
    console.print("[blue]Configuration:[/blue]")
    console.print(f"  [dim]Host:[/dim] {config.server.host}")
    console.print(f"  [dim]Server Port:[/dim] {config.server.port}")
    console.print(f"  [dim]Data Directory:[/dim] {config.data_dir}")
    console.print()
    console.print("[blue]Checks:[/blue]")

    for result in results:
        if result.passed:
            icon = "[green]✓[/green]"
        elif result.warning:
            icon = "[yellow]![/yellow]"
        else:
            icon = "[red]✗[/red]"
        console.print(f"  {icon} [bold]{result.name}[/bold]")
        console.print(f"    [dim]{result.message}[/dim]")
        if result.suggestion:
            console.print(f"    [yellow]→ {result.suggestion}[/yellow]")

    passed = sum(1 for r in results if r.passed)
    failed = sum(1 for r in results if not r.passed and not r.warning)
    warnings = sum(1 for r in results if not r.passed and r.warning)

    console.print()
    console.print("[blue]Summary:[/blue]")
    if failed == 0 and warnings == 0:
        console.print(f"  [bold green]All {passed} checks passed![/bold green]")
    elif failed == 0:
        console.print(f"  [green]{passed} passed[/green], [yellow]{warnings} warning(s)[/yellow]")
        console.print("  [dim]Trinetra can run, but check the warnings above.[/dim]")
    else:
        console.print(f"  [green]{passed} passed[/green], [red]{failed} failed[/red]")
        console.print("  [dim]Please fix the issues above before running Trinetra.[/dim]")
    console.print()


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point (`trinetra-doctor`)."""
    parser = argparse.ArgumentParser(prog="trinetra-doctor", description="Run Trinetra environment diagnostics")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    args = parser.parse_args(argv)

    results = asyncio.run(run_checks())

    if args.json:
        print(json.dumps([asdict(r) for r in results], indent=2))
    else:
        _print_report(Console(), results)

    failed = any(not r.passed and not r.warning for r in results)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
