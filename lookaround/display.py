"""
Terminal output — rich peer table and scan spinner.

Usage::

    status = ScanStatus("Looking around", timeout=2.0)
    status.start()
    peers = await run_client(...)
    status.stop()

    render_report(peers)
"""

from __future__ import annotations

from typing import Sequence

from rich.console import Console
from rich.status import Status
from rich.table import Table
from rich.text import Text

from .client import PeerReport


class ScanStatus:
    """Spinner on stderr while a discovery round is collecting replies."""

    def __init__(self, label: str, timeout: float, console: Console | None = None) -> None:
        self._status = Status(
            f"[bold cyan]{label}[/] [dim]({timeout:g}s)[/]",
            console=console or Console(stderr=True),
        )

    def start(self) -> None:
        self._status.start()

    def stop(self) -> None:
        self._status.stop()


class NullStatus:
    """Drop-in no-op replacement when --plain / --quiet is set."""

    def start(self) -> None: ...
    def stop(self) -> None: ...


def render_report(
    reports: Sequence[PeerReport],
    console: Console | None = None,
    plain: bool = False,
) -> None:
    """Print one row per peer, in the order given."""
    console = console or Console()

    if plain:
        console.print(f"Found {len(reports)} peers:", highlight=False)
        for r in reports:
            console.print(str(r), highlight=False, markup=False)
        return

    if not reports:
        console.print("No peers found.")
        return

    table = Table(title=f"Found {len(reports)} peer(s)", title_justify="left")
    table.add_column("MAC", style="bold")
    table.add_column("IP")
    table.add_column("NICKNAME", style="cyan")
    for r in reports:
        table.add_row(
            str(r.mac) if r.mac else "[dim]<Unknown>[/]",
            r.addr[0] if r.mac else f"{r.addr[0]}:{r.addr[1]}",
            Text(r.nickname or ""),
        )
    console.print(table)
