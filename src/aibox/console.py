"""Human-readable transcript for aibox runs."""

from __future__ import annotations

from typing import IO, Optional

import click

__all__ = ["Transcript"]

_MARKERS = {
    "info": ("[INFO]", "blue"),
    "success": ("[SUCCESS]", "green"),
    "warning": ("[WARNING]", "yellow"),
    "error": ("[ERROR]", "red"),
    "dry_run": ("[DRY-RUN]", "cyan"),
}


class Transcript:
    """
    Writes one marked line per event to the terminal.

    Markers mirror severity: info, success, warning, error and dry-run
    notices. Colors are dropped when ``use_colors`` is false or the stream
    is not a terminal (click strips ANSI codes itself in that case).
    """

    def __init__(self, use_colors: bool = True, file: Optional[IO[str]] = None):
        self.use_colors = use_colors
        self.file = file

    def _line(self, kind: str, message: str) -> None:
        marker, color = _MARKERS[kind]
        if self.use_colors:
            marker = click.style(marker, fg=color, bold=kind == "error")
        click.echo(f"{marker} {message}", file=self.file)

    def info(self, message: str) -> None:
        self._line("info", message)

    def success(self, message: str) -> None:
        self._line("success", message)

    def warning(self, message: str) -> None:
        self._line("warning", message)

    def error(self, message: str) -> None:
        self._line("error", message)

    def dry_run(self, message: str) -> None:
        self._line("dry_run", f"Would: {message}")

    def echo(self, message: str = "") -> None:
        click.echo(message, file=self.file)

    def heading(self, title: str) -> None:
        rule = "=" * 46
        self.echo()
        self.echo(rule)
        self.echo(f"   {title}")
        self.echo(rule)
        self.echo()

    def notice(self, message: str) -> None:
        """Emphasized standalone line (used for the dry-run banner)."""
        if self.use_colors:
            message = click.style(message, fg="cyan")
        self.echo(message)
