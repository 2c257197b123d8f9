"""Console output helpers for the CLI."""

import json
from typing import Any, Iterable

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Formats CLI output with rich, or as JSON when requested."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of rich text
            quiet: Suppress informational output (errors are still shown)
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    def print(self, message: str = "", soft_wrap: bool = False) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, soft_wrap=soft_wrap)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, style="cyan")

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, style="green")

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(message, style="yellow")

    def error(self, message: str) -> None:
        self.err_console.print(message, style="bold red")

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def print_summary(self, title: str, items: Iterable[tuple[str, Any]]) -> None:
        """Print a two-column summary table.

        Args:
            title: Table title
            items: (label, value) pairs
        """
        if self.quiet:
            return
        if self.json_output:
            self.output_json({label: value for label, value in items})
            return

        table = Table(title=title, show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        for label, value in items:
            table.add_row(label, str(value))
        self.console.print(table)
