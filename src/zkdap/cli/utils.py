"""CLI utilities for ZK data access.

Formatting, tables, spinners, logging and artifact files.
"""

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Union

import humanize
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.syntax import Syntax
from rich.table import Table

console = Console()


def setup_logging(level: str = "INFO") -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=False, show_path=False)],
        force=True,
    )


def print_success(message: str):
    """Print success message in green."""
    console.print(f"✅ {message}", style="bold green")


def print_error(message: str):
    """Print error message in red."""
    console.print(f"❌ {message}", style="bold red")


def print_warning(message: str):
    """Print warning message in yellow."""
    console.print(f"⚠️  {message}", style="bold yellow")


def print_info(message: str):
    """Print info message in blue."""
    console.print(f"ℹ️  {message}", style="bold blue")


def print_table(title: str, columns: List[str], rows: List[List[Any]]):
    """Print data as a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows
    """
    table = Table(title=title, box=box.ROUNDED, title_style="bold cyan")

    for col in columns:
        table.add_column(col, style="cyan")

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def print_json(data: Any):
    """Print JSON data with syntax highlighting."""
    syntax = Syntax(
        json.dumps(data, indent=2, default=str),
        "json",
        theme="monokai",
        line_numbers=False
    )
    console.print(syntax)


def format_bytes(bytes_val: int) -> str:
    """Format bytes to human readable string."""
    return humanize.naturalsize(bytes_val, binary=True)


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable."""
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    return humanize.precisedelta(timedelta(seconds=seconds), minimum_unit="milliseconds", format="%0.1f")


def create_progress_spinner():
    """Create a progress spinner."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True
    )


def write_json(path: Union[str, Path], data: Any) -> Path:
    """Write an artifact, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def read_json(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def file_summary(path: Union[str, Path]) -> str:
    path = Path(path)
    return f"{path} ({format_bytes(path.stat().st_size)})"


__all__ = [
    "console",
    "setup_logging",
    "print_success",
    "print_error",
    "print_warning",
    "print_info",
    "print_table",
    "print_json",
    "format_bytes",
    "format_duration",
    "create_progress_spinner",
    "write_json",
    "read_json",
    "file_summary",
]
