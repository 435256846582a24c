"""
chatkernel CLI - Rich Output Helpers

Utility functions for consistent command-line output using Rich.

Functions:
    print_table      - Print a formatted table
    print_json       - Print formatted JSON
    print_key_value  - Print aligned key/value pairs
    print_error      - Print error message
    print_stream     - Print kernel stream text verbatim

Classes:
    ModelProgress    - Rich progress bar fed by the model progress channel
"""

from __future__ import annotations

import json
from typing import Any, Optional

from rich.console import Console
from rich.json import JSON
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from chatkernel.cognition.progress import ProgressChannel, ProgressEvent, progress_channel

# Create console instances
console = Console()
err_console = Console(stderr=True)


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    styles: Optional[list[str]] = None,
    show_header: bool = True,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows (list of lists)
        styles: Optional column styles
        show_header: Whether to show column headers
    """
    table = Table(title=title, show_header=show_header)

    for i, col in enumerate(columns):
        style = styles[i] if styles and i < len(styles) else None
        table.add_column(col, style=style)

    for row in rows:
        padded_row = list(row) + [""] * (len(columns) - len(row))
        table.add_row(*padded_row[:len(columns)])

    console.print(table)


def print_json(
    data: dict | list,
    indent: int = 2,
    highlight: bool = True,
) -> None:
    """
    Print formatted JSON.

    Args:
        data: Data to print as JSON
        indent: Indentation level
        highlight: Whether to syntax highlight
    """
    json_str = json.dumps(data, indent=indent, default=str)
    if highlight:
        console.print(JSON(json_str))
    else:
        console.print(json_str, markup=False, highlight=False)


def print_key_value(
    items: list[tuple[str, Any]],
    title: Optional[str] = None,
    separator: str = ":",
    key_style: str = "cyan",
) -> None:
    """
    Print key-value pairs in a formatted list.

    Args:
        items: List of (key, value) tuples
        title: Optional title
        separator: Separator between key and value
        key_style: Style for keys
    """
    if title:
        console.print(f"[bold]{title}[/bold]")
        console.print()

    max_key_len = max(len(str(k)) for k, _ in items) if items else 0

    for key, value in items:
        padded_key = str(key).ljust(max_key_len)
        console.print(f"  [{key_style}]{padded_key}[/{key_style}]{separator} {value}")


def print_error(
    message: str,
    hint: Optional[str] = None,
) -> None:
    """
    Print error message.

    Args:
        message: Error message
        hint: Optional hint for resolving the error
    """
    err_console.print("[bold red]Error:[/bold red] ", end="")
    err_console.print(message, markup=False, highlight=False)

    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")


def print_stream(text: str) -> None:
    """Print model output exactly as received, without markup or wrapping."""
    console.print(text, end="", markup=False, highlight=False, soft_wrap=True)


class ModelProgress:
    """Show model download progress while the context is active.

    The bar only appears once the first event arrives, so runs against an
    already downloaded model print nothing extra.

    Example:
        with ModelProgress():
            reply = await host.execute(kernel, prompt)
    """

    def __init__(self, channel: ProgressChannel | None = None) -> None:
        self.channel = channel if channel is not None else progress_channel
        self._progress: Progress | None = None
        self._task: TaskID | None = None
        self.events: list[ProgressEvent] = []

    def __enter__(self) -> "ModelProgress":
        self.channel.subscribe(self._on_event)
        return self

    def __exit__(self, *exc: Any) -> None:
        self.channel.unsubscribe(self._on_event)
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
            self._task = None

    def _on_event(self, event: ProgressEvent) -> None:
        self.events.append(event)
        progress, task = self._progress, self._task
        if progress is None or task is None:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=err_console,
                transient=True,
            )
            progress.start()
            task = progress.add_task(event.text or "Preparing model", total=100)
            self._progress, self._task = progress, task

        progress.update(
            task,
            completed=event.progress * 100,
            description=event.text or "Preparing model",
        )
