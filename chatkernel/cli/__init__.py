"""
chatkernel - Command Line Interface

Drive the chat kernel from a terminal through the in-process reference
host.  Built with Typer for the command surface and Rich for output.

Usage:
    $ chatkernel --help
    $ chatkernel models
    $ chatkernel spec --json
    $ chatkernel run "Write a haiku about autumn" --model mistral:7b
    $ chatkernel shell

Every command that talks to a model boots a LocalHost, loads the
federation container into it and starts an ``http-chat`` kernel, exactly as
a notebook host would.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import typer
from rich.panel import Panel

from chatkernel import __version__
from chatkernel.cli.output import (
    ModelProgress,
    console,
    err_console,
    print_error,
    print_json,
    print_key_value,
    print_stream,
    print_table,
)
from chatkernel.cognition.llm_client import create_runtime
from chatkernel.cognition.models import MODEL_CATALOG, resolve_default_model
from chatkernel.config.settings import settings
from chatkernel.config.settings_bridge import JsonSettingRegistry
from chatkernel.federation.container import FederationContainer
from chatkernel.kernel.host import LocalHost
from chatkernel.kernel.kernel import ExecutionKernel
from chatkernel.plugins.kernel_plugin import KERNEL_SPEC

logger = logging.getLogger(__name__)

EXIT_WORDS = ("exit", "quit")

# Create main application
app = typer.Typer(
    name="chatkernel",
    help="chatkernel - chat kernel backed by a local language model",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"chatkernel version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        logging.basicConfig(level=logging.DEBUG)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    chatkernel - chat kernel backed by a local language model

    Every code cell is a prompt; ``%ai`` magic commands manage the model.

    Use --help on any subcommand for detailed information.
    """
    # No-op when --verbose already configured logging.
    logging.basicConfig(level=settings.LOG_LEVEL.upper())


# ---------------------------------------------------------------------------
# Host plumbing
# ---------------------------------------------------------------------------

def _on_output(msg_type: str, content: dict[str, Any], parent_header: dict[str, Any]) -> None:
    if msg_type == "stream":
        print_stream(content.get("text", ""))
    elif msg_type == "error":
        print_error(content.get("evalue", ""))


async def _boot() -> tuple[LocalHost, ExecutionKernel]:
    setting_registry = JsonSettingRegistry(settings.SETTINGS_DIR) if settings.SETTINGS_DIR else None
    host = LocalHost(setting_registry=setting_registry)
    container = FederationContainer(runtime=create_runtime())
    await host.load(container)
    kernel = await host.start_kernel(KERNEL_SPEC.name, on_output=_on_output)
    return host, kernel


async def _execute(host: LocalHost, kernel: ExecutionKernel, code: str) -> dict[str, Any]:
    with ModelProgress():
        reply = await host.execute(kernel, code)
    console.print()
    return reply


async def _run_prompt(prompt: str, model: Optional[str]) -> dict[str, Any]:
    host, kernel = await _boot()
    try:
        if model:
            reply = await _execute(host, kernel, f"%ai model {model}")
            if reply["status"] != "ok":
                return reply
        return await _execute(host, kernel, prompt)
    finally:
        await host.shutdown()


async def _shell(model: Optional[str]) -> None:
    host, kernel = await _boot()
    try:
        if model:
            await _execute(host, kernel, f"%ai model {model}")
        while True:
            try:
                code = console.input("[dim]chatkernel>[/dim] ")
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            if code.strip().lower() in EXIT_WORDS:
                break
            if not code.strip():
                continue
            await _execute(host, kernel, code)
    finally:
        await host.shutdown()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def models() -> None:
    """
    List the models the kernel can use.

    The default model (plugin settings aside) is marked.
    """
    default = resolve_default_model()
    rows = [[name, "yes" if name == default else ""] for name in MODEL_CATALOG]
    print_table("Models", ["Name", "Default"], rows, styles=["cyan", "green"])


@app.command()
def spec(
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the kernel spec as JSON.",
    ),
) -> None:
    """
    Show the kernel spec registered with the host.
    """
    data = KERNEL_SPEC.to_dict()
    if as_json:
        print_json(data, highlight=False)
        return
    print_key_value(
        [
            ("Name", data["name"]),
            ("Display name", data["display_name"]),
            ("Language", data["language"]),
        ],
        title="Kernel spec",
    )


@app.command()
def run(
    prompt: str = typer.Argument(
        ...,
        help="Prompt (or %ai magic command) to execute.",
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Model to switch to before executing.",
    ),
) -> None:
    """
    Execute a single cell and stream the reply.

    Exits with status 1 when the kernel replies with an error.
    """
    reply = asyncio.run(_run_prompt(prompt, model))
    if reply.get("status") != "ok":
        raise typer.Exit(1)


@app.command()
def shell(
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Model to switch to before the first cell.",
    ),
) -> None:
    """
    Start an interactive chat shell.

    Each line is executed as a cell.  Type [cyan]exit[/cyan] or
    [cyan]quit[/cyan] to leave.
    """
    console.print(Panel.fit(
        "chatkernel interactive shell",
        subtitle=f"Kernel: {KERNEL_SPEC.display_name}",
    ))
    console.print("Type [cyan]%ai help[/cyan] for magic commands, [cyan]exit[/cyan] to quit")
    console.print()
    asyncio.run(_shell(model))


__all__ = [
    "app",
    "console",
    "err_console",
    "__version__",
]


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
