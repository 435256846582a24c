"""Execution-protocol message shapes used by the kernel.

Only the subset of the interactive-computing protocol the kernel answers is
covered.  Field names and status values must match the host bit for bit.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from chatkernel import __version__

PROTOCOL_VERSION = "5.3"
IMPLEMENTATION = "chatkernel"

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_COMPLETE = "complete"

GENERIC_ERROR_NAME = "Error"

LANGUAGE_INFO: dict[str, str] = {
    "name": "markdown",
    "version": "0.0.0",
    "mimetype": "text/markdown",
    "file_extension": ".md",
}

BANNER = "Local LLM-backed chat kernel"


@runtime_checkable
class HostContext(Protocol):
    """What the kernel needs from the host's per-kernel runtime.

    The host owns the parent header of the request being served and the
    execution counter; the kernel only reads them.
    """

    parent_header: dict[str, Any]
    execution_count: int

    def stream(self, content: dict[str, Any], parent_header: dict[str, Any] | None = None) -> None:
        """Publish a ``stream`` message."""
        ...

    def publish_execute_error(
        self, content: dict[str, Any], parent_header: dict[str, Any] | None = None
    ) -> None:
        """Publish an ``error`` message."""
        ...


def stream_content(text: str, name: str = "stdout") -> dict[str, Any]:
    return {"name": name, "text": text}


def error_content(message: str) -> dict[str, Any]:
    return {"ename": GENERIC_ERROR_NAME, "evalue": message, "traceback": []}


def execute_ok(execution_count: int) -> dict[str, Any]:
    return {
        "status": STATUS_OK,
        "execution_count": execution_count,
        "payload": [],
        "user_expressions": {},
    }


def execute_error(execution_count: int, message: str) -> dict[str, Any]:
    return {
        "status": STATUS_ERROR,
        "execution_count": execution_count,
        **error_content(message),
    }


def kernel_info() -> dict[str, Any]:
    return {
        "status": STATUS_OK,
        "protocol_version": PROTOCOL_VERSION,
        "implementation": IMPLEMENTATION,
        "implementation_version": __version__,
        "language_info": dict(LANGUAGE_INFO),
        "banner": BANNER,
        "help_links": [],
    }
