"""
The chat execution kernel.

An :class:`ExecutionKernel` answers the host's protocol requests for one
notebook session.  Code cells are either ``%ai`` magic commands, answered
locally, or prompts, streamed through the session's model.

Kernel States:
    - UNINITIALIZED: No model bound yet
    - MODEL_READY: A model handle is bound
    - TERMINATED: Shut down; absorbing

The kernel does not extend a host base class.  It wraps the host context
it is given (parent header, execution counter, output publishing).

Example:
    kernel = ExecutionKernel(context, ModelSessionManager(runtime))
    reply = await kernel.execute_request({"code": "Write a haiku"})
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from chatkernel.cognition.session import ModelSessionManager
from chatkernel.kernel import protocol
from chatkernel.kernel.magic import MagicInterpreter
from chatkernel.kernel.protocol import HostContext

logger = logging.getLogger(__name__)


class KernelState(str, Enum):
    """States a kernel can be in.

    Attributes:
        UNINITIALIZED: No model has been initialized yet.
        MODEL_READY: A model handle is bound to the session.
        TERMINATED: The kernel has been shut down.
    """

    UNINITIALIZED = "uninitialized"
    MODEL_READY = "model_ready"
    TERMINATED = "terminated"


class KernelShutDown(RuntimeError):
    """A request arrived after shutdown."""

    def __init__(self) -> None:
        super().__init__("Kernel has been shut down")


class ExecutionKernel:
    """Protocol handler set for one notebook session.

    Attributes:
        context: Host context the kernel publishes through.
        session: The session's model manager.
        magic: Interpreter for ``%ai`` commands.
    """

    def __init__(self, context: HostContext, session: ModelSessionManager) -> None:
        self.context = context
        self.session = session
        self.magic = MagicInterpreter(session)
        self._terminated = False

    @property
    def state(self) -> KernelState:
        if self._terminated:
            return KernelState.TERMINATED
        if self.session.is_initialized:
            return KernelState.MODEL_READY
        return KernelState.UNINITIALIZED

    # -- dispatch -------------------------------------------------------------

    def _handlers(self) -> dict[str, Callable[[dict[str, Any]], Awaitable[Any]]]:
        return {
            "execute_request": self.execute_request,
            "kernel_info_request": self.kernel_info_request,
            "complete_request": self.complete_request,
            "inspect_request": self.inspect_request,
            "is_complete_request": self.is_complete_request,
            "comm_info_request": self.comm_info_request,
            "history_request": self.history_request,
            "shutdown_request": self.shutdown_request,
            "input_reply": self.input_reply,
            "comm_open": self.comm_open,
            "comm_msg": self.comm_msg,
            "comm_close": self.comm_close,
        }

    async def handle(self, msg_type: str, content: dict[str, Any] | None = None) -> Any:
        """Dispatch a protocol message to its handler.

        Raises:
            ValueError: If *msg_type* is not handled by this kernel.
        """
        handler = self._handlers().get(msg_type)
        if handler is None:
            raise ValueError(f"Unsupported message type: {msg_type}")
        return await handler(content or {})

    # -- output ---------------------------------------------------------------

    def _stream(self, text: str) -> None:
        self.context.stream(protocol.stream_content(text), self.context.parent_header)

    def _publish_error(self, message: str) -> None:
        self.context.publish_execute_error(
            protocol.error_content(message), self.context.parent_header
        )

    # -- execution ------------------------------------------------------------

    async def execute_request(self, content: dict[str, Any]) -> dict[str, Any]:
        """Run a cell: a magic command or a prompt streamed from the model."""
        code = str(content.get("code") or "")
        try:
            if self._terminated:
                raise KernelShutDown()

            result = await self.magic.interpret(code)
            if result is not None:
                self._stream(result)
                return protocol.execute_ok(self.context.execution_count)

            await self.session.send(code, self._stream)
            return protocol.execute_ok(self.context.execution_count)

        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.debug("Execution failed: %s", message)
            self._publish_error(message)
            return protocol.execute_error(self.context.execution_count, message)

    # -- introspection --------------------------------------------------------

    async def kernel_info_request(self, content: dict[str, Any] | None = None) -> dict[str, Any]:
        return protocol.kernel_info()

    async def complete_request(self, content: dict[str, Any]) -> dict[str, Any]:
        cursor = content.get("cursor_pos") or 0
        return {
            "status": protocol.STATUS_OK,
            "matches": [],
            "cursor_start": cursor,
            "cursor_end": cursor,
            "metadata": {},
        }

    async def inspect_request(self, content: dict[str, Any]) -> dict[str, Any]:
        return {"status": protocol.STATUS_OK, "found": False, "data": {}, "metadata": {}}

    async def is_complete_request(self, content: dict[str, Any]) -> dict[str, Any]:
        # Every cell is a complete prompt; continuation input is never requested.
        return {"status": protocol.STATUS_COMPLETE, "indent": ""}

    async def comm_info_request(self, content: dict[str, Any]) -> dict[str, Any]:
        return {"status": protocol.STATUS_OK, "comms": {}}

    async def history_request(self, content: dict[str, Any]) -> dict[str, Any]:
        return {"status": protocol.STATUS_OK, "history": []}

    # -- lifecycle ------------------------------------------------------------

    async def shutdown_request(self, content: dict[str, Any] | None = None) -> dict[str, Any]:
        """Terminate the kernel and drop its model handle."""
        if not self._terminated:
            self._terminated = True
            await self.session.shutdown()
            logger.info("Kernel shut down")
        return {"status": protocol.STATUS_OK, "restart": False}

    # -- unsupported channels -------------------------------------------------

    async def input_reply(self, content: dict[str, Any]) -> None:
        pass

    async def comm_open(self, content: dict[str, Any]) -> None:
        pass

    async def comm_msg(self, content: dict[str, Any]) -> None:
        pass

    async def comm_close(self, content: dict[str, Any]) -> None:
        pass

    def __repr__(self) -> str:
        return f"<ExecutionKernel state={self.state.value} model={self.session.get_model_name()}>"
