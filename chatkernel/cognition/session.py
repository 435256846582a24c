"""Per-kernel model session management.

A :class:`ModelSessionManager` owns exactly one model handle for the kernel
instance that created it.  The model is initialized lazily by the first
``send`` or eagerly by ``set_model``; handles are never shared between
sessions.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from chatkernel.cognition.llm_client import Availability, ModelHandle, ModelRuntime
from chatkernel.cognition.models import (
    DEFAULT_MODEL,
    MODEL_CATALOG,
    ModelUnavailable,
    resolve_default_model,
    validate_model,
)
from chatkernel.cognition.progress import ProgressChannel, ProgressEvent, progress_channel

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[Any] | Any]


@dataclass
class ModelSession:
    """State of one kernel's model.

    ``handle`` is present iff ``initialized``; ``model_name`` is set exactly
    when ``initialized``.
    """

    model_name: str | None = None
    handle: ModelHandle | None = None

    @property
    def initialized(self) -> bool:
        return self.handle is not None


class ModelSessionManager:
    """Lifecycle and streaming completion for a single kernel's model.

    Parameters
    ----------
    runtime:
        Builds model handles.
    catalog:
        Model names accepted by :meth:`initialize_model`.
    default_model:
        Hardcoded default used when no override is configured.
    default_override:
        Returns the settings-provided default, or ``None``.  Called on every
        lazy initialization so the latest settings value is used.
    progress:
        Channel model progress is republished on.  Defaults to the
        process-wide channel.
    """

    def __init__(
        self,
        runtime: ModelRuntime,
        *,
        catalog: Sequence[str] = MODEL_CATALOG,
        default_model: str = DEFAULT_MODEL,
        default_override: Callable[[], str | None] | None = None,
        progress: ProgressChannel | None = None,
    ) -> None:
        self._runtime = runtime
        self._catalog = tuple(catalog)
        self._default_model = default_model
        self._default_override = default_override
        self._progress = progress if progress is not None else progress_channel
        self._session = ModelSession()
        self._init_lock = asyncio.Lock()

    # -- state ----------------------------------------------------------------

    @property
    def catalog(self) -> tuple[str, ...]:
        return self._catalog

    @property
    def is_initialized(self) -> bool:
        return self._session.initialized

    @property
    def handle(self) -> ModelHandle | None:
        return self._session.handle

    def get_model_name(self) -> str | None:
        return self._session.model_name

    def resolve_default_model(self) -> str:
        override = self._default_override() if self._default_override else None
        return resolve_default_model(override, fallback=self._default_model)

    # -- lifecycle ------------------------------------------------------------

    async def initialize_model(self, name: str) -> ModelHandle:
        """Bind a fresh handle for *name* and return it.

        Raises:
            InvalidModel: *name* is not in the catalog.  State is unchanged.
        """
        validate_model(name, self._catalog)
        handle = self._runtime.create_handle(name)

        def republish(progress: float, text: str) -> None:
            self._progress.publish(ProgressEvent(progress=progress, text=text, model=name))

        handle.on_progress(republish)

        previous = self._session.handle
        self._session = ModelSession(model_name=name, handle=handle)
        logger.info("Model session initialized with %s", name)

        if previous is not None and previous is not handle:
            await _close_handle(previous)
        return handle

    async def set_model(self, name: str) -> str:
        """Switch to *name* immediately and describe what happened.

        Raises:
            InvalidModel: *name* is not in the catalog.  State is unchanged.
        """
        async with self._init_lock:
            was_initialized = self.is_initialized
            previous = self._session.model_name
            default = self.resolve_default_model()
            await self.initialize_model(name)

        if was_initialized:
            return f'Model changed from "{previous}" to "{name}".'
        if name != default:
            return f'Model set to "{name}" (changed from default "{default}").'
        return f'Model set to "{name}".'

    async def shutdown(self) -> None:
        """Drop the model handle, closing it when it supports that."""
        previous = self._session.handle
        self._session = ModelSession()
        if previous is not None:
            await _close_handle(previous)

    # -- completion -----------------------------------------------------------

    async def _ensure_initialized(self) -> ModelHandle:
        async with self._init_lock:
            handle = self._session.handle
            if handle is None:
                handle = await self.initialize_model(self.resolve_default_model())
            return handle

    async def send(self, prompt: str, on_chunk: ChunkCallback | None = None) -> str:
        """Stream a reply to *prompt*, forwarding each fragment to *on_chunk*.

        Fragments are delivered in stream order, all before this coroutine
        returns, and their concatenation is the returned reply.

        Raises:
            InvalidModel: The resolved default model is not in the catalog.
            ModelUnavailable: The model cannot run or failed to download.
        """
        handle = await self._ensure_initialized()
        model = handle.model_id

        availability = Availability(await handle.availability())
        logger.debug("Model %s availability: %s", model, availability.value)
        if availability is Availability.UNAVAILABLE:
            raise ModelUnavailable(model, "not supported in this environment")
        if availability.needs_download:
            await handle.create_session()

        logger.debug("Sending prompt to %s: %r", model, prompt[:200])
        parts: list[str] = []
        async for chunk in handle.stream_text([{"role": "user", "content": prompt}]):
            parts.append(chunk)
            if on_chunk is not None:
                result = on_chunk(chunk)
                if inspect.isawaitable(result):
                    await result

        reply = "".join(parts)
        logger.debug("Got %d chars from %s", len(reply), model)
        return reply

    def __repr__(self) -> str:
        state = self._session.model_name or "uninitialized"
        return f"<ModelSessionManager {state}>"


async def _close_handle(handle: ModelHandle) -> None:
    close = getattr(handle, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result
