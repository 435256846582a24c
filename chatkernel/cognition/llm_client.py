"""Local language-model runtime for chatkernel.

The session manager only relies on the runtime contract defined here:

- ``ModelRuntime.create_handle(model_id)`` builds a handle bound to a model
- ``ModelHandle.availability()`` reports whether the model can run now
- ``ModelHandle.create_session()`` downloads assets / warms the model up
- ``ModelHandle.stream_text(messages)`` yields reply fragments in order

:class:`OllamaRuntime` implements the contract against a local Ollama
server over its HTTP API, using *httpx* (async, streaming).
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Callable, Protocol, runtime_checkable

import httpx

from chatkernel.cognition.models import ModelUnavailable
from chatkernel.config.settings import settings

logger = logging.getLogger(__name__)

# Runtime progress hook: (fraction in [0, 1], status text).
ProgressHook = Callable[[float, str], None]

ChatMessage = dict[str, str]


class Availability(str, enum.Enum):
    """Whether a model can serve requests right now."""

    AVAILABLE = "available"
    DOWNLOADABLE = "downloadable"
    DOWNLOADING = "downloading"
    UNAVAILABLE = "unavailable"

    @property
    def needs_download(self) -> bool:
        return self in (Availability.DOWNLOADABLE, Availability.DOWNLOADING)


# ---------------------------------------------------------------------------
# Runtime contract
# ---------------------------------------------------------------------------

@runtime_checkable
class ModelHandle(Protocol):
    """A model bound to one identifier."""

    model_id: str

    def on_progress(self, hook: ProgressHook) -> None:
        ...

    async def availability(self) -> Availability:
        ...

    async def create_session(self) -> None:
        ...

    def stream_text(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        ...


@runtime_checkable
class ModelRuntime(Protocol):
    """Factory of :class:`ModelHandle` objects."""

    def create_handle(self, model_id: str) -> ModelHandle:
        ...


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

class OllamaHandle:
    """Handle on one model served by a local Ollama server.

    Parameters
    ----------
    model_id:
        Ollama model tag, e.g. ``"llama3.2:3b"``.
    host:
        Server base URL.
    connect_timeout:
        Seconds to wait for a connection.  Reads are not timed out, a
        stalled stream stalls the request.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        model_id: str,
        host: str,
        connect_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model_id = model_id
        self.host = host
        self._connect_timeout = connect_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._hooks: list[ProgressHook] = []

    # -- plumbing -----------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.host,
                timeout=httpx.Timeout(None, connect=self._connect_timeout),
                transport=self._transport,
            )
        return self._client

    def on_progress(self, hook: ProgressHook) -> None:
        self._hooks.append(hook)

    def _report(self, progress: float, text: str) -> None:
        for hook in list(self._hooks):
            hook(progress, text)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- contract -----------------------------------------------------------

    async def availability(self) -> Availability:
        """Check the server and its local model list."""
        try:
            resp = await self._http().get("/api/tags")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Ollama server at %s not usable: %s", self.host, e)
            return Availability.UNAVAILABLE

        names: set[str] = set()
        for entry in resp.json().get("models", []):
            for key in ("name", "model"):
                name = entry.get(key)
                if name:
                    names.add(name)
                    names.add(name.removesuffix(":latest"))

        if self.model_id in names:
            return Availability.AVAILABLE
        return Availability.DOWNLOADABLE

    async def create_session(self) -> None:
        """Pull the model, reporting progress, until the server reports success.

        Raises:
            ModelUnavailable: The server is unreachable or the pull failed.
        """
        logger.info("Pulling model %s from %s", self.model_id, self.host)
        self._report(0.0, f"Downloading {self.model_id}")
        payload = {"model": self.model_id, "stream": True}
        try:
            async with self._http().stream("POST", "/api/pull", json=payload) as resp:
                resp.raise_for_status()
                async for data in _ndjson(resp):
                    if "error" in data:
                        raise ModelUnavailable(self.model_id, str(data["error"]))
                    status = str(data.get("status", ""))
                    total = data.get("total")
                    completed = data.get("completed")
                    if total and completed is not None:
                        self._report(completed / total, status)
                    elif status:
                        self._report(1.0 if status == "success" else 0.0, status)
        except httpx.HTTPError as e:
            raise ModelUnavailable(self.model_id, f"download failed: {e}") from e

        self._report(1.0, f"{self.model_id} ready")

    async def stream_text(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Stream a chat completion, yielding non-empty content fragments.

        Raises:
            ModelUnavailable: The server rejected the request mid-way.
        """
        payload: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "stream": True,
        }
        try:
            async with self._http().stream("POST", "/api/chat", json=payload) as resp:
                resp.raise_for_status()
                async for data in _ndjson(resp):
                    if "error" in data:
                        raise ModelUnavailable(self.model_id, str(data["error"]))
                    content = (data.get("message") or {}).get("content", "")
                    if content:
                        yield content
                    if data.get("done"):
                        break
        except httpx.HTTPError as e:
            raise ModelUnavailable(self.model_id, str(e)) from e

    def __repr__(self) -> str:
        return f"<OllamaHandle {self.model_id} @ {self.host}>"


class OllamaRuntime:
    """Create :class:`OllamaHandle` objects for a local Ollama server.

    Parameters
    ----------
    host:
        Server base URL.  Falls back to ``settings.OLLAMA_HOST``.
    connect_timeout:
        Falls back to ``settings.CONNECT_TIMEOUT``.
    transport:
        Optional httpx transport shared by every handle.
    """

    def __init__(
        self,
        host: str | None = None,
        connect_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.host = (host or settings.OLLAMA_HOST).rstrip("/")
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT
        )
        self._transport = transport

    def create_handle(self, model_id: str) -> OllamaHandle:
        return OllamaHandle(
            model_id,
            self.host,
            connect_timeout=self.connect_timeout,
            transport=self._transport,
        )


async def _ndjson(resp: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Decode a newline-delimited JSON response body."""
    async for line in resp.aiter_lines():
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed stream line: %r", line[:200])


def create_runtime() -> OllamaRuntime:
    """Create the default runtime from settings."""
    return OllamaRuntime(
        host=settings.OLLAMA_HOST,
        connect_timeout=settings.CONNECT_TIMEOUT,
    )
