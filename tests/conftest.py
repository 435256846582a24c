"""Shared fixtures: an in-memory model runtime and fresh progress channels."""

from __future__ import annotations

from typing import Any, AsyncIterator

import pytest

from chatkernel.cognition.llm_client import Availability
from chatkernel.cognition.models import ModelUnavailable
from chatkernel.cognition.progress import ProgressChannel


class StubHandle:
    """Model handle that replays canned fragments."""

    def __init__(
        self,
        model_id: str,
        fragments: list[str],
        availability: Availability = Availability.AVAILABLE,
        download_error: str | None = None,
    ) -> None:
        self.model_id = model_id
        self.fragments = list(fragments)
        self._availability = availability
        self._download_error = download_error
        self.hooks: list[Any] = []
        self.requests: list[list[dict[str, str]]] = []
        self.sessions_created = 0
        self.closed = False

    def on_progress(self, hook: Any) -> None:
        self.hooks.append(hook)

    async def availability(self) -> Availability:
        return self._availability

    async def create_session(self) -> None:
        for hook in self.hooks:
            hook(0.5, f"Downloading {self.model_id}")
        if self._download_error:
            raise ModelUnavailable(self.model_id, self._download_error)
        self.sessions_created += 1
        self._availability = Availability.AVAILABLE
        for hook in self.hooks:
            hook(1.0, f"{self.model_id} ready")

    async def stream_text(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        self.requests.append(messages)
        for fragment in self.fragments:
            yield fragment

    async def close(self) -> None:
        self.closed = True


class StubRuntime:
    """Runtime building :class:`StubHandle` objects and remembering them."""

    def __init__(
        self,
        fragments: list[str] | None = None,
        availability: Availability = Availability.AVAILABLE,
        download_error: str | None = None,
        error: Exception | None = None,
    ) -> None:
        self.fragments = fragments if fragments is not None else ["He", "llo"]
        self.availability = availability
        self.download_error = download_error
        self.error = error
        self.handles: list[StubHandle] = []

    @property
    def created(self) -> list[str]:
        return [h.model_id for h in self.handles]

    def create_handle(self, model_id: str) -> StubHandle:
        if self.error is not None:
            raise self.error
        handle = StubHandle(
            model_id,
            self.fragments,
            availability=self.availability,
            download_error=self.download_error,
        )
        self.handles.append(handle)
        return handle


@pytest.fixture
def stub_runtime() -> StubRuntime:
    return StubRuntime()


@pytest.fixture
def make_runtime():
    """Factory for runtimes with custom behaviour."""
    return StubRuntime


@pytest.fixture
def progress() -> ProgressChannel:
    return ProgressChannel()


@pytest.fixture(autouse=True)
def _no_env_default_model(monkeypatch):
    """Keep a developer's CHATKERNEL_DEFAULT_MODEL out of default resolution."""
    from chatkernel.config.settings import settings

    monkeypatch.setattr(settings, "DEFAULT_MODEL", None)
