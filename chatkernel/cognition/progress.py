"""Model download / session-setup progress broadcast.

Progress is a side channel: the session manager publishes and moves on.
Nothing on the request path waits for, or depends on, a subscriber.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

PROGRESS_EVENT = "chatkernel:model-progress"


@dataclass
class ProgressEvent:
    """One progress report.

    Attributes:
        progress: Completion fraction, clamped to ``[0, 1]``.
        text: Human-readable status line.
        model: Model the report concerns, if known.
        timestamp: When the report was created.
    """

    progress: float
    text: str = ""
    model: str | None = None
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        self.progress = min(1.0, max(0.0, float(self.progress)))

    @property
    def name(self) -> str:
        return PROGRESS_EVENT

    def to_dict(self) -> dict[str, Any]:
        return {"progress": self.progress, "text": self.text}


ProgressListener = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Publish/subscribe channel for :class:`ProgressEvent` objects."""

    def __init__(self) -> None:
        self._listeners: list[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> None:
        """Add a listener."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ProgressListener) -> None:
        """Remove a listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, event: ProgressEvent) -> None:
        """Deliver *event* to every listener, ignoring their failures."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Progress listener error: {e}")


# Process-wide broadcast used when no channel is injected.
progress_channel = ProgressChannel()
