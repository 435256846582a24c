"""Cognition package -- model catalog, runtime, progress, and model sessions."""

from __future__ import annotations

from chatkernel.cognition.models import (
    DEFAULT_MODEL,
    MODEL_CATALOG,
    InvalidModel,
    ModelError,
    ModelUnavailable,
    resolve_default_model,
    validate_model,
)
from chatkernel.cognition.progress import (
    PROGRESS_EVENT,
    ProgressChannel,
    ProgressEvent,
    progress_channel,
)
from chatkernel.cognition.llm_client import (
    Availability,
    ModelHandle,
    ModelRuntime,
    OllamaHandle,
    OllamaRuntime,
    create_runtime,
)
from chatkernel.cognition.session import (
    ModelSession,
    ModelSessionManager,
)

__all__ = [
    # Catalog
    "DEFAULT_MODEL",
    "MODEL_CATALOG",
    "InvalidModel",
    "ModelError",
    "ModelUnavailable",
    "resolve_default_model",
    "validate_model",
    # Progress
    "PROGRESS_EVENT",
    "ProgressChannel",
    "ProgressEvent",
    "progress_channel",
    # Runtime
    "Availability",
    "ModelHandle",
    "ModelRuntime",
    "OllamaHandle",
    "OllamaRuntime",
    "create_runtime",
    # Sessions
    "ModelSession",
    "ModelSessionManager",
]
