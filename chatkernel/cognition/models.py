"""Static model catalog and default-model resolution.

Both the ``%ai model`` magic and the programmatic switch validate model
names against :data:`MODEL_CATALOG`.  The default is resolved from, in
order: the plugin settings override, ``settings.DEFAULT_MODEL``, and
:data:`DEFAULT_MODEL`.
"""

from __future__ import annotations

import logging
from typing import Sequence

from chatkernel.config.settings import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

MODEL_CATALOG: tuple[str, ...] = (
    "smollm2:360m",
    "tinyllama:1.1b",
    "llama3.2:3b",
    "mistral:7b",
)

DEFAULT_MODEL = "llama3.2:3b"

# Entries shown by the ``%ai model`` listing before it is truncated.
MAX_LISTED_MODELS = 20


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ModelError(Exception):
    """Base class for model lifecycle failures."""


class InvalidModel(ModelError, ValueError):
    """The requested model is not in the catalog.  Session state is unchanged."""

    def __init__(self, name: str, catalog: Sequence[str] = ()):
        self.name = name
        self.catalog = list(catalog)
        super().__init__(
            f"Unknown model {name!r}. Use \"%ai model\" to list available models."
        )


class ModelUnavailable(ModelError):
    """The model cannot run in this environment or failed to download."""

    def __init__(self, model: str, reason: str = ""):
        self.model = model
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Model {model} is unavailable{detail}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_known_model(name: str, catalog: Sequence[str] = MODEL_CATALOG) -> bool:
    return name in catalog


def validate_model(name: str, catalog: Sequence[str] = MODEL_CATALOG) -> str:
    """Return *name* if it is in *catalog*, else raise :class:`InvalidModel`."""
    if name not in catalog:
        raise InvalidModel(name, catalog)
    return name


def resolve_default_model(
    override: str | None = None,
    fallback: str = DEFAULT_MODEL,
) -> str:
    """Pick the default model: settings override, environment, then *fallback*."""
    if override:
        return override
    if settings.DEFAULT_MODEL:
        return settings.DEFAULT_MODEL
    return fallback
