"""Explicitly owned federation state.

The shared registry and the settings-derived default model are process-level
facts set from outside (the host at startup, the settings source on every
change).  Rather than keeping them in module globals they live on a
:class:`FederationContext` that is handed to the container at construction.

Both values follow last-write-wins semantics with no versioning.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from chatkernel.config.settings_bridge import SettingsSnapshot

logger = logging.getLogger(__name__)

SharedRegistry = Mapping[str, Mapping[str, Any]]


class FederationContext:
    """Holds the shared registry and the settings snapshot.

    Parameters
    ----------
    registry:
        Shared registry to start with.  Usually left empty and supplied by
        the host through ``container.init``.
    settings:
        Snapshot updated by the settings bridge.
    """

    def __init__(
        self,
        registry: SharedRegistry | None = None,
        settings: SettingsSnapshot | None = None,
    ) -> None:
        self._registry = registry
        self.settings = settings if settings is not None else SettingsSnapshot()

    @property
    def registry(self) -> SharedRegistry | None:
        return self._registry

    def set_registry(self, registry: SharedRegistry) -> None:
        """Store *registry*; a later call replaces it."""
        if self._registry is not None and self._registry is not registry:
            logger.debug("Replacing previously stored shared registry")
        self._registry = registry

    def clear_registry(self) -> None:
        self._registry = None

    def default_model_override(self) -> str | None:
        """Default model chosen through plugin settings, if any."""
        return self.settings.default_model

    def __repr__(self) -> str:
        packages = len(self._registry) if self._registry is not None else 0
        return (
            f"<FederationContext packages={packages} "
            f"default_model={self.settings.default_model!r}>"
        )
