"""
Module federation for chatkernel.

The host populates a shared registry (package name → version → factory)
and loads the kernel plugin through a :class:`FederationContainer`:

    container = FederationContainer()
    container.init(registry)
    load = await container.get("./index")
    module = await load()          # {"__esModule": True, "default": [...]}

Pieces:
    - FederationContext: Owns the registry and the settings snapshot
    - SharedRegistryResolver: Resolves package names to exports
    - FederationContainer: The ``init`` / ``get`` surface
"""

from chatkernel.federation.context import FederationContext, SharedRegistry
from chatkernel.federation.registry import (
    CapabilityProvider,
    FederationError,
    InvalidFactory,
    MissingExport,
    NoVersionAvailable,
    PackageNotFound,
    RegistryUnavailable,
    SharedModule,
    SharedRegistryResolver,
    UnknownModule,
    normalize_exports,
    publish_global_registry,
    read_export,
    share,
    withdraw_global_registry,
)
from chatkernel.federation.container import (
    INTEROP_MARKER,
    KERNEL_PACKAGE,
    MODULE_IDS,
    SETTINGS_PACKAGE,
    FederationContainer,
)

__all__ = [
    # Context
    "FederationContext",
    "SharedRegistry",
    # Resolver
    "CapabilityProvider",
    "SharedModule",
    "SharedRegistryResolver",
    "normalize_exports",
    "publish_global_registry",
    "read_export",
    "share",
    "withdraw_global_registry",
    # Errors
    "FederationError",
    "InvalidFactory",
    "MissingExport",
    "NoVersionAvailable",
    "PackageNotFound",
    "RegistryUnavailable",
    "UnknownModule",
    # Container
    "FederationContainer",
    "INTEROP_MARKER",
    "KERNEL_PACKAGE",
    "MODULE_IDS",
    "SETTINGS_PACKAGE",
]
