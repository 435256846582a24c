"""
Shared registry resolution for chatkernel federation.

The host keeps a shared registry mapping package names to the versions it
can provide, each version being a factory descriptor with a ``get``
callable.  This module turns a package name into that package's exports.

Resolution:
    1. Locate the registry (context first, process-wide fallback second)
    2. Look the package up and pick the first version in enumeration order
    3. Invoke the version's factory
    4. Normalise the result: await it if awaitable, then call it if callable

Example:
    from chatkernel.federation.context import FederationContext
    from chatkernel.federation.registry import SharedModule, SharedRegistryResolver

    registry = {"@jupyterlite/kernel": {"0.4.0": SharedModule(lambda: exports)}}
    resolver = SharedRegistryResolver(FederationContext(registry))
    kernel_exports = await resolver.resolve("@jupyterlite/kernel")
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from chatkernel.federation.context import FederationContext, SharedRegistry

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"

# Process-wide registries published by hosts that never call ``init``.
_global_registries: dict[str, SharedRegistry] = {}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class FederationError(Exception):
    """Base class for module federation failures.

    These are fatal for a plugin load and are never caught locally.
    """


class RegistryUnavailable(FederationError):
    """No shared registry has been provided."""

    def __init__(self, package: str):
        self.package = package
        super().__init__(f"Shared registry not initialized when requesting {package}")


class PackageNotFound(FederationError):
    """The requested package is not in the shared registry."""

    def __init__(self, package: str, available: list[str] | None = None):
        self.package = package
        self.available = available or []
        super().__init__(
            f"Shared module {package} not found in shared registry. "
            f"Available: {', '.join(self.available) or '(none)'}"
        )


class NoVersionAvailable(FederationError):
    """The package is registered without any version."""

    def __init__(self, package: str):
        self.package = package
        super().__init__(f"No versions available for {package}")


class InvalidFactory(FederationError):
    """The selected version does not provide a callable factory."""

    def __init__(self, package: str, version: str):
        self.package = package
        self.version = version
        super().__init__(f"Module {package}@{version} has no factory function")


class MissingExport(FederationError):
    """A resolved package does not export a required name."""

    def __init__(self, package: str, name: str):
        self.package = package
        self.name = name
        super().__init__(f"Shared module {package} does not export {name}")


class UnknownModule(FederationError):
    """The container was asked for a module it does not expose."""

    def __init__(self, module_id: str):
        self.module_id = module_id
        super().__init__(f"Unknown module: {module_id}")


# ---------------------------------------------------------------------------
# Registry entries
# ---------------------------------------------------------------------------

@dataclass
class SharedModule:
    """Factory descriptor for one version of a shared package.

    Attributes:
        get: Returns the exports, an awaitable of them, or a callable
            producing them.
        from_host: Whether the host itself provides this version.
    """

    get: Callable[[], Any]
    from_host: bool = True


def share(
    registry: dict[str, dict[str, Any]],
    package: str,
    version: str,
    get: Callable[[], Any],
) -> None:
    """Add a version of *package* to a mutable *registry*."""
    registry.setdefault(package, {})[version] = SharedModule(get=get)


def publish_global_registry(registry: SharedRegistry, scope: str = DEFAULT_SCOPE) -> None:
    """Publish *registry* as the process-wide fallback for *scope*."""
    _global_registries[scope] = registry


def withdraw_global_registry(scope: str = DEFAULT_SCOPE) -> None:
    _global_registries.pop(scope, None)


def global_registry(scope: str = DEFAULT_SCOPE) -> SharedRegistry | None:
    return _global_registries.get(scope)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

async def normalize_exports(value: Any) -> Any:
    """Unwrap a factory result into plain exports.

    Exactly two steps, in order: await *value* if it is awaitable, then
    call the result if it is callable.  Values that are neither pass
    through unchanged, so the function is a fixed point on plain exports.
    Exports are therefore expected to be a module, namespace or mapping,
    never a bare callable.
    """
    if inspect.isawaitable(value):
        value = await value
    if callable(value):
        value = value()
    return value


def read_export(exports: Any, name: str, package: str = "<exports>") -> Any:
    """Read *name* from a module-like object or a mapping.

    Raises:
        MissingExport: If *name* is not exported.
    """
    if isinstance(exports, Mapping):
        if name in exports:
            return exports[name]
    elif hasattr(exports, name):
        return getattr(exports, name)
    raise MissingExport(package, name)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

@runtime_checkable
class CapabilityProvider(Protocol):
    """Anything that can turn a package name into its exports."""

    async def resolve(self, package: str) -> Any:
        ...


class SharedRegistryResolver:
    """Resolve packages from the registry held by a :class:`FederationContext`.

    Parameters
    ----------
    context:
        Owner of the registry reference.
    scope:
        Name of the process-wide fallback registry to adopt when the
        context has none.
    """

    def __init__(self, context: FederationContext, scope: str = DEFAULT_SCOPE) -> None:
        self._context = context
        self._scope = scope

    def registry(self, package: str = "<registry>") -> SharedRegistry:
        """Return the active registry, adopting the fallback if needed.

        Raises:
            RegistryUnavailable: If neither the context nor the fallback
                has a registry.
        """
        registry = self._context.registry
        if registry is not None:
            return registry

        fallback = global_registry(self._scope)
        if fallback is None:
            raise RegistryUnavailable(package)

        logger.warning(
            "Using process-wide %r shared registry for %s", self._scope, package
        )
        self._context.set_registry(fallback)
        return fallback

    async def resolve(self, package: str) -> Any:
        """Resolve *package* to its exports.

        Raises:
            RegistryUnavailable: No registry has been provided.
            PackageNotFound: *package* is not registered.
            NoVersionAvailable: *package* is registered with no versions.
            InvalidFactory: The selected version has no callable ``get``.
        """
        registry = self.registry(package)

        versions = registry.get(package)
        if versions is None:
            raise PackageNotFound(package, list(registry.keys()))

        version_keys = list(versions.keys())
        if not version_keys:
            raise NoVersionAvailable(package)

        # Enumeration order, not "latest".
        version = version_keys[0]
        descriptor = versions[version]
        if isinstance(descriptor, Mapping):
            factory = descriptor.get("get")
        else:
            factory = getattr(descriptor, "get", None)

        if not callable(factory):
            raise InvalidFactory(package, version)

        exports = await normalize_exports(factory())
        logger.debug(f"Loaded shared module {package}@{version}")
        return exports
