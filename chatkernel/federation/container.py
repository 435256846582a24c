"""
Module federation container for chatkernel.

The host loads plugins through a container exposing two calls:

    container.init(registry)       store the host's shared registry
    await container.get(module_id) return an async thunk for a module

Awaiting the thunk resolves the host capabilities the kernel plugin needs
from the shared registry, builds the plugin, and returns the module in the
shape the host's loader reads::

    {"__esModule": True, "default": [PluginDescriptor, ...]}

Federation failures (missing registry, package, version, export, unknown
module) propagate to the host's loader untouched.

Example:
    container = FederationContainer()
    container.init(host_registry)
    load = await container.get("./index")
    module = await load()
    for plugin in module["default"]:
        ...
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from chatkernel.cognition.llm_client import ModelRuntime
from chatkernel.cognition.progress import ProgressChannel
from chatkernel.federation.context import FederationContext, SharedRegistry
from chatkernel.federation.registry import (
    CapabilityProvider,
    PackageNotFound,
    SharedRegistryResolver,
    UnknownModule,
    read_export,
)
from chatkernel.plugins.kernel_plugin import create_kernel_plugin

logger = logging.getLogger(__name__)

SCOPE = "lite-kernel"
MODULE_IDS = ("./index", "./extension")
INTEROP_MARKER = "__esModule"

KERNEL_PACKAGE = "@jupyterlite/kernel"
SETTINGS_PACKAGE = "@jupyterlab/settingregistry"

FederatedModule = dict[str, Any]
ModuleThunk = Callable[[], Awaitable[FederatedModule]]


class FederationContainer:
    """Runtime-loadable container exposing the chat kernel plugin.

    Attributes:
        context: Owned federation state (registry, settings snapshot).
        resolver: Capability provider used to resolve shared packages.
        kernel_package: Shared package exporting ``BaseKernel`` and
            ``IKernelSpecs``.
        settings_package: Optional shared package exporting
            ``ISettingRegistry``.
    """

    def __init__(
        self,
        context: FederationContext | None = None,
        *,
        resolver: CapabilityProvider | None = None,
        runtime: ModelRuntime | None = None,
        progress: ProgressChannel | None = None,
        kernel_package: str = KERNEL_PACKAGE,
        settings_package: str = SETTINGS_PACKAGE,
    ) -> None:
        self.context = context if context is not None else FederationContext()
        self.resolver = resolver if resolver is not None else SharedRegistryResolver(self.context)
        self.kernel_package = kernel_package
        self.settings_package = settings_package
        self._runtime = runtime
        self._progress = progress

    def init(self, registry: SharedRegistry) -> None:
        """Store the host's shared registry.  Later calls replace it."""
        logger.info("Federation container %s initialized with shared registry", SCOPE)
        self.context.set_registry(registry)

    async def get(self, module_id: str) -> ModuleThunk:
        """Return an async thunk loading *module_id*.

        Raises:
            UnknownModule: *module_id* is not exposed by this container.
        """
        logger.debug("Module requested: %s", module_id)
        if module_id not in MODULE_IDS:
            raise UnknownModule(module_id)
        return self._load_module

    async def _load_module(self) -> FederatedModule:
        logger.info("Loading plugin module from shared registry")

        kernel_exports = await self.resolver.resolve(self.kernel_package)
        base_kernel = read_export(kernel_exports, "BaseKernel", self.kernel_package)
        kernelspecs_token = read_export(kernel_exports, "IKernelSpecs", self.kernel_package)

        try:
            settings_exports = await self.resolver.resolve(self.settings_package)
        except PackageNotFound:
            logger.debug("%s not shared, plugin settings disabled", self.settings_package)
            settings_token = None
        else:
            settings_token = read_export(
                settings_exports, "ISettingRegistry", self.settings_package
            )

        plugin = create_kernel_plugin(
            base_kernel,
            kernelspecs_token,
            self.context,
            settings_token=settings_token,
            runtime=self._runtime,
            progress=self._progress,
        )
        plugins = [plugin]
        logger.info("Plugin module ready: %s", ", ".join(p.id for p in plugins))
        return {INTEROP_MARKER: True, "default": plugins}

    def __repr__(self) -> str:
        return f"<FederationContainer scope={SCOPE} {self.context!r}>"
