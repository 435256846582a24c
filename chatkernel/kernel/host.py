"""
In-process reference host for chatkernel.

:class:`LocalHost` plays the notebook host's part end to end:

    1. Populate a shared registry with its kernel package (and, when it
       has a setting registry, the settings package)
    2. Hand the registry to a federation container and load a module
    3. Activate every auto-start plugin, passing one service per required
       capability and one (or ``None``) per optional capability
    4. Create kernels from registered kernel specs and drive them with
       protocol requests

The CLI and the end-to-end tests run on top of it.

Example:
    host = LocalHost()
    await host.load(FederationContainer())
    kernel = await host.start_kernel("http-chat")
    reply = await host.execute(kernel, "%ai model")
    await host.shutdown()
"""

from __future__ import annotations

import inspect
import logging
import uuid
from typing import Any, Callable

from chatkernel.federation.container import KERNEL_PACKAGE, SETTINGS_PACKAGE
from chatkernel.federation.registry import share
from chatkernel.kernel.kernel import ExecutionKernel
from chatkernel.plugins.sdk import PluginDescriptor, SettingRegistry, Token

logger = logging.getLogger(__name__)

KERNEL_PACKAGE_VERSION = "0.4.0"
SETTINGS_PACKAGE_VERSION = "4.0.0"

IKernelSpecs = Token(f"{KERNEL_PACKAGE}:IKernelSpecs", "Kernel spec registry")
ISettingRegistry = Token(f"{SETTINGS_PACKAGE}:ISettingRegistry", "Plugin settings")

# (msg_type, content, parent_header)
OutputSink = Callable[[str, dict[str, Any], dict[str, Any]], Any]


class PluginActivationError(Exception):
    """Raised when the host cannot activate a plugin."""

    def __init__(self, plugin_id: str, reason: str):
        self.plugin_id = plugin_id
        self.reason = reason
        super().__init__(f"Failed to activate plugin '{plugin_id}': {reason}")


class UnknownKernelSpec(LookupError):
    """No kernel spec is registered under the requested name."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        super().__init__(
            f"No kernel spec named {name!r}. Available: {', '.join(available) or '(none)'}"
        )


# ---------------------------------------------------------------------------
# Per-kernel host context
# ---------------------------------------------------------------------------

class LocalHostContext:
    """Host-side runtime of one kernel: headers, counter, output publishing.

    This is what the host exports as ``BaseKernel``.  Every published
    message is recorded in :attr:`outputs` and forwarded to the sinks.

    Parameters
    ----------
    options:
        Kernel creation options.  ``id`` and ``name`` are kept; an
        ``on_output`` callable is added as a sink.
    """

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        options = dict(options or {})
        self.id: str = options.get("id") or uuid.uuid4().hex
        self.name: str = options.get("name", "")
        self.parent_header: dict[str, Any] = {}
        self.execution_count = 0
        self.outputs: list[dict[str, Any]] = []
        self._sinks: list[OutputSink] = []
        if callable(options.get("on_output")):
            self._sinks.append(options["on_output"])

    def begin_request(self, msg_type: str) -> dict[str, Any]:
        """Start serving a request: new parent header, counter bumped on execute."""
        if msg_type == "execute_request":
            self.execution_count += 1
        self.parent_header = {
            "msg_id": uuid.uuid4().hex,
            "msg_type": msg_type,
            "session": self.id,
        }
        return self.parent_header

    def stream(self, content: dict[str, Any], parent_header: dict[str, Any] | None = None) -> None:
        self._publish("stream", content, parent_header)

    def publish_execute_error(
        self, content: dict[str, Any], parent_header: dict[str, Any] | None = None
    ) -> None:
        self._publish("error", content, parent_header)

    def text_output(self, name: str = "stdout") -> str:
        """Concatenated text of the recorded stream messages."""
        return "".join(
            o["content"].get("text", "")
            for o in self.outputs
            if o["msg_type"] == "stream" and o["content"].get("name") == name
        )

    def _publish(
        self, msg_type: str, content: dict[str, Any], parent_header: dict[str, Any] | None
    ) -> None:
        header = parent_header if parent_header is not None else self.parent_header
        self.outputs.append({"msg_type": msg_type, "content": content, "parent_header": header})
        for sink in list(self._sinks):
            sink(msg_type, content, header)

    def __repr__(self) -> str:
        return f"<LocalHostContext {self.id} count={self.execution_count}>"


# ---------------------------------------------------------------------------
# Kernel spec registry
# ---------------------------------------------------------------------------

class InMemoryKernelSpecs:
    """Kernel spec registry keyed by spec name.  Later registrations win."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}

    def register(self, options: dict[str, Any]) -> None:
        spec = options.get("spec") or {}
        name = spec.get("name")
        if not name:
            raise ValueError("Kernel spec must have a name")
        if not callable(options.get("create")):
            raise ValueError(f"Kernel spec {name!r} has no create factory")
        if name in self._entries:
            logger.warning(f"Kernel spec '{name}' already registered, replacing")
        self._entries[name] = {"spec": dict(spec), "create": options["create"]}
        logger.info(f"Registered kernel spec: {name}")

    @property
    def specs(self) -> dict[str, dict[str, Any]]:
        return {name: dict(entry["spec"]) for name, entry in self._entries.items()}

    def get(self, name: str) -> dict[str, Any]:
        if name not in self._entries:
            raise UnknownKernelSpec(name, list(self._entries))
        return self._entries[name]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------

class LocalHost:
    """Reference notebook host.

    Parameters
    ----------
    setting_registry:
        Optional settings source.  When given, the settings package is
        shared and the registry is offered to plugins as
        ``ISettingRegistry``.
    """

    def __init__(self, setting_registry: SettingRegistry | None = None) -> None:
        self.kernelspecs = InMemoryKernelSpecs()
        self.setting_registry = setting_registry
        self.services: dict[Token, Any] = {IKernelSpecs: self.kernelspecs}
        if setting_registry is not None:
            self.services[ISettingRegistry] = setting_registry
        self.registry = self._build_registry()
        self.plugins: list[PluginDescriptor] = []
        self.kernels: list[ExecutionKernel] = []

    def _build_registry(self) -> dict[str, dict[str, Any]]:
        registry: dict[str, dict[str, Any]] = {}
        kernel_exports = {"BaseKernel": LocalHostContext, "IKernelSpecs": IKernelSpecs}
        share(registry, KERNEL_PACKAGE, KERNEL_PACKAGE_VERSION, lambda: kernel_exports)
        if self.setting_registry is not None:
            settings_exports = {"ISettingRegistry": ISettingRegistry}
            share(registry, SETTINGS_PACKAGE, SETTINGS_PACKAGE_VERSION, lambda: settings_exports)
        return registry

    # -- plugins ----------------------------------------------------------------

    async def load(self, container: Any, module_id: str = "./index") -> list[PluginDescriptor]:
        """Initialise *container*, load *module_id* and activate its plugins.

        Federation errors raised by the container propagate unchanged.
        """
        container.init(self.registry)
        factory = await container.get(module_id)
        module = await factory()
        plugins = list(module["default"])
        logger.info(f"Loaded {len(plugins)} plugin(s) from {module_id}")

        for plugin in plugins:
            if plugin.auto_start:
                await self.activate(plugin)
        return plugins

    async def activate(self, plugin: PluginDescriptor) -> None:
        """Activate *plugin* with the services it asks for."""
        args: list[Any] = []
        for token in plugin.requires:
            if token not in self.services:
                raise PluginActivationError(plugin.id, f"missing required capability {token!r}")
            args.append(self.services[token])
        for token in plugin.optional:
            args.append(self.services.get(token))

        result = plugin.activate(self, *args)
        if inspect.isawaitable(result):
            await result
        self.plugins.append(plugin)
        logger.info(f"Activated plugin: {plugin.id}")

    # -- kernels ----------------------------------------------------------------

    async def start_kernel(self, name: str, on_output: OutputSink | None = None) -> ExecutionKernel:
        """Create a kernel from the kernel spec registered under *name*."""
        entry = self.kernelspecs.get(name)
        options: dict[str, Any] = {"id": uuid.uuid4().hex, "name": name}
        if on_output is not None:
            options["on_output"] = on_output
        kernel = await entry["create"](options)
        self.kernels.append(kernel)
        logger.debug("Started kernel %s (%s)", options["id"], name)
        return kernel

    async def request(
        self, kernel: ExecutionKernel, msg_type: str, content: dict[str, Any] | None = None
    ) -> Any:
        """Serve one protocol request on *kernel*."""
        begin = getattr(kernel.context, "begin_request", None)
        if callable(begin):
            begin(msg_type)
        return await kernel.handle(msg_type, content or {})

    async def execute(self, kernel: ExecutionKernel, code: str) -> dict[str, Any]:
        return await self.request(kernel, "execute_request", {"code": code})

    async def shutdown_kernel(self, kernel: ExecutionKernel) -> dict[str, Any]:
        reply = await self.request(kernel, "shutdown_request")
        if kernel in self.kernels:
            self.kernels.remove(kernel)
        return reply

    async def shutdown(self) -> None:
        """Shut every kernel down and release the settings source."""
        for kernel in list(self.kernels):
            await self.shutdown_kernel(kernel)
        close = getattr(self.setting_registry, "close", None)
        if callable(close):
            close()

    def __repr__(self) -> str:
        return (
            f"<LocalHost plugins={len(self.plugins)} specs={len(self.kernelspecs)} "
            f"kernels={len(self.kernels)}>"
        )
