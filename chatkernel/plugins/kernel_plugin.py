"""
The chat kernel plugin.

Builds the :class:`PluginDescriptor` the federation container hands to the
host.  Activation registers the ``http-chat`` kernel spec with the host's
kernel spec registry; every kernel the host then creates gets its own
:class:`ModelSessionManager` and wraps a fresh host context built from the
host's ``BaseKernel``.

When the host also offers a setting registry, the plugin loads its own
settings and keeps the default-model override in the federation context up
to date through a :class:`SettingsBridge`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from chatkernel.cognition.llm_client import ModelRuntime, create_runtime
from chatkernel.cognition.progress import ProgressChannel
from chatkernel.cognition.session import ModelSessionManager
from chatkernel.config.settings_bridge import SettingsBridge
from chatkernel.federation.context import FederationContext
from chatkernel.kernel.kernel import ExecutionKernel
from chatkernel.plugins.sdk import KernelSpec, PluginDescriptor, SettingRegistry

logger = logging.getLogger(__name__)

PLUGIN_ID = "http-chat-kernel:plugin"

KERNEL_SPEC = KernelSpec(
    name="http-chat",
    display_name="HTTP Chat (ACP)",
    # Cosmetic only: drives syntax highlighting in the host.
    language="python",
)


def create_kernel_plugin(
    base_kernel: Callable[[Mapping[str, Any]], Any],
    kernelspecs_token: Any,
    context: FederationContext,
    *,
    settings_token: Any = None,
    runtime: ModelRuntime | None = None,
    progress: ProgressChannel | None = None,
) -> PluginDescriptor:
    """Build the kernel plugin descriptor.

    Args:
        base_kernel: Host factory producing a per-kernel host context from
            the host's creation options.
        kernelspecs_token: Capability token for the kernel spec registry.
        context: Federation context holding the settings snapshot.
        settings_token: Capability token for the optional setting registry.
        runtime: Model runtime.  Defaults to one built from settings the
            first time a kernel is created.
        progress: Channel model progress is published on.

    Returns:
        The plugin descriptor.
    """
    bridge = SettingsBridge(context.settings)
    runtimes: list[ModelRuntime] = [runtime] if runtime is not None else []

    def model_runtime() -> ModelRuntime:
        if not runtimes:
            runtimes.append(create_runtime())
        return runtimes[0]

    async def create(options: Mapping[str, Any] | None = None) -> ExecutionKernel:
        options = dict(options or {})
        logger.info("Creating chat kernel instance %s", options.get("id", ""))
        host_context = base_kernel(options)
        session = ModelSessionManager(
            model_runtime(),
            default_override=context.default_model_override,
            progress=progress,
        )
        return ExecutionKernel(host_context, session)

    async def activate(
        app: Any,
        kernelspecs: Any,
        setting_registry: SettingRegistry | None = None,
    ) -> None:
        logger.info("Activating %s", PLUGIN_ID)

        if kernelspecs is None or not callable(getattr(kernelspecs, "register", None)):
            logger.error("kernelspecs.register not available, %s not registered", KERNEL_SPEC.name)
            return

        kernelspecs.register({"spec": KERNEL_SPEC.to_dict(), "create": create})
        logger.info(
            "Kernel %r registered (display name %r)",
            KERNEL_SPEC.name,
            KERNEL_SPEC.display_name,
        )

        if setting_registry is None:
            return
        try:
            plugin_settings = await setting_registry.load(PLUGIN_ID)
        except Exception as e:
            logger.warning(
                "Could not load settings for %s, using the built-in default model: %s",
                PLUGIN_ID,
                e,
            )
            return
        bridge.attach(plugin_settings)

    return PluginDescriptor(
        id=PLUGIN_ID,
        activate=activate,
        auto_start=True,
        requires=[kernelspecs_token],
        optional=[settings_token] if settings_token is not None else [],
        description="Chat kernel backed by a local language model",
    )
