"""
Plugin SDK for chatkernel.

This module defines the descriptors a federated module hands to its host
and the host capabilities a plugin may ask for at activation time.

Descriptors:
    1. PluginDescriptor: What the host activates (id, requirements, activate)
    2. KernelSpec: How a kernel is presented to the host's launcher
    3. Token: Identity of a host capability

Host Capabilities:
    1. KernelSpecs: Registry the plugin registers its kernel with
    2. SettingRegistry: Optional source of per-plugin settings
    3. PluginSettings: Settings object returned by a SettingRegistry

Each capability uses Python's Protocol for structural subtyping, so any
host object with the right methods can be passed in.

Example - Describing a plugin:
    from chatkernel.plugins.sdk import PluginDescriptor

    async def activate(app, kernelspecs):
        kernelspecs.register({"spec": spec.to_dict(), "create": create})

    plugin = PluginDescriptor(
        id="my-kernel:plugin",
        activate=activate,
        requires=[kernel_exports.IKernelSpecs],
    )
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable


@dataclass(frozen=True)
class Token:
    """Identity of a host capability.

    Plugins list tokens in ``requires`` / ``optional``; the host maps each
    token to the service it passes to ``activate``.
    """

    name: str
    description: str = ""

    def __repr__(self) -> str:
        return f"<Token {self.name}>"


@dataclass
class KernelSpec:
    """Launcher-facing description of a kernel.

    Attributes:
        name: Unique kernel name used by the host to create instances.
        display_name: Human-readable name shown in the launcher.
        language: Language used for syntax highlighting only.
        argv: Command line, empty for in-process kernels.
        resources: Extra resources (logos etc.) keyed by name.
    """

    name: str
    display_name: str
    language: str = "python"
    argv: list[str] = field(default_factory=list)
    resources: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate spec fields."""
        if not self.name:
            raise ValueError("Kernel name cannot be empty")
        if not re.match(r'^[a-z0-9][a-z0-9_.-]*$', self.name):
            raise ValueError(
                f"Kernel name must be lowercase alphanumeric with '-', '_' or '.': {self.name}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the host's kernel spec mapping.

        Returns:
            Dictionary with the host's field names.
        """
        return {
            "name": self.name,
            "display_name": self.display_name,
            "language": self.language,
            "argv": list(self.argv),
            "resources": dict(self.resources),
        }


@dataclass
class PluginDescriptor:
    """A plugin as the host's loader expects it.

    Attributes:
        id: Unique plugin identifier (``package:plugin``).
        activate: Called by the host with the app followed by one service
            per entry in ``requires`` and then one per entry in
            ``optional`` (``None`` when the host cannot provide it).
            May be a coroutine function.
        auto_start: Whether the host activates the plugin on startup.
        requires: Capability tokens the plugin cannot run without.
        optional: Capability tokens the plugin can run without.
        description: Human-readable description.

    Example:
        plugin = PluginDescriptor(
            id="http-chat-kernel:plugin",
            activate=activate,
            requires=[IKernelSpecs],
            optional=[ISettingRegistry],
        )
    """

    id: str
    activate: Callable[..., Any | Awaitable[Any]]
    auto_start: bool = True
    requires: list[Any] = field(default_factory=list)
    optional: list[Any] = field(default_factory=list)
    description: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Plugin id cannot be empty")
        if not callable(self.activate):
            raise ValueError(f"Plugin {self.id} activate must be callable")

    @property
    def required_capabilities(self) -> list[Any]:
        return list(self.requires)

    @property
    def optional_capabilities(self) -> list[Any]:
        return list(self.optional)

    def __repr__(self) -> str:
        return f"<PluginDescriptor {self.id} autoStart={self.auto_start}>"


@runtime_checkable
class KernelSpecs(Protocol):
    """Host capability: kernel spec registry.

    Required Methods:
        register: Register ``{"spec": {...}, "create": factory}``.

    Example:
        class InMemoryKernelSpecs:
            def __init__(self):
                self.specs = {}

            def register(self, options):
                self.specs[options["spec"]["name"]] = options
    """

    def register(self, options: dict[str, Any]) -> None:
        """Register a kernel.

        Args:
            options: Mapping with ``spec`` (the kernel spec mapping) and
                ``create`` (async factory taking the host's options).
        """
        ...


@runtime_checkable
class PluginSettings(Protocol):
    """Settings of a single plugin.

    Required Methods:
        get: Return the composite value of a setting.
        subscribe: Register a callback invoked with the settings object
            whenever any value changes.
    """

    def get(self, key: str) -> Any:
        ...

    def subscribe(self, listener: Callable[[Any], Any]) -> None:
        ...


@runtime_checkable
class SettingRegistry(Protocol):
    """Host capability: per-plugin settings source.

    Required Methods:
        load: Load the settings of a plugin by id.
    """

    async def load(self, plugin_id: str) -> PluginSettings:
        ...
