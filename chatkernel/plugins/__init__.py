"""
Plugin descriptors and host capability interfaces for chatkernel.

A federated module hands the host a list of :class:`PluginDescriptor`
objects.  On activation the kernel plugin registers a :class:`KernelSpec`
through the host's :class:`KernelSpecs` capability and, when the host
offers one, follows its own settings through a :class:`SettingRegistry`.

The kernel plugin itself lives in :mod:`chatkernel.plugins.kernel_plugin`.
"""

from chatkernel.plugins.sdk import (
    KernelSpec,
    KernelSpecs,
    PluginDescriptor,
    PluginSettings,
    SettingRegistry,
    Token,
)

__all__ = [
    "KernelSpec",
    "KernelSpecs",
    "PluginDescriptor",
    "PluginSettings",
    "SettingRegistry",
    "Token",
]
