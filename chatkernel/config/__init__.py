"""chatkernel configuration -- environment settings and the plugin settings bridge."""

from .settings import Settings, settings
from .settings_bridge import (
    DEFAULT_MODEL_KEY,
    JsonPluginSettings,
    JsonSettingRegistry,
    KernelPluginSettings,
    SettingsBridge,
    SettingsSnapshot,
    SettingsWatcher,
)

__all__ = [
    "DEFAULT_MODEL_KEY",
    "JsonPluginSettings",
    "JsonSettingRegistry",
    "KernelPluginSettings",
    "Settings",
    "SettingsBridge",
    "SettingsSnapshot",
    "SettingsWatcher",
    "settings",
]
