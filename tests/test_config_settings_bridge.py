"""Tests for chatkernel.config.settings_bridge."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from chatkernel.config.settings_bridge import (
    DEFAULT_MODEL_KEY,
    JsonPluginSettings,
    JsonSettingRegistry,
    KernelPluginSettings,
    SettingsBridge,
    SettingsSnapshot,
    SettingsWatcher,
)
from chatkernel.plugins.sdk import PluginSettings, SettingRegistry

PLUGIN_ID = "http-chat-kernel:plugin"


class FakeSettings:
    """Change-notified settings source held in memory."""

    def __init__(self, values: dict | None = None) -> None:
        self.values = dict(values or {})
        self.listeners: list = []

    def get(self, key):
        return self.values.get(key)

    def subscribe(self, listener):
        self.listeners.append(listener)

    def unsubscribe(self, listener):
        self.listeners.remove(listener)

    def change(self, **values):
        self.values.update(values)
        for listener in list(self.listeners):
            listener(self)


# ---------------------------------------------------------------------------
# SettingsBridge
# ---------------------------------------------------------------------------


class TestSettingsBridge:
    def test_attach_reads_current_value(self):
        bridge = SettingsBridge()
        bridge.attach(FakeSettings({DEFAULT_MODEL_KEY: "mistral:7b"}))
        assert bridge.default_model == "mistral:7b"

    def test_changes_overwrite_snapshot(self):
        snapshot = SettingsSnapshot()
        bridge = SettingsBridge(snapshot)
        source = FakeSettings({DEFAULT_MODEL_KEY: "A"})
        bridge.attach(source)

        source.change(defaultModel="B")
        assert snapshot.default_model == "B"
        source.change(defaultModel="C")
        assert snapshot.default_model == "C"

    def test_blank_value_clears_override(self):
        bridge = SettingsBridge()
        source = FakeSettings({DEFAULT_MODEL_KEY: "A"})
        bridge.attach(source)
        source.change(defaultModel="   ")
        assert bridge.default_model is None

    def test_value_is_stripped(self):
        bridge = SettingsBridge()
        bridge.attach(FakeSettings({DEFAULT_MODEL_KEY: " A "}))
        assert bridge.default_model == "A"

    def test_unknown_model_accepted(self):
        bridge = SettingsBridge()
        bridge.attach(FakeSettings({DEFAULT_MODEL_KEY: "not-in-catalog"}))
        assert bridge.default_model == "not-in-catalog"

    def test_detach_stops_updates(self):
        bridge = SettingsBridge()
        source = FakeSettings({DEFAULT_MODEL_KEY: "A"})
        bridge.attach(source)
        bridge.detach()
        source.change(defaultModel="B")
        assert bridge.default_model == "A"
        assert source.listeners == []

    def test_attach_replaces_previous_source(self):
        bridge = SettingsBridge()
        first = FakeSettings({DEFAULT_MODEL_KEY: "A"})
        second = FakeSettings({DEFAULT_MODEL_KEY: "B"})
        bridge.attach(first)
        bridge.attach(second)

        assert first.listeners == []
        first.change(defaultModel="C")
        assert bridge.default_model == "B"
        second.change(defaultModel="D")
        assert bridge.default_model == "D"

    def test_fake_satisfies_protocol(self):
        assert isinstance(FakeSettings(), PluginSettings)


# ---------------------------------------------------------------------------
# KernelPluginSettings
# ---------------------------------------------------------------------------


class TestKernelPluginSettings:
    def test_alias(self):
        assert KernelPluginSettings.model_validate({"defaultModel": "A"}).default_model == "A"

    def test_field_name(self):
        assert KernelPluginSettings(default_model="A").default_model == "A"

    def test_extra_keys_kept(self):
        model = KernelPluginSettings.model_validate({"theme": "dark"})
        assert model.model_dump(by_alias=True)["theme"] == "dark"


# ---------------------------------------------------------------------------
# JsonPluginSettings / JsonSettingRegistry
# ---------------------------------------------------------------------------


class TestJsonPluginSettings:
    def test_missing_file_is_empty(self, tmp_path):
        settings = JsonPluginSettings(PLUGIN_ID, tmp_path / "none.json")
        assert settings.get(DEFAULT_MODEL_KEY) is None

    def test_reads_file(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"defaultModel": "A"}))
        assert JsonPluginSettings(PLUGIN_ID, path).get(DEFAULT_MODEL_KEY) == "A"

    def test_reload_notifies(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"defaultModel": "A"}))
        settings = JsonPluginSettings(PLUGIN_ID, path)
        listener = MagicMock()
        settings.subscribe(listener)

        path.write_text(json.dumps({"defaultModel": "B"}))
        settings.reload()

        listener.assert_called_once_with(settings)
        assert settings.get(DEFAULT_MODEL_KEY) == "B"

    def test_invalid_file_keeps_previous_values(self, tmp_path, caplog):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"defaultModel": "A"}))
        settings = JsonPluginSettings(PLUGIN_ID, path)

        path.write_text("{ not json")
        settings.reload()

        assert settings.get(DEFAULT_MODEL_KEY) == "A"
        assert "Ignoring invalid settings file" in caplog.text

    def test_file_removed_before_read_is_empty(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"defaultModel": "A"}))
        settings = JsonPluginSettings(PLUGIN_ID, path)

        path.unlink()
        settings.reload()

        assert settings.get(DEFAULT_MODEL_KEY) is None

    def test_unreadable_file_keeps_previous_values(self, tmp_path, caplog):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"defaultModel": "A"}))
        settings = JsonPluginSettings(PLUGIN_ID, path)

        path.unlink()
        path.mkdir()
        settings.reload()

        assert settings.get(DEFAULT_MODEL_KEY) == "A"
        assert "Cannot read settings file" in caplog.text

    def test_failing_listener_is_logged(self, tmp_path, caplog):
        settings = JsonPluginSettings(PLUGIN_ID, tmp_path / "s.json")
        good = MagicMock()
        settings.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        settings.subscribe(good)

        settings.reload()

        good.assert_called_once()
        assert "boom" in caplog.text

    def test_unsubscribe(self, tmp_path):
        settings = JsonPluginSettings(PLUGIN_ID, tmp_path / "s.json")
        listener = MagicMock()
        settings.subscribe(listener)
        settings.unsubscribe(listener)
        settings.reload()
        listener.assert_not_called()


class TestJsonSettingRegistry:
    def test_path_for_replaces_colon(self, tmp_path):
        registry = JsonSettingRegistry(tmp_path, watch=False)
        assert registry.path_for(PLUGIN_ID) == tmp_path / "http-chat-kernel__plugin.json"

    @pytest.mark.asyncio
    async def test_load_is_cached(self, tmp_path):
        registry = JsonSettingRegistry(tmp_path, watch=False)
        first = await registry.load(PLUGIN_ID)
        assert await registry.load(PLUGIN_ID) is first

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path):
        registry = JsonSettingRegistry(tmp_path / "nested", watch=False)
        registry.save(PLUGIN_ID, {"defaultModel": "mistral:7b"})

        written = json.loads(registry.path_for(PLUGIN_ID).read_text())
        assert written == {"defaultModel": "mistral:7b"}
        settings = await registry.load(PLUGIN_ID)
        assert settings.get(DEFAULT_MODEL_KEY) == "mistral:7b"

    @pytest.mark.asyncio
    async def test_load_starts_one_watcher(self, tmp_path):
        registry = JsonSettingRegistry(tmp_path)
        with patch("chatkernel.config.settings_bridge.SettingsWatcher") as watcher_cls:
            await registry.load(PLUGIN_ID)
            await registry.load("other:plugin")
            watcher_cls.assert_called_once()
            assert watcher_cls.call_args.args[0] == tmp_path
            watcher_cls.return_value.start.assert_called_once()
            registry.close()
            watcher_cls.return_value.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_file_change_reloads_matching_plugin(self, tmp_path):
        registry = JsonSettingRegistry(tmp_path, watch=False)
        settings = await registry.load(PLUGIN_ID)
        other = await registry.load("other:plugin")
        listener, other_listener = MagicMock(), MagicMock()
        settings.subscribe(listener)
        other.subscribe(other_listener)

        registry.save(PLUGIN_ID, {"defaultModel": "mistral:7b"})
        registry._on_file_changed(registry.path_for(PLUGIN_ID).resolve())

        listener.assert_called_once_with(settings)
        other_listener.assert_not_called()
        assert settings.get(DEFAULT_MODEL_KEY) == "mistral:7b"

    def test_close_without_watcher(self, tmp_path):
        JsonSettingRegistry(tmp_path, watch=False).close()

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(JsonSettingRegistry(tmp_path, watch=False), SettingRegistry)


# ---------------------------------------------------------------------------
# SettingsWatcher
# ---------------------------------------------------------------------------


class TestSettingsWatcher:
    def test_resolves_directory(self, tmp_path):
        watcher = SettingsWatcher(tmp_path, lambda p: None)
        assert watcher.directory == tmp_path.resolve()
        assert watcher.backend is None

    def test_notify_filters_foreign_files(self, tmp_path):
        seen: list[Path] = []
        watcher = SettingsWatcher(tmp_path, seen.append)

        watcher._notify(tmp_path / "a.json")
        watcher._notify(tmp_path / "a.tmp")
        watcher._notify(tmp_path / "sub" / "b.json")

        assert seen == [(tmp_path / "a.json").resolve()]

    def test_polling_fallback_detects_change(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text("{}")
        seen: list[Path] = []
        watcher = SettingsWatcher(tmp_path, seen.append, poll_interval=0.05)

        with patch.object(SettingsWatcher, "_observe", side_effect=ImportError):
            watcher.start()
        assert watcher.backend == "polling"
        try:
            time.sleep(0.1)
            path.write_text(json.dumps({"defaultModel": "A"}))
            # Force a visible mtime change on coarse-grained filesystems.
            stat = path.stat()
            os.utime(path, (stat.st_atime, stat.st_mtime + 5))
            deadline = time.time() + 2.0
            while not seen and time.time() < deadline:
                time.sleep(0.05)
        finally:
            watcher.stop()

        assert seen and seen[0] == path.resolve()
        assert watcher.backend is None

    def test_polling_survives_handler_oserror(self, tmp_path, caplog):
        path = tmp_path / "s.json"
        path.write_text("{}")
        seen: list[Path] = []

        def on_change(changed: Path) -> None:
            seen.append(changed)
            if len(seen) == 1:
                raise FileNotFoundError(changed)

        watcher = SettingsWatcher(tmp_path, on_change, poll_interval=0.05)
        with patch.object(SettingsWatcher, "_observe", side_effect=ImportError):
            watcher.start()
        try:
            time.sleep(0.1)
            for bump in (5, 10):
                before = len(seen)
                stat = path.stat()
                os.utime(path, (stat.st_atime, stat.st_mtime + bump))
                deadline = time.time() + 2.0
                while len(seen) == before and time.time() < deadline:
                    time.sleep(0.05)
            poller = watcher._poller
            assert poller is not None and poller.is_alive()
        finally:
            watcher.stop()

        assert len(seen) == 2
        assert "Settings change handler failed" in caplog.text

    def test_start_creates_directory(self, tmp_path):
        directory = tmp_path / "settings"
        watcher = SettingsWatcher(directory, lambda p: None)
        with patch.object(SettingsWatcher, "_observe") as observe:
            watcher.start()
            watcher.start()
        observe.assert_called_once()
        assert directory.is_dir()
        assert watcher.backend == "watchdog"

    def test_stop_without_start(self, tmp_path):
        SettingsWatcher(tmp_path, lambda p: None).stop()
