"""Default-model override from a change-notified plugin settings source.

The host may offer a setting registry capability.  When it does, the kernel
plugin loads its own settings through it and keeps a
:class:`SettingsSnapshot` up to date:

* Reading ``defaultModel`` once at activation
* Overwriting the snapshot on every change notification (last write wins)

This module also ships :class:`JsonSettingRegistry`, a small registry that
stores plugin settings as JSON files and watches them for modifications
(watchdog with polling fallback).
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from chatkernel.plugins.sdk import PluginSettings

logger = logging.getLogger(__name__)

DEFAULT_MODEL_KEY = "defaultModel"


# ---------------------------------------------------------------------------
# Snapshot + bridge
# ---------------------------------------------------------------------------

@dataclass
class SettingsSnapshot:
    """Latest known plugin settings.  No versioning, last write wins."""

    default_model: str | None = None


class SettingsBridge:
    """Keep a :class:`SettingsSnapshot` in sync with a plugin settings source.

    Parameters:
        snapshot: Snapshot to write into.  A new one is created when omitted.
    """

    def __init__(self, snapshot: SettingsSnapshot | None = None) -> None:
        self.snapshot = snapshot if snapshot is not None else SettingsSnapshot()
        self._source: PluginSettings | None = None

    @property
    def default_model(self) -> str | None:
        return self.snapshot.default_model

    def attach(self, source: PluginSettings) -> None:
        """Read the current value from *source* and follow its changes.

        A previously attached source is detached first.
        """
        self.detach()
        self._source = source
        self._apply(source)
        source.subscribe(self._on_change)
        logger.info("Settings bridge attached, defaultModel=%r", self.snapshot.default_model)

    def detach(self) -> None:
        """Stop applying change notifications from the attached source."""
        if self._source is not None and hasattr(self._source, "unsubscribe"):
            self._source.unsubscribe(self._on_change)
        self._source = None

    def _on_change(self, source: PluginSettings) -> None:
        if source is not self._source:
            return
        self._apply(source)
        logger.info("Settings changed, defaultModel=%r", self.snapshot.default_model)

    def _apply(self, source: PluginSettings) -> None:
        value = source.get(DEFAULT_MODEL_KEY)
        if isinstance(value, str) and value.strip():
            self.snapshot.default_model = value.strip()
        else:
            self.snapshot.default_model = None


# ---------------------------------------------------------------------------
# JSON file backed setting registry
# ---------------------------------------------------------------------------

class KernelPluginSettings(BaseModel):
    """Schema of the kernel plugin's settings file."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    default_model: str | None = Field(default=None, alias=DEFAULT_MODEL_KEY)


SettingsListener = Callable[["JsonPluginSettings"], Any]


class JsonPluginSettings:
    """Settings of one plugin, backed by a JSON file.

    Call :meth:`reload` (the watcher does it for you) to re-read the file
    and notify subscribers.
    """

    def __init__(self, plugin_id: str, path: Path) -> None:
        self.plugin_id = plugin_id
        self.path = path
        self._values = KernelPluginSettings()
        self._listeners: list[SettingsListener] = []
        self._lock = threading.Lock()
        self._read()

    def get(self, key: str) -> Any:
        data = self._values.model_dump(by_alias=True)
        return data.get(key)

    def subscribe(self, listener: SettingsListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: SettingsListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def reload(self) -> None:
        """Re-read the settings file and notify every subscriber."""
        self._read()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Settings listener error: {e}")

    def _read(self) -> None:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._values = KernelPluginSettings()
            return
        except OSError as e:
            logger.warning("Cannot read settings file %s: %s", self.path, e)
            return
        try:
            self._values = KernelPluginSettings.model_validate(json.loads(text or "{}"))
        except ValueError as e:
            # Half-written or invalid file: keep the previous values.
            logger.warning("Ignoring invalid settings file %s: %s", self.path, e)


class JsonSettingRegistry:
    """Setting registry storing one JSON file per plugin.

    Parameters:
        directory: Directory holding ``<plugin id>.json`` files.  Colons in
            plugin ids are replaced with ``__``.
        watch: Follow edits to loaded plugins' files with a
            :class:`SettingsWatcher`, started on the first ``load``.
        poll_interval: Poll interval for the watcher's polling fallback.
    """

    def __init__(
        self,
        directory: str | Path,
        watch: bool = True,
        poll_interval: float = 2.0,
    ) -> None:
        self.directory = Path(directory)
        self.watch = watch
        self.poll_interval = poll_interval
        self._loaded: dict[str, JsonPluginSettings] = {}
        self._watcher: SettingsWatcher | None = None

    def path_for(self, plugin_id: str) -> Path:
        return self.directory / f"{plugin_id.replace(':', '__')}.json"

    async def load(self, plugin_id: str) -> JsonPluginSettings:
        """Return the settings of *plugin_id*, loading them on first use."""
        if plugin_id in self._loaded:
            return self._loaded[plugin_id]

        settings = JsonPluginSettings(plugin_id, self.path_for(plugin_id))
        self._loaded[plugin_id] = settings
        logger.debug("Loaded settings for %s from %s", plugin_id, settings.path)

        if self.watch and self._watcher is None:
            self._watcher = SettingsWatcher(
                self.directory, self._on_file_changed, poll_interval=self.poll_interval
            )
            self._watcher.start()
        return settings

    def save(self, plugin_id: str, values: dict[str, Any]) -> None:
        """Atomically write *values* for *plugin_id*."""
        validated = KernelPluginSettings.model_validate(values)
        path = self.path_for(plugin_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        data = validated.model_dump(by_alias=True, exclude_none=True)
        tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
        logger.info("Saved plugin settings to %s", path)

    def close(self) -> None:
        """Stop following file changes."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    def _on_file_changed(self, path: Path) -> None:
        for settings in list(self._loaded.values()):
            if settings.path.resolve() == path:
                settings.reload()


# ---------------------------------------------------------------------------
# Directory watcher
# ---------------------------------------------------------------------------

class SettingsWatcher:
    """Report changed ``*.json`` files in a settings directory.

    Uses a *watchdog* observer; falls back to a polling thread comparing
    modification times when the observer cannot be started.

    Parameters:
        directory: Directory to watch.  Created if missing.
        on_change: Called from the watcher thread with the resolved path of
            every created, modified or moved-in settings file.
        poll_interval: Seconds between scans for the polling fallback.
    """

    def __init__(
        self,
        directory: str | Path,
        on_change: Callable[[Path], Any],
        poll_interval: float = 2.0,
    ) -> None:
        self.directory = Path(directory).resolve()
        self.on_change = on_change
        self.poll_interval = poll_interval
        self.backend: str | None = None
        self._stop = threading.Event()
        self._poller: threading.Thread | None = None
        self._observer: Any = None

    def start(self) -> None:
        """Begin watching without blocking.  A second call is a no-op."""
        if self.backend is not None:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            self._observe()
            self.backend = "watchdog"
        except (ImportError, OSError) as e:
            logger.debug("watchdog unavailable for %s: %s", self.directory, e)
            self._poll()
            self.backend = "polling"
        logger.info("Watching %s for settings changes (%s)", self.directory, self.backend)

    def stop(self) -> None:
        self._stop.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._poller is not None:
            self._poller.join(timeout=self.poll_interval * 2)
            self._poller = None
        self.backend = None

    def _notify(self, raw_path: str | Path) -> None:
        path = Path(raw_path).resolve()
        if path.suffix == ".json" and path.parent == self.directory:
            self.on_change(path)

    # -- watchdog ------------------------------------------------------------

    def _observe(self) -> None:
        from watchdog.events import FileSystemEventHandler
        from watchdog.observers import Observer

        notify = self._notify

        class _Handler(FileSystemEventHandler):
            def on_any_event(self, event: Any) -> None:
                if event.is_directory or event.event_type not in ("created", "modified", "moved"):
                    return
                notify(getattr(event, "dest_path", "") or event.src_path)

        observer = Observer()
        observer.schedule(_Handler(), str(self.directory), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer

    # -- polling ---------------------------------------------------------------

    def _scan(self) -> dict[Path, float]:
        mtimes: dict[Path, float] = {}
        for path in self.directory.glob("*.json"):
            try:
                mtimes[path.resolve()] = path.stat().st_mtime
            except OSError:
                continue
        return mtimes

    def _poll(self) -> None:
        self._stop.clear()
        self._poller = threading.Thread(target=self._poll_loop, daemon=True)
        self._poller.start()

    def _poll_loop(self) -> None:
        seen = self._scan()
        while not self._stop.wait(self.poll_interval):
            current = self._scan()
            for path, mtime in current.items():
                if seen.get(path) == mtime:
                    continue
                try:
                    self._notify(path)
                except OSError as e:
                    logger.warning("Settings change handler failed for %s: %s", path, e)
            seen = current
