"""Configuration read from local files and directories, reloaded on change."""

from __future__ import annotations

import enum
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .file_handler import FileHandler, convert_to_java_props
from .source import (
    ConfigError,
    ConfigSource,
    Event,
    EventHandler,
    EventType,
    KeyNotExistError,
)

logger = logging.getLogger(__name__)

FILE_SOURCE_NAME = "FileSource"
FILE_SOURCE_PRIORITY = 4
#: Priority of a file when none is given; lower wins.
DEFAULT_FILE_PRIORITY = 0

_IGNORED_SUFFIXES = (".swx", ".swp", "~")


class FileType(str, enum.Enum):
    """What a path given to the file source points at."""

    REGULAR_FILE = "RegularFile"
    DIRECTORY = "Directory"
    INVALID = "InvalidType"


@dataclass
class ConfigInfo:
    """A configuration value and the file it came from."""

    file_path: str
    value: Any


def _file_type(path: str) -> FileType:
    try:
        if os.path.isdir(path):
            return FileType.DIRECTORY
        if os.path.isfile(path):
            return FileType.REGULAR_FILE
    except OSError:
        pass
    return FileType.INVALID


class FileSource(ConfigSource):
    """Serves keys from files; when two files hold a key, the lower file priority wins."""

    name = FILE_SOURCE_NAME

    def __init__(self) -> None:
        super().__init__(priority=FILE_SOURCE_PRIORITY)
        self._lock = threading.RLock()
        self._configurations: dict[str, ConfigInfo] = {}
        self._files: dict[str, int] = {}
        self._file_handlers: dict[str, Optional[FileHandler]] = {}
        self._dimensions: list[dict[str, str]] = []
        self._watch_pool: Optional[_WatchPool] = None

    def add_file(
        self,
        path: str | os.PathLike[str],
        priority: int = DEFAULT_FILE_PRIORITY,
        handler: Optional[FileHandler] = None,
    ) -> None:
        """Load a file, or every file of a directory, as configuration."""
        abs_path = os.path.abspath(os.fspath(path))
        if not os.path.exists(abs_path):
            raise FileNotFoundError(f"[{abs_path}] file not exist")

        with self._lock:
            if abs_path in self._files:
                return
            self._file_handlers[abs_path] = handler

        kind = _file_type(abs_path)
        if kind is FileType.DIRECTORY:
            self._handle_directory(abs_path, priority, handler)
        elif kind is FileType.REGULAR_FILE:
            try:
                self._handle_file(abs_path, priority, handler)
            except (OSError, ConfigError) as exc:
                logger.error("Failed to handle file [%s] [%s]", abs_path, exc)
                raise
        else:
            logger.error("File type of [%s] not supported", abs_path)
            raise ConfigError(f"file type of [{abs_path}] not supported")

        if self._watch_pool is not None:
            self._watch_pool.add(abs_path)

    def _handle_directory(self, directory: str, priority: int, handler: Optional[FileHandler]) -> None:
        try:
            entries = sorted(os.listdir(directory))
        except OSError as exc:
            raise ConfigError("failed to read Directory contents") from exc
        for entry in entries:
            file_path = os.path.join(directory, entry)
            try:
                self._handle_file(file_path, priority, handler)
            except (OSError, ConfigError) as exc:
                logger.error("error processing %s file source handler with error : %s", file_path, exc)

    def _handle_file(self, file_path: str, priority: int, handler: Optional[FileHandler]) -> None:
        content = Path(file_path).read_bytes()
        convert = handler or convert_to_java_props
        try:
            config = convert(file_path, content)
        except Exception as exc:
            raise ConfigError(f"failed to pull configurations from [{file_path}] file, {exc}") from exc

        with self._lock:
            self._files[file_path] = priority

        events = self._compare_update(config, file_path)
        pool = self._watch_pool
        if pool is not None and pool.callback is not None:
            for event in events:
                pool.callback.on_event(event)
            pool.callback.on_module_event(events)

    def _reload(self, file_path: str, callback: EventHandler) -> None:
        convert = (
            self._file_handlers.get(file_path)
            or self._file_handlers.get(os.path.dirname(file_path))
            or convert_to_java_props
        )
        try:
            content = Path(file_path).read_bytes()
        except OSError as exc:
            logger.error("read file error %s", exc)
            return
        try:
            new_conf = convert(file_path, content)
        except Exception as exc:
            logger.error("convert error %s", exc)
            return
        events = self._compare_update(new_conf, file_path)
        logger.debug("generated events %s", events)
        if events:
            for event in events:
                callback.on_event(event)
            callback.on_module_event(events)

    def _compare_update(self, configs: Mapping[str, Any], file_path: str) -> list[Event]:
        events: list[Event] = []
        with self._lock:
            file_priority = self._files.get(file_path)
            if file_priority is None:
                return events

            kept: dict[str, ConfigInfo] = {}
            for key, info in self._configurations.items():
                if info.file_path == file_path:
                    if key not in configs:
                        events.append(self._event(key, EventType.DELETE, info.value))
                        continue
                    new_value = configs[key]
                    kept[key] = info
                    if info.value != new_value:
                        info.value = new_value
                        events.append(self._event(key, EventType.UPDATE, new_value))
                    continue

                if key not in configs:
                    kept[key] = info
                    continue
                owner_priority = self._files.get(info.file_path)
                if owner_priority == file_priority:
                    logger.info("Two files have same priority. keeping %s value", info.file_path)
                    kept[key] = info
                elif owner_priority is None or file_priority < owner_priority:
                    new_value = configs[key]
                    kept[key] = ConfigInfo(file_path=file_path, value=new_value)
                    events.append(self._event(key, EventType.UPDATE, new_value))
                else:
                    kept[key] = info

            for key, value in configs.items():
                if key not in kept:
                    events.append(self._event(key, EventType.CREATE, value))
                    kept[key] = ConfigInfo(file_path=file_path, value=value)

            self._configurations = kept
        return events

    def _event(self, key: str, event_type: EventType, value: Any) -> Event:
        return Event(event_source=self.name, key=key, event_type=event_type, value=value)

    def get_configurations(self) -> dict[str, Any]:
        with self._lock:
            return {key: info.value for key, info in self._configurations.items()}

    def get_configuration_by_key(self, key: str) -> Any:
        with self._lock:
            info = self._configurations.get(key)
        if info is None:
            raise KeyNotExistError()
        return info.value

    def watch(self, callback: EventHandler) -> None:
        """Reload files when they change and report the differences."""
        if callback is None:
            raise ValueError("call back can not be nil")
        if self._watch_pool is not None:
            self._watch_pool.stop()
        pool = _WatchPool(callback, self)
        with self._lock:
            paths = list(self._files)
        self._watch_pool = pool
        pool.start(paths)

    def cleanup(self) -> None:
        pool = self._watch_pool
        self._watch_pool = None
        if pool is not None:
            pool.stop()
        with self._lock:
            self._files = {}
            self._configurations = {}

    def add_dimension_info(self, labels: Mapping[str, str]) -> None:
        """Record the labels; they do not filter file configuration."""
        with self._lock:
            self._dimensions.append(dict(labels or {}))

    def set(self, key: str, value: Any) -> None:
        """The file source is not written through this interface."""

    def delete(self, key: str) -> None:
        """The file source is not written through this interface."""


class _WatchPool(FileSystemEventHandler):
    """Watches the source's files and feeds changes back into it."""

    def __init__(self, callback: EventHandler, source: FileSource) -> None:
        super().__init__()
        self.callback = callback
        self._source = source
        self._observer = Observer()
        self._lock = threading.Lock()
        self._files: set[str] = set()
        self._dirs: set[str] = set()
        self._scheduled: set[str] = set()
        logger.info("create new watcher")

    def start(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.add(path)
        self._observer.start()

    def add(self, path: str) -> None:
        path = os.path.abspath(path)
        with self._lock:
            if os.path.isdir(path):
                self._dirs.add(path)
                watch_dir = path
            else:
                self._files.add(path)
                watch_dir = os.path.dirname(path)
            if watch_dir in self._scheduled:
                return
            try:
                self._observer.schedule(self, watch_dir, recursive=False)
            except OSError as exc:
                logger.error("add watcher file: %s fail: %s", path, exc)
                return
            self._scheduled.add(watch_dir)

    def stop(self) -> None:
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join()

    def _is_watched(self, path: str) -> bool:
        with self._lock:
            return path in self._files or os.path.dirname(path) in self._dirs

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        kind = event.event_type
        if kind not in ("created", "modified", "moved", "deleted"):
            return
        raw = event.dest_path if kind == "moved" else event.src_path
        path = os.fsdecode(raw)
        if path.endswith(_IGNORED_SUFFIXES) or not self._is_watched(path):
            return
        logger.debug("file event %s, operation is %s. reload it.", path, kind)
        if kind == "deleted":
            logger.warning("the file change mode: %s, continue", kind)
            return
        if kind == "created":
            time.sleep(0.001)
        self._source._reload(path, self.callback)