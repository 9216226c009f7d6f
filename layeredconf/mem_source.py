"""Configuration kept in memory and changed at run time."""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional

from .source import ConfigSource, Event, EventHandler, EventType, KeyNotExistError

logger = logging.getLogger(__name__)

MEMORY_SOURCE_NAME = "MemorySource"
MEMORY_SOURCE_PRIORITY = 1


class MemorySource(ConfigSource):
    """A writable source held in memory.

    Writes wait until a handler has been attached with ``watch`` so that no
    change goes unreported.
    """

    name = MEMORY_SOURCE_NAME

    def __init__(self) -> None:
        super().__init__(priority=MEMORY_SOURCE_PRIORITY)
        self._lock = threading.Lock()
        self._configs: dict[str, Any] = {}
        self._dimensions: list[dict[str, str]] = []
        self._callback: Optional[EventHandler] = None
        self._ready = threading.Event()

    def get_configurations(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._configs)

    def get_configuration_by_key(self, key: str) -> Any:
        with self._lock:
            try:
                return self._configs[key]
            except KeyError:
                raise KeyNotExistError() from None

    def watch(self, callback: EventHandler) -> None:
        self._callback = callback
        logger.info("mem source callback prepared")
        self._ready.set()

    def cleanup(self) -> None:
        with self._lock:
            self._configs = {}

    def add_dimension_info(self, labels: Mapping[str, str]) -> None:
        """Record the labels; they do not filter memory configuration."""
        with self._lock:
            self._dimensions.append(dict(labels or {}))

    def set(self, key: str, value: Any) -> None:
        """Store a value and report a create or update event."""
        self._ready.wait()
        with self._lock:
            event_type = EventType.UPDATE if key in self._configs else EventType.CREATE
            self._configs[key] = value
        self._notify(Event(event_source=self.name, key=key, event_type=event_type, value=value))

    def delete(self, key: str) -> None:
        """Remove a key and report a delete event; unknown keys are ignored."""
        self._ready.wait()
        with self._lock:
            if key not in self._configs:
                return
            value = self._configs.pop(key)
        self._notify(Event(event_source=self.name, key=key, event_type=EventType.DELETE, value=value))

    def _notify(self, event: Event) -> None:
        callback = self._callback
        if callback is not None:
            callback.on_event(event)
            callback.on_module_event([event])