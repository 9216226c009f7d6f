"""Core abstractions shared by every configuration source."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

#: Priority a source gets when nothing else is configured.
#: A lower value means a higher priority.
DEFAULT_PRIORITY = -1


class ConfigError(Exception):
    """Base class for configuration errors."""


class KeyNotExistError(ConfigError, LookupError):
    """The requested key is not held by the source."""

    def __init__(self, message: str = "key does not exist") -> None:
        super().__init__(message)


class IgnoreChangeError(ConfigError):
    """A change event was deliberately ignored."""

    def __init__(self, message: str = "ignore key changed") -> None:
        super().__init__(message)


class WriterInvalidError(ConfigError, ValueError):
    """The stream given for writing configuration is unusable."""

    def __init__(self, message: str = "writer is invalid") -> None:
        super().__init__(message)


class EventType(str, enum.Enum):
    """Kind of change that happened to a configuration key."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class Event:
    """A change of one configuration key reported by a source."""

    event_source: str
    key: str
    event_type: EventType
    value: Any = None
    has_updated: bool = False


class EventHandler(ABC):
    """Receives change events from sources."""

    @abstractmethod
    def on_event(self, event: Event) -> None:
        """Handle a single change event."""

    @abstractmethod
    def on_module_event(self, events: list[Event]) -> None:
        """Handle a batch of change events."""


class ConfigSource(ABC):
    """A place key/value configuration comes from.

    ``name`` identifies the source; ``priority`` orders sources, where a lower
    value wins over a higher one.
    """

    name: str = ""

    def __init__(self, priority: int = DEFAULT_PRIORITY) -> None:
        self.priority = priority

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value under a key, if the source supports writing."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key, if the source supports writing."""

    @abstractmethod
    def get_configurations(self) -> dict[str, Any]:
        """Return a copy of every key and value the source holds."""

    @abstractmethod
    def get_configuration_by_key(self, key: str) -> Any:
        """Return the value of one key or raise KeyNotExistError."""

    @abstractmethod
    def watch(self, callback: EventHandler) -> None:
        """Start reporting changes to the given handler."""

    @abstractmethod
    def cleanup(self) -> None:
        """Drop everything the source holds and stop watching."""

    @abstractmethod
    def add_dimension_info(self, labels: Mapping[str, str]) -> None:
        """Add a label set whose configuration should be pulled too."""