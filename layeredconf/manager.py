"""Merge the configuration of many sources by priority and dispatch changes."""

from __future__ import annotations

import logging
import re
import threading
from typing import IO, Any, Iterable, Mapping, Optional, Protocol

import yaml

from .source import (
    ConfigError,
    ConfigSource,
    Event,
    EventHandler,
    EventType,
    IgnoreChangeError,
    KeyNotExistError,
    WriterInvalidError,
)
from .unmarshal import unmarshal as _unmarshal

logger = logging.getLogger(__name__)


class Listener(Protocol):
    """Receives single change events for keys it registered for."""

    def on_event(self, event: Event) -> None: ...


class ModuleListener(Protocol):
    """Receives batches of change events for key prefixes it registered for."""

    def on_module_event(self, events: list[Event]) -> None: ...


def _invalid_key(key: str) -> ConfigError:
    return ConfigError(f"invalid key format for {key} key")


class Dispatcher:
    """Routes change events to listeners.

    Listeners register with regular expressions that are searched in the
    event key; module listeners register with key prefixes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Listener]] = {}
        self._module_listeners: dict[str, list[ModuleListener]] = {}

    def register_listener(self, listener: Listener, *args: str) -> None:
        """Register ``listener`` for every key pattern given."""
        if listener is None:
            raise ConfigError("nil listener supplied")
        with self._lock:
            for key in args:
                registered = self._listeners.setdefault(key, [])
                if listener not in registered:
                    registered.append(listener)

    def unregister_listener(self, listener: Listener, *args: str) -> None:
        """Remove ``listener`` from every key pattern given."""
        if listener is None:
            raise ConfigError("nil listener supplied")
        with self._lock:
            for key in args:
                registered = self._listeners.get(key)
                if not registered:
                    continue
                if listener in registered:
                    registered.remove(listener)
                if not registered:
                    del self._listeners[key]

    def register_module_listener(self, listener: ModuleListener, *args: str) -> None:
        """Register ``listener`` for every key prefix given."""
        if listener is None:
            raise ConfigError("nil listener supplied")
        with self._lock:
            for prefix in args:
                registered = self._module_listeners.setdefault(prefix, [])
                if listener not in registered:
                    registered.append(listener)

    def unregister_module_listener(self, listener: ModuleListener, *args: str) -> None:
        """Remove ``listener`` from every key prefix given."""
        if listener is None:
            raise ConfigError("nil listener supplied")
        with self._lock:
            for prefix in args:
                registered = self._module_listeners.get(prefix)
                if not registered:
                    continue
                if listener in registered:
                    registered.remove(listener)
                if not registered:
                    del self._module_listeners[prefix]

    def dispatch_event(self, event: Event) -> None:
        """Deliver ``event`` to every listener whose pattern matches its key."""
        if event is None:
            raise ConfigError("nil event supplied")
        with self._lock:
            snapshot = [(key, list(items)) for key, items in self._listeners.items()]
        for pattern, listeners in snapshot:
            try:
                matched = re.search(pattern, event.key) is not None
            except re.error as exc:
                logger.warning("invalid key pattern %s: %s", pattern, exc)
                continue
            if matched:
                for listener in listeners:
                    listener.on_event(event)

    def dispatch_module_event(self, events: Iterable[Event]) -> None:
        """Deliver to each module listener the events whose keys start with its prefix."""
        events = list(events)
        if not events:
            raise ConfigError("nil or invalid events supplied")
        with self._lock:
            snapshot = [(p, list(items)) for p, items in self._module_listeners.items()]
        for prefix, listeners in snapshot:
            selected = [e for e in events if e.key.startswith(prefix)]
            if not selected:
                continue
            for listener in listeners:
                listener.on_module_event(selected)


class Manager(EventHandler):
    """Holds every source and knows which source currently owns each key.

    A lower source priority wins; when the owning source loses a key the
    next best source that still holds it takes over.
    """

    def __init__(self, dispatcher: Optional[Dispatcher] = None) -> None:
        self._dispatcher = dispatcher if dispatcher is not None else Dispatcher()
        self._sources_lock = threading.RLock()
        self.sources: dict[str, ConfigSource] = {}
        self._map_lock = threading.RLock()
        self._configuration_map: dict[str, str] = {}

    def _source_list(self) -> list[ConfigSource]:
        with self._sources_lock:
            return list(self.sources.values())

    def _source(self, name: str) -> Optional[ConfigSource]:
        with self._sources_lock:
            return self.sources.get(name)

    def cleanup(self) -> None:
        """Clean up every source; the first failure is raised."""
        for source in self._source_list():
            source.cleanup()

    def set(self, key: str, value: Any) -> None:
        """Set ``key`` in every source."""
        for source in self._source_list():
            source.set(key, value)

    def delete(self, key: str) -> None:
        """Delete ``key`` from every source."""
        for source in self._source_list():
            source.delete(key)

    def unmarshal(self, obj: Any) -> None:
        """Fill a dataclass instance (or dict) from the merged configuration."""
        _unmarshal(self, obj)

    def marshal(self, stream: IO[str]) -> None:
        """Write every non-empty source's configuration as YAML, keyed by source name."""
        if stream is None:
            logger.error("invalid writer")
            raise WriterInvalidError()
        all_config: dict[str, dict[str, Any]] = {}
        for source in self._source_list():
            try:
                config = source.get_configurations()
            except Exception as exc:
                logger.error("get source %s error %s", source.name, exc)
                continue
            if not config:
                continue
            all_config[source.name] = config
        yaml.safe_dump(all_config, stream)

    def add_source(self, source: ConfigSource) -> None:
        """Add a source, load its configuration and start watching it."""
        if source is None or not source.name:
            logger.error("nil or invalid source supplied")
            raise ConfigError("nil or invalid source supplied")
        name = source.name
        with self._sources_lock:
            if name in self.sources:
                logger.error("duplicate source supplied")
                raise ConfigError("duplicate source supplied")
            self.sources[name] = source

        try:
            self._pull_source_configs(name)
        except Exception as exc:
            message = f"fail to load configuration of {name} source: {exc}"
            logger.error(message)
            raise ConfigError(message) from exc

        logger.info("invoke dynamic handler:%s", name)
        threading.Thread(
            target=self._watch_source, args=(source,), name=f"watch-{name}", daemon=True
        ).start()

    def _watch_source(self, source: ConfigSource) -> None:
        try:
            source.watch(self)
        except Exception as exc:
            logger.error("watch source %s failed: %s", source.name, exc)

    def _pull_source_configs(self, name: str) -> None:
        source = self._source(name)
        if source is None:
            logger.error("invalid source or source not added")
            raise ConfigError("invalid source or source not added")
        config = source.get_configurations()
        if not config:
            logger.warning("empty config from %s", name)
            return
        self._update_configuration_map(source, config)

    def configs(self) -> dict[str, Any]:
        """Return every key with the value of the source that owns it."""
        result: dict[str, Any] = {}
        for key, name in self._map_snapshot():
            value = self._config_value_by_source(key, name)
            if value is not None:
                result[key] = value
        return result

    def configs_with_source_names(self) -> dict[str, dict[str, Any]]:
        """Return every key as ``{"value": value, "source": source_name}``."""
        result: dict[str, dict[str, Any]] = {}
        for key, name in self._map_snapshot():
            value = self._config_value_by_source(key, name)
            if value is not None:
                result[key] = {"value": value, "source": name}
        return result

    def _map_snapshot(self) -> list[tuple[str, str]]:
        with self._map_lock:
            return list(self._configuration_map.items())

    def add_dimension_info(self, labels: Mapping[str, str]) -> None:
        """Ask every source to pull configuration for another label set too."""
        for source in self._source_list():
            try:
                source.add_dimension_info(labels)
            except Exception as exc:
                message = f"add dimension info for source {source.name} failed"
                logger.error("failed to do add dimension info %s", message)
                raise ConfigError(message) from exc

    def refresh(self, source_name: str) -> None:
        """Reload the configuration of one source."""
        try:
            self._pull_source_configs(source_name)
        except Exception as exc:
            logger.error("fail to load configuration of %s source: %s", source_name, exc)
            raise ConfigError(f"fail to load configuration of {source_name} source") from exc

    def is_key_exist(self, key: str) -> bool:
        """Tell whether any source holds ``key``."""
        with self._map_lock:
            return key in self._configuration_map

    def get_config(self, key: str) -> Any:
        """Return the value of ``key`` from its owning source, or None."""
        with self._map_lock:
            name = self._configuration_map.get(key)
        if name is None:
            return None
        return self._config_value_by_source(key, name)

    def _config_value_by_source(self, key: str, source_name: str) -> Any:
        source = self._source(source_name)
        if source is None:
            return None
        try:
            return source.get_configuration_by_key(key)
        except Exception:
            # the key may have been removed before the event arrived
            fallback = self._find_next_best_source(key, source_name)
            if fallback is None:
                return None
            try:
                return fallback.get_configuration_by_key(key)
            except Exception:
                return None

    def _update_configuration_map(self, source: ConfigSource, configs: Mapping[str, Any]) -> None:
        with self._map_lock:
            for key in configs:
                owner_name = self._configuration_map.get(key)
                if owner_name is None:
                    self._configuration_map[key] = source.name
                    continue
                owner = self._source(owner_name)
                if owner is None or owner.priority > source.priority:
                    self._configuration_map[key] = source.name

    def _update_module_event(self, events: Optional[list[Event]]) -> None:
        if not events:
            raise ConfigError("nil or invalid events supplied")
        valid: list[Event] = []
        for index, event in enumerate(events):
            try:
                self._update_event(event)
            except KeyNotExistError:
                continue
            except ConfigError as exc:
                logger.error("%dth event %r got error:%s", index, event, exc)
                continue
            valid.append(event)
        if not valid:
            logger.info("all events are invalid")
            return
        self._dispatcher.dispatch_module_event(valid)

    def _update_event(self, event: Optional[Event]) -> None:
        if event is None or not event.event_source or not event.key:
            raise ConfigError("nil or invalid event supplied")
        if event.has_updated:
            logger.debug("config update event %r has been updated", event)
            return
        logger.info("config update event received")

        if event.event_type in (EventType.CREATE, EventType.UPDATE):
            with self._map_lock:
                owner = self._configuration_map.get(event.key)
                if owner is None:
                    self._configuration_map[event.key] = event.event_source
                    event.event_type = EventType.CREATE
                elif owner == event.event_source:
                    event.event_type = EventType.UPDATE
                else:
                    winner = self._get_high_priority_source(owner, event.event_source)
                    if winner is not None and winner.name == owner:
                        logger.info(
                            "the event source %s's priority is less then %s's, ignore",
                            event.event_source,
                            owner,
                        )
                        raise IgnoreChangeError()
                    self._configuration_map[event.key] = event.event_source
                    event.event_type = EventType.UPDATE
        elif event.event_type == EventType.DELETE:
            with self._map_lock:
                owner = self._configuration_map.get(event.key)
                if owner is None or owner != event.event_source:
                    logger.info(
                        "the event source %s (expect %s) is not maintained, ignore",
                        event.event_source,
                        owner,
                    )
                    raise IgnoreChangeError()
                fallback = self._find_next_best_source(event.key, owner)
                if fallback is None:
                    del self._configuration_map[event.key]
                else:
                    self._configuration_map[event.key] = fallback.name

        event.has_updated = True

    def on_event(self, event: Event) -> None:
        """Apply one change event and dispatch it to listeners."""
        try:
            self._update_event(event)
        except IgnoreChangeError:
            return
        except ConfigError as exc:
            logger.error("failed in updating event with error: %s", exc)
            return
        self._dispatcher.dispatch_event(event)

    def on_module_event(self, events: list[Event]) -> None:
        """Apply a batch of change events and dispatch them to module listeners."""
        try:
            self._update_module_event(events)
        except ConfigError as exc:
            logger.error("failed in updating events with error: %s", exc)

    def _find_next_best_source(self, key: str, source_name: str) -> Optional[ConfigSource]:
        best: Optional[ConfigSource] = None
        for source in self._source_list():
            if source.name == source_name:
                continue
            try:
                value = source.get_configuration_by_key(key)
            except Exception:
                continue
            if value is None:
                continue
            if best is None or source.priority < best.priority:
                best = source
        return best

    def _get_high_priority_source(self, name_a: str, name_b: str) -> Optional[ConfigSource]:
        source_a = self._source(name_a)
        source_b = self._source(name_b)
        if source_a is None:
            return source_b
        if source_b is None:
            return source_a
        return source_a if source_a.priority < source_b.priority else source_b

    def register_listener(self, listener: Listener, *args: str) -> None:
        """Register a listener for keys matching the given regular expressions."""
        for key in args:
            try:
                re.compile(key)
            except re.error as exc:
                logger.error("invalid key format for %s key. key registration ignored: %s", key, exc)
                raise _invalid_key(key) from exc
        self._dispatcher.register_listener(listener, *args)

    def unregister_listener(self, listener: Listener, *args: str) -> None:
        """Remove a listener from the given key patterns."""
        for key in args:
            try:
                re.compile(key)
            except re.error as exc:
                logger.error("invalid key format for %s key. key registration ignored: %s", key, exc)
                raise _invalid_key(key) from exc
        self._dispatcher.unregister_listener(listener, *args)

    def register_module_listener(self, listener: ModuleListener, *args: str) -> None:
        """Register a module listener for the given key prefixes."""
        for prefix in args:
            if not prefix:
                logger.error("invalid key format for %s key", prefix)
                raise _invalid_key(prefix)
        self._dispatcher.register_module_listener(listener, *args)

    def unregister_module_listener(self, listener: ModuleListener, *args: str) -> None:
        """Remove a module listener from the given key prefixes."""
        for prefix in args:
            if not prefix:
                logger.error("invalid key format for %s key", prefix)
                raise _invalid_key(prefix)
        self._dispatcher.unregister_module_listener(listener, *args)