import pytest

from layeredconf.source import (
    ConfigError,
    ConfigSource,
    Event,
    EventHandler,
    EventType,
    IgnoreChangeError,
    KeyNotExistError,
    WriterInvalidError,
)


class Collector(EventHandler):
    def __init__(self):
        self.events = []
        self.batches = []

    def on_event(self, event):
        self.events.append(event)

    def on_module_event(self, events):
        self.batches.append(list(events))


def test_config_source_is_abstract():
    with pytest.raises(TypeError):
        ConfigSource()


def test_event_handler_is_abstract():
    with pytest.raises(TypeError):
        EventHandler()


def test_event_defaults():
    event = Event("mem", "a.b", EventType.UPDATE)
    assert event.value is None
    assert event.has_updated is False
    assert event.event_type is EventType.UPDATE


@pytest.mark.parametrize("event_type", list(EventType))
def test_event_keeps_its_fields(event_type):
    event = Event("FileSource", "name", event_type, "peter")
    assert event.event_source == "FileSource"
    assert event.key == "name"
    assert event.event_type is event_type
    assert event.value == "peter"


def test_event_can_be_marked_updated():
    event = Event("mem", "k", EventType.CREATE, 1)
    event.has_updated = True
    event.event_type = EventType.UPDATE
    assert event.has_updated is True
    assert event.event_type is EventType.UPDATE


def test_handler_receives_events():
    collector = Collector()
    first = Event("mem", "x", EventType.CREATE, 1)
    second = Event("mem", "y", EventType.DELETE, 2)
    collector.on_event(first)
    collector.on_module_event([first, second])
    assert [(e.key, e.value) for e in collector.events] == [("x", 1)]
    assert [[e.key for e in batch] for batch in collector.batches] == [["x", "y"]]


def test_key_not_exist_is_a_config_error():
    error = KeyNotExistError()
    assert isinstance(error, ConfigError)
    assert error.args == ("key does not exist",)


def test_error_hierarchy():
    assert issubclass(KeyNotExistError, ConfigError)
    assert issubclass(IgnoreChangeError, ConfigError)
    assert issubclass(WriterInvalidError, ConfigError)
    assert str(KeyNotExistError()) == "key does not exist"
    assert str(WriterInvalidError()) == "writer is invalid"