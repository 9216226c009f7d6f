import time

import pytest

from layeredconf.file_handler import use_file_name_as_key_content_as_value
from layeredconf.file_source import FileSource
from layeredconf.source import (
    ConfigError,
    Event,
    EventHandler,
    EventType,
    KeyNotExistError,
)


class RecordingHandler(EventHandler):
    def __init__(self):
        self.events = []
        self.batches = []

    def on_event(self, event: Event) -> None:
        self.events.append(event)

    def on_module_event(self, events) -> None:
        self.batches.append(list(events))


F1_CONTENT = "\nname: peter\nage: 12\n"
F1_CONTENT2 = "\nname: peter\nage: 13\n"
F2_CONTENT = "\nothers:\n  addr: beijing\n  phone: 123\n"


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def current_age(source):
    try:
        return source.get_configuration_by_key("age")
    except KeyNotExistError:
        return None


def test_file_source_lifecycle(tmp_path):
    file1 = tmp_path / "test1.yaml"
    file2 = tmp_path / "test2.yaml"
    file1.write_text(F1_CONTENT)
    file2.write_text(F2_CONTENT)

    source = FileSource()
    handler = RecordingHandler()
    source.watch(handler)
    try:
        source.add_file(file1, 0, None)
        created = {e.key for e in handler.events if e.event_type == EventType.CREATE}
        assert created == {"name", "age"}

        source.add_file(file1, 0, None)
        assert len(source.get_configurations()) == 2

        with pytest.raises(FileNotFoundError):
            source.add_file("/notexistingdir/notexisting.yaml", 0, None)
        with pytest.raises(FileNotFoundError):
            source.add_file(tmp_path / "dir", 0, None)

        assert len(source.get_configurations()) == 2
        assert source.get_configuration_by_key("name") == "peter"
        assert source.get_configuration_by_key("age") == 12

        file1.write_text(F1_CONTENT2)
        assert wait_for(lambda: current_age(source) == 13)
        assert any(e.key == "age" and e.value == 13 for e in handler.events)
    finally:
        source.cleanup()

    with pytest.raises(KeyNotExistError):
        source.get_configuration_by_key("age")


def test_priority_and_name():
    source = FileSource()
    assert source.priority == 4
    assert source.name == "FileSource"


def test_lower_file_priority_wins(tmp_path):
    low = tmp_path / "low.yaml"
    high = tmp_path / "high.yaml"
    low.write_text("x: 1\n")
    high.write_text("x: 2\n")

    first = FileSource()
    first.add_file(low, 1)
    first.add_file(high, 0)
    assert first.get_configuration_by_key("x") == 2

    second = FileSource()
    second.add_file(high, 0)
    second.add_file(low, 1)
    assert second.get_configuration_by_key("x") == 2


def test_equal_priority_keeps_first_value(tmp_path):
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text("x: first\n")
    b.write_text("x: second\ny: other\n")
    source = FileSource()
    source.add_file(a, 0)
    source.add_file(b, 0)
    assert source.get_configurations() == {"x": "first", "y": "other"}


def test_directory_loads_every_file(tmp_path):
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    (conf_dir / "one.yaml").write_text("a:\n  b: 1\n")
    (conf_dir / "two.yaml").write_text("c: hello\n")
    source = FileSource()
    source.add_file(conf_dir)
    assert source.get_configurations() == {"a.b": 1, "c": "hello"}


def test_custom_handler(tmp_path):
    path = tmp_path / "raw.yaml"
    path.write_bytes(b"a: 1\n")
    source = FileSource()
    source.add_file(path, 0, use_file_name_as_key_content_as_value)
    assert source.get_configuration_by_key("raw.yaml") == b"a: 1\n"


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("a: [1, 2\n")
    source = FileSource()
    with pytest.raises(ConfigError):
        source.add_file(path)
    assert source.get_configurations() == {}


def test_watch_requires_callback():
    with pytest.raises(ValueError):
        FileSource().watch(None)


def test_set_and_delete_do_not_change_files(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("k: v\n")
    source = FileSource()
    source.add_file(path)
    source.set("k", "other")
    source.delete("k")
    assert source.get_configuration_by_key("k") == "v"


def test_cleanup_clears_configuration(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("k: v\n")
    source = FileSource()
    source.add_file(path)
    source.cleanup()
    assert source.get_configurations() == {}