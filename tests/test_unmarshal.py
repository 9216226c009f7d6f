from dataclasses import dataclass, field
from typing import Any, Optional

import pytest

from layeredconf.unmarshal import UnmarshalError, convert_value, to_snake, unmarshal


class FakeManager:
    def __init__(self, data):
        self._data = dict(data)

    def get_config(self, key):
        return self._data.get(key)

    def configs(self):
        return dict(self._data)


@dataclass
class Pool:
    max_idle: int = 0
    name: str = ""


@dataclass
class Server:
    host: str = ""
    port: int = 0
    debug: bool = False
    ratio: float = 0.0
    tags: list[str] = field(default_factory=list)
    pool: Pool = field(default_factory=Pool)
    limits: dict[str, int] = field(default_factory=dict)
    routes: dict[str, Pool] = field(default_factory=dict)
    skipped: str = field(default="keep", metadata={"yaml": "-"})
    display: str = field(default="", metadata={"yaml": "display_name"})
    extra: Optional[Pool] = None
    members: list[Pool] = field(default_factory=list)


@dataclass
class Strategy:
    name: str = ""


@dataclass
class LoadBalance:
    strategy: Strategy = field(default_factory=Strategy)
    services: dict[str, Strategy] = field(default_factory=dict, metadata={"yaml": ",inline"})


@dataclass
class Root:
    loadbalance: LoadBalance = field(default_factory=LoadBalance)


@dataclass
class NeedsArgs:
    value: int


@dataclass
class HoldsNeedsArgs:
    inner: NeedsArgs = None  # type: ignore[assignment]


@dataclass
class IntKeyed:
    table: dict[int, str] = field(default_factory=dict)


@dataclass
class Pair:
    coords: tuple[int, int] = (0, 0)


SERVER_CONFIG = {
    "host": "localhost",
    "port": "8080",
    "debug": "true",
    "ratio": 2,
    "tags": ["a", "b"],
    "pool.max_idle": "5",
    "pool.name": "p",
    "limits.a": "1",
    "limits.b.c": 2,
    "routes.r1.max_idle": 3,
    "routes.r1.name": "one",
    "routes.r2.name": "two",
    "skipped": "changed",
    "display_name": "Shown",
    "extra.name": "x",
    "members": [{"max_idle": 1, "name": "a"}, "bad"],
}


@pytest.fixture
def server():
    target = Server()
    unmarshal(FakeManager(SERVER_CONFIG), target)
    return target


def test_to_snake_converts_camel_case():
    assert to_snake("MaxIdle") == "max_idle"
    assert to_snake("HTTPServer") == "http_server"


def test_to_snake_keeps_snake_case():
    assert to_snake("already_snake") == "already_snake"


def test_scalar_fields(server):
    assert server.host == "localhost"
    assert server.port == 8080
    assert server.debug is True
    assert server.ratio == 2.0
    assert server.tags == ["a", "b"]


def test_nested_and_renamed_fields(server):
    assert server.pool == Pool(max_idle=5, name="p")
    assert server.display == "Shown"
    assert server.skipped == "keep"


def test_optional_nested_is_created(server):
    assert server.extra == Pool(max_idle=0, name="x")


def test_scalar_map_uses_rest_of_key(server):
    assert server.limits == {"a": 1, "b.c": 2}


def test_struct_map_groups_by_first_segment(server):
    assert server.routes == {"r1": Pool(max_idle=3, name="one"), "r2": Pool(max_idle=0, name="two")}


def test_list_of_dataclasses(server):
    assert server.members == [Pool(max_idle=1, name="a"), Pool()]


def test_missing_keys_keep_defaults():
    target = Server(host="orig", port=1)
    unmarshal(FakeManager({}), target)
    assert target.host == "orig"
    assert target.port == 1
    assert target.routes == {}


def test_inline_map_collects_sibling_keys():
    data = {
        "loadbalance.strategy.name": "rr",
        "loadbalance.svc.name": "random",
    }
    target = Root()
    unmarshal(FakeManager(data), target)
    assert target.loadbalance.strategy == Strategy(name="rr")
    assert target.loadbalance.services == {"svc": Strategy(name="random")}


def test_top_level_dict_is_replaced_by_configs():
    data = {"a.b": 1, "c": "d"}
    target = {"stale": True}
    unmarshal(FakeManager(data), target)
    assert target == data


@pytest.mark.parametrize("bad", [None, 5, "text", Pool])
def test_invalid_object(bad):
    with pytest.raises(UnmarshalError):
        unmarshal(FakeManager({}), bad)


def test_map_key_must_be_string():
    with pytest.raises(UnmarshalError, match="map key should be string"):
        unmarshal(FakeManager({"table.1": "x"}), IntKeyed())


def test_fixed_tuple_length_mismatch():
    with pytest.raises(UnmarshalError, match="coords"):
        unmarshal(FakeManager({"coords": [1]}), Pair())


def test_fixed_tuple_converts():
    target = Pair()
    unmarshal(FakeManager({"coords": ["3", 4]}), target)
    assert target.coords == (3, 4)


def test_nested_dataclass_without_defaults():
    with pytest.raises(UnmarshalError):
        unmarshal(FakeManager({"inner.value": 1}), HoldsNeedsArgs())


def test_convert_value_round_trip_int_str():
    assert convert_value(convert_value(7, str), int) == 7


def test_convert_value_float_to_str():
    assert convert_value(1.5, str) == "1.5"


def test_convert_value_bool_words():
    assert convert_value("t", bool) is True
    assert convert_value("false", bool) is False
    assert convert_value(True, str) == "true"


def test_convert_value_unparsable_int_gives_zero_value():
    assert convert_value("abc", int) == convert_value(None, int)


def test_convert_value_list():
    assert convert_value(["1", "2"], list[int]) == [1, 2]


def test_convert_value_any_passes_through():
    payload = {"k": [1, 2]}
    assert convert_value(payload, Any) is payload


def test_convert_value_dataclass_from_mapping():
    assert convert_value({"max_idle": "9", "name": "n"}, Pool) == Pool(max_idle=9, name="n")


def test_convert_value_unsupported_type():
    with pytest.raises(UnmarshalError, match="can not convert type"):
        convert_value({"a": 1}, dict[str, int])


def test_convert_value_tuple_length_error():
    with pytest.raises(UnmarshalError, match="invalid array"):
        convert_value(["a"], tuple[int, int])