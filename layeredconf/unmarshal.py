"""Fill dataclass instances from the merged configuration of a manager.

Fields are looked up by dotted keys: a field ``max_idle`` of a nested
dataclass stored in field ``pool`` is read from ``pool.max_idle``.  The
key of a field is taken from ``field(metadata={"yaml": "name"})`` when
given, ``"-"`` skips the field, ``",inline"`` collects sibling keys into a
mapping, and otherwise the field name converted to snake case is used.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
import re
import types
from decimal import Decimal
from typing import Any, Optional, Protocol, Union, get_args, get_origin

logger = logging.getLogger(__name__)

TAG_NAME = "yaml"
_IGNORE = "-"
_INLINE = "inline"
_INLINE_TAG = ",inline"
_SCALARS = (str, int, float, bool)
_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_ANNOTATION_PART = re.compile(r"\.\.\.|[A-Za-z_][\w.]*|[\[\],|]")
_KNOWN_NAMES: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "list": list,
    "dict": dict,
    "tuple": tuple,
    "None": type(None),
    "NoneType": type(None),
    "Any": Any,
    "Optional": Optional,
    "Union": Union,
    "List": list,
    "Dict": dict,
    "Tuple": tuple,
}


class UnmarshalError(Exception):
    """Configuration could not be placed into the supplied object."""


class _ConfigReader(Protocol):
    def get_config(self, key: str) -> Any: ...

    def configs(self) -> dict[str, Any]: ...


def to_snake(name: str) -> str:
    """Convert a CamelCase name to snake_case; snake_case names are unchanged."""
    out: list[str] = []
    last = len(name) - 1
    for i, ch in enumerate(name):
        if i > 0 and ch.isupper() and (
            (i < last and name[i + 1].islower()) or name[i - 1].islower()
        ):
            out.append("_")
        out.append(ch.lower())
    return "".join(out)


def convert_value(value: Any, target_type: Any) -> Any:
    """Convert a configuration value to ``target_type``.

    Scalars are converted leniently: unparsable text becomes the type's zero
    value.  Lists and tuples convert element by element, dropping elements
    that cannot be converted; dataclasses are filled from mappings.
    Raises UnmarshalError for types that cannot be produced.
    """
    return _convert(value, target_type, _zero(target_type))


def unmarshal(manager: _ConfigReader, obj: Any) -> None:
    """Fill ``obj`` in place from the configuration ``manager`` holds.

    ``obj`` is a dataclass instance, or a dict that is replaced by every
    configuration key and value.
    """
    if obj is None or isinstance(obj, type) or not (
        dataclasses.is_dataclass(obj) or isinstance(obj, dict)
    ):
        logger.error("invalid object supplied")
        raise UnmarshalError("invalid object supplied")

    decoder = _Decoder(manager)
    try:
        if isinstance(obj, dict):
            configs = manager.configs()
            obj.clear()
            obj.update(configs)
        else:
            decoder.fill_struct(obj, "")
    except UnmarshalError as exc:
        logger.error("%s", exc)
        raise
    except Exception as exc:
        message = f"unmarshalling failed, err: {exc}"
        logger.error(message)
        raise UnmarshalError(message) from exc


def _join(current: str, add: str) -> str:
    if not current:
        return add
    if not add:
        return current
    return f"{current}.{add}"


def _key_name(f: dataclasses.Field) -> Optional[str]:
    tag = f.metadata.get(TAG_NAME, "")
    if tag == _IGNORE:
        return None
    if not tag:
        return to_snake(f.name)
    if tag == _INLINE_TAG:
        return _INLINE
    return tag


def _lookup_name(name: str, module: Any, cls: type) -> Any:
    if name in _KNOWN_NAMES:
        return _KNOWN_NAMES[name]
    if name.startswith("typing.") and name[len("typing."):] in _KNOWN_NAMES:
        return _KNOWN_NAMES[name[len("typing."):]]
    if name == cls.__name__:
        return cls
    if module is None:
        raise LookupError(name)
    target: Any = module
    for part in name.split("."):
        target = getattr(target, part)
    return target


def _subscript(base: Any, args: list[Any]) -> Any:
    if base is Optional:
        return Optional[args[0]]
    if base is Union:
        return Union[tuple(args)]
    return base[tuple(args)] if len(args) > 1 else base[args[0]]


def _parse_annotation(text: str, module: Any, cls: type) -> Any:
    """Resolve a textual annotation such as ``"Optional[list[int]]"``."""
    parts = _ANNOTATION_PART.findall(text)
    pos = 0

    def peek() -> Optional[str]:
        return parts[pos] if pos < len(parts) else None

    def take() -> str:
        nonlocal pos
        part = parts[pos]
        pos += 1
        return part

    def union() -> Any:
        items = [primary()]
        while peek() == "|":
            take()
            items.append(primary())
        return items[0] if len(items) == 1 else Union[tuple(items)]

    def primary() -> Any:
        part = take()
        if part == "...":
            return Ellipsis
        base = _lookup_name(part, module, cls)
        if peek() != "[":
            return base
        take()
        args = [union()]
        while peek() == ",":
            take()
            args.append(union())
        if take() != "]":
            raise ValueError(f"malformed annotation {text!r}")
        return _subscript(base, args)

    result = union()
    if pos != len(parts):
        raise ValueError(f"malformed annotation {text!r}")
    return result


def _hints(cls: type) -> dict[str, Any]:
    module = inspect.getmodule(cls)
    hints: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        tp = f.type
        if isinstance(tp, str):
            try:
                tp = _parse_annotation(tp, module, cls)
            except Exception:
                tp = Any
        hints[f.name] = tp
    return hints


def _unwrap_optional(tp: Any) -> Any:
    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
        return Any
    return tp


def _is_dataclass_type(tp: Any) -> bool:
    return isinstance(tp, type) and dataclasses.is_dataclass(tp)


def _is_mapping_type(tp: Any) -> bool:
    return tp is dict or get_origin(tp) is dict


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", str(tp))


def _zero(tp: Any) -> Any:
    tp = _unwrap_optional(tp)
    if tp is str:
        return ""
    if tp is bool:
        return False
    if tp is int:
        return 0
    if tp is float:
        return 0.0
    origin = get_origin(tp) or tp
    if origin is list:
        return []
    if origin is tuple:
        return ()
    if origin is dict:
        return {}
    return None


def _new(tp: type) -> Any:
    try:
        return tp()
    except TypeError as exc:
        raise UnmarshalError(f"can not create {_type_name(tp)}: {exc}") from exc


def _mismatch(key: str, tp: Any, value: Any) -> UnmarshalError:
    return UnmarshalError(
        f"value types of {key} not matched. expect type : {_type_name(tp)}, "
        f"config client type : {type(value).__name__}"
    )


class _Decoder:
    """Walks a target structure and reads each location from the manager."""

    def __init__(self, manager: _ConfigReader) -> None:
        self._manager = manager

    def fill_struct(self, obj: Any, tag: str) -> None:
        hints = _hints(type(obj))
        for f in dataclasses.fields(obj):
            key = _key_name(f)
            if key is None:
                continue
            tp = hints.get(f.name, Any)
            new_value = self.decode(tp, _join(tag, key), getattr(obj, f.name), parent=obj)
            setattr(obj, f.name, new_value)

    def decode(self, tp: Any, tag: str, current: Any, parent: Any = None) -> Any:
        tp = _unwrap_optional(tp)
        if _is_dataclass_type(tp):
            obj = current if isinstance(current, tp) else _new(tp)
            self.fill_struct(obj, tag)
            return obj
        if _is_mapping_type(tp):
            return self.decode_map(tp, tag, parent)

        value = self._manager.get_config(tag)
        if value is None:
            return current
        try:
            return _convert(value, tp, current)
        except UnmarshalError as exc:
            raise _mismatch(tag, tp, value) from exc

    def decode_map(self, tp: Any, prefix: str, parent: Any) -> dict[str, Any]:
        if not prefix:
            return self._manager.configs()
        args = get_args(tp)
        key_type, value_type = args if len(args) == 2 else (Any, Any)
        if key_type not in (str, Any):
            raise UnmarshalError("map key should be string")

        configs = self._manager.configs()
        if _INLINE in prefix.split("."):
            return self._decode_inline(prefix, value_type, configs, parent)

        nested = _unwrap_optional(value_type) not in (*_SCALARS, Any)
        head = prefix + "."
        result: dict[str, Any] = {}
        for key in sorted(configs):
            if not key.startswith(head):
                continue
            rest = key[len(head):]
            if nested:
                map_key = rest.split(".")[0]
                if map_key not in result:
                    result[map_key] = self.decode(
                        value_type, _join(prefix, map_key), _zero(value_type)
                    )
                continue
            value = self._manager.get_config(key)
            if value is None:
                continue
            try:
                result[rest] = _convert(value, value_type, _zero(value_type))
            except UnmarshalError as exc:
                raise _mismatch(key, value_type, value) from exc
        return result

    def _decode_inline(
        self, prefix: str, value_type: Any, configs: dict[str, Any], parent: Any
    ) -> dict[str, Any]:
        siblings: list[str] = []
        if parent is not None and dataclasses.is_dataclass(parent):
            for f in dataclasses.fields(parent):
                if f.metadata.get(TAG_NAME) != _INLINE_TAG:
                    name = _key_name(f)
                    if name is not None:
                        siblings.append(name)

        base = prefix.split("." + _INLINE)[0]
        segments = prefix.split(".")
        index = max(i for i, part in enumerate(segments) if part == _INLINE)
        qualified = {f"{base}.{name}" for name in siblings}

        found: list[str] = []
        for key in sorted(configs):
            parts = key.split(".")
            if len(parts) == len(segments) or len(parts) <= index:
                continue
            if parts[:index] != segments[:index]:
                continue
            if ".".join(parts[: index + 1]) in qualified:
                continue
            name = parts[index]
            if name not in found and name not in siblings:
                found.append(name)

        return {
            name: self.decode(value_type, f"{base}.{name}", _zero(value_type))
            for name in found
        }


def _convert(value: Any, tp: Any, current: Any) -> Any:
    tp = _unwrap_optional(tp)
    if tp is Any:
        return value
    if tp is bool:
        return _to_bool(value)
    if tp is int:
        return _to_int(value)
    if tp is float:
        return _to_float(value)
    if tp is str:
        return _to_str(value)
    origin = get_origin(tp) or tp
    if origin in (list, tuple):
        return _to_sequence(value, tp, current)
    if _is_dataclass_type(tp):
        return _to_struct(value, tp, current)
    raise UnmarshalError("can not convert type")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        try:
            return int(value)
        except (ValueError, OverflowError):
            return 0
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            return 0
    return 0


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value in _TRUE_WORDS:
            return True
        return False
    return False


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return {"inf": "+Inf", "-inf": "-Inf"}.get(repr(value), "NaN")
        text = format(Decimal(repr(value)), "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return ""


def _to_sequence(value: Any, tp: Any, current: Any) -> Any:
    if not isinstance(value, (list, tuple)):
        return current
    origin = get_origin(tp) or tp
    args = get_args(tp)

    if origin is tuple and args and not (len(args) == 2 and args[1] is Ellipsis):
        if len(value) != len(args):
            raise UnmarshalError(
                f"invalid array: want {len(args)} elements but got {len(value)}"
            )
        items = []
        for item, item_type in zip(value, args):
            try:
                items.append(_convert(item, item_type, _zero(item_type)))
            except UnmarshalError:
                items.append(_zero(item_type))
        return tuple(items)

    element_type = args[0] if args else Any
    converted = []
    for item in value:
        try:
            converted.append(_convert(item, element_type, _zero(element_type)))
        except UnmarshalError:
            continue
    return tuple(converted) if origin is tuple else converted


def _to_struct(value: Any, tp: type, current: Any) -> Any:
    obj = current if isinstance(current, tp) else _new(tp)
    if not isinstance(value, dict):
        return obj
    hints = _hints(tp)
    for f in dataclasses.fields(tp):
        key = _key_name(f)
        if key is None or key not in value:
            continue
        try:
            converted = _convert(value[key], hints.get(f.name, Any), getattr(obj, f.name))
        except UnmarshalError:
            continue
        setattr(obj, f.name, converted)
    return obj