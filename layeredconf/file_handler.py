"""Handlers that turn file content into configuration keys and values."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable

import yaml

from .expand import expand_value_env

logger = logging.getLogger(__name__)

#: Signature of a file handler: (path, content) -> key/value mapping.
FileHandler = Callable[[str, bytes], dict[str, Any]]


def convert_to_java_props(path: str, content: bytes | str) -> dict[str, Any]:
    """Flatten YAML content into dotted keys, expanding environment references."""
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ValueError(f"yaml unmarshal [{content!r}] failed, {exc}") from exc
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError(f"yaml unmarshal [{content!r}] failed, content is not a mapping")
    return _retrieve_items("", document)


def _retrieve_items(prefix: str, items: dict[Any, Any]) -> dict[str, Any]:
    if prefix:
        prefix += "."
    result: dict[str, Any] = {}
    for key, value in items.items():
        if not isinstance(key, str):
            logger.error("yaml tag is not string: %r", key)
            continue
        if isinstance(value, dict):
            result.update(_retrieve_items(prefix + key, value))
        elif isinstance(value, list):
            result[prefix + key] = _retrieve_items_in_list(value)
        elif isinstance(value, str):
            result[prefix + key] = expand_value_env(value)
        else:
            result[prefix + key] = value
    return result


def _retrieve_items_in_list(values: list[Any]) -> list[Any]:
    converted = []
    for value in values:
        if isinstance(value, dict):
            converted.append(_retrieve_items("", value))
        elif isinstance(value, str):
            converted.append(expand_value_env(value))
        else:
            converted.append(value)
    return converted


def use_file_name_as_key_content_as_value(path: str, content: bytes) -> dict[str, Any]:
    """Use the file's base name as the only key and its raw content as the value."""
    return {os.path.basename(path): content}


def convert_to_config_map(path: str, content: bytes) -> dict[str, Any]:
    """Older name of use_file_name_as_key_content_as_value."""
    return use_file_name_as_key_content_as_value(path, content)