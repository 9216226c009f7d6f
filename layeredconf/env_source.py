"""Configuration taken from the process environment."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Mapping

from .source import ConfigSource, EventHandler, KeyNotExistError

logger = logging.getLogger(__name__)

ENV_SOURCE_NAME = "EnvironmentSource"
ENV_SOURCE_PRIORITY = 3


class EnvSource(ConfigSource):
    """Exposes environment variables as configuration.

    Every variable is available under its own name and under the name with
    underscores turned into dots, so ``a_b_c`` can be read as ``a.b.c``.
    """

    name = ENV_SOURCE_NAME

    def __init__(self) -> None:
        super().__init__(priority=ENV_SOURCE_PRIORITY)
        logger.info("enable env source")
        self._lock = threading.Lock()
        self._configs: dict[str, Any] = {}
        self._dimensions: list[dict[str, str]] = []
        self._pull_configurations()

    def _pull_configurations(self) -> None:
        configs: dict[str, Any] = {}
        for key, value in os.environ.items():
            configs[key] = value
            configs[key.replace("_", ".")] = value
        with self._lock:
            self._configs = configs

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
        """Environment changes are not reported."""

    def cleanup(self) -> None:
        with self._lock:
            self._configs = {}

    def add_dimension_info(self, labels: Mapping[str, str]) -> None:
        """Record the labels; they do not filter environment variables."""
        with self._lock:
            self._dimensions.append(dict(labels or {}))

    def set(self, key: str, value: Any) -> None:
        """The environment source is read-only."""

    def delete(self, key: str) -> None:
        """The environment source is read-only."""