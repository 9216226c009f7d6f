"""Options, labels and dimensions shared by remote configuration sources."""

from __future__ import annotations

import enum
import re
import ssl
from dataclasses import dataclass, field
from typing import Mapping, Optional

LABEL_SERVICE = "serviceName"
LABEL_VERSION = "version"
LABEL_ENVIRONMENT = "environment"
LABEL_APP = "appId"

#: Default refresh interval, in seconds.
DEFAULT_INTERVAL = 30.0

_MAX_DIMENSION_LENGTH = 256
_DIMENSION_RE = re.compile(r'[^$%&+(/)\[\]" ]*')


class RemoteError(Exception):
    """Base class for remote source errors."""


class InvalidEndpointError(RemoteError, ValueError):
    """No usable server address was given."""

    def __init__(self, message: str = "invalid endpoint") -> None:
        super().__init__(message)


class LabelsNilError(RemoteError, ValueError):
    """Labels were required but not given."""

    def __init__(self, message: str = "labels can not be nil") -> None:
        super().__init__(message)


class AppEmptyError(RemoteError, ValueError):
    """The application label is empty."""

    def __init__(self, message: str = "app can not be empty") -> None:
        super().__init__(message)


class ServiceTooLongError(RemoteError, ValueError):
    """The generated service dimension exceeds the allowed length."""

    def __init__(self, message: str = "exceeded max value for service name") -> None:
        super().__init__(message)


class RefreshMode(enum.IntEnum):
    """How a remote source learns about changes."""

    WATCH = 0
    INTERVAL = 1


class DimensionName(str, enum.Enum):
    """A label combination under which configuration is stored."""

    APP = "app"
    SERVICE = "service"


#: Dimensions ordered from lowest to highest priority.
DIMENSION_PRECEDENCE = (DimensionName.APP, DimensionName.SERVICE)


@dataclass
class Options:
    """Settings for a remote configuration client."""

    server_uri: str = ""
    endpoint: str = ""
    tls_config: Optional[ssl.SSLContext] = None
    tenant_name: str = ""
    enable_ssl: bool = False
    api_version: str = ""
    auto_discovery: bool = False
    refresh_port: str = ""
    watch_timeout: int = 0
    verify_peer: bool = False
    project_id: str = ""
    labels: dict[str, str] = field(default_factory=dict)


def generate_dimension(service_name: str, version: str, app_name: str) -> str:
    """Build a config-center dimension string ``service@app#version``."""
    if not app_name:
        raise AppEmptyError()
    dimension = f"{service_name}@{app_name}"
    if version:
        dimension = f"{dimension}#{version}"
    if len(dimension.encode("utf-8")) > _MAX_DIMENSION_LENGTH:
        raise ServiceTooLongError()
    if not _DIMENSION_RE.fullmatch(dimension):
        raise RemoteError(
            "invalid value for dimension info, does not satisfy the regular "
            f"expression for dimInfo:{dimension}"
        )
    return dimension


def generate_labels(
    dimension: DimensionName | str, options_labels: Optional[Mapping[str, str]]
) -> dict[str, str]:
    """Select the labels that identify the given dimension."""
    if options_labels is None:
        raise LabelsNilError()
    app = options_labels.get(LABEL_APP, "")
    if not app:
        raise AppEmptyError()
    labels = {
        LABEL_APP: app,
        LABEL_ENVIRONMENT: options_labels.get(LABEL_ENVIRONMENT, ""),
    }
    if dimension == DimensionName.APP:
        return labels
    labels[LABEL_SERVICE] = options_labels.get(LABEL_SERVICE, "")
    labels[LABEL_VERSION] = options_labels.get(LABEL_VERSION, "")
    if dimension == DimensionName.SERVICE:
        return labels
    raise RemoteError(f"do not support dimension {getattr(dimension, 'value', dimension)}")