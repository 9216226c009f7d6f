"""Layered configuration from environment, memory and files, merged by priority, with change events."""

__version__ = "0.1.0"
__all__ = [
    "env_source",
    "expand",
    "file_handler",
    "file_source",
    "manager",
    "mem_source",
    "queue",
    "remote",
    "source",
    "unmarshal",
]