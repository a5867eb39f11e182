"""Shared utilities and base classes for MCP Bridge."""

from shared.models import (
    AuditEntry,
    BackingApiAlias,
    ContentBlock,
    ParameterSchema,
    Principal,
    ToolContent,
    ToolDescriptor,
    ToolKind,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__version__ = "1.2.2"

__all__ = [
    "AuditEntry",
    "BackingApiAlias",
    "ContentBlock",
    "ParameterSchema",
    "Principal",
    "ToolContent",
    "ToolDescriptor",
    "ToolKind",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
