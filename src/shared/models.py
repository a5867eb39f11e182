"""Core data models for MCP Bridge.

This module defines the shared data structures used across the bridge:
tool descriptors and their parameter schemas, the authenticated principal,
protocol content blocks and audit entries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Verbs the backing REST API understands
HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"})

JSON_TYPES = frozenset({"string", "integer", "number", "boolean", "array", "object", "null"})


class ToolKind(str, Enum):
    """What a tool does to the content it touches."""
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ParameterSchema(BaseModel):
    """Definition of a single tool parameter."""
    type: str | list[str]
    description: str = ""
    required: bool = False
    default: Any = None
    enum: Optional[list[Any]] = None
    minimum: Optional[int | float] = None
    maximum: Optional[int | float] = None
    items: Optional[dict[str, Any]] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str | list[str]) -> str | list[str]:
        names = [value] if isinstance(value, str) else value
        if not names:
            raise ValueError("parameter type must not be empty")
        unknown = [name for name in names if name not in JSON_TYPES]
        if unknown:
            raise ValueError(f"unknown parameter type(s): {', '.join(unknown)}")
        return value

    @model_validator(mode="after")
    def _constraints_match_type(self) -> "ParameterSchema":
        names = {self.type} if isinstance(self.type, str) else set(self.type)
        if (self.minimum is not None or self.maximum is not None) and not names & {"integer", "number"}:
            raise ValueError("minimum/maximum only apply to numeric parameters")
        if self.items is not None and "array" not in names:
            raise ValueError("items only applies to array parameters")
        return self

    def to_json_schema(self) -> dict[str, Any]:
        """Property entry as published in a tool's inputSchema."""
        schema: dict[str, Any] = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum is not None:
            schema["enum"] = self.enum
        if self.default is not None:
            schema["default"] = self.default
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.items is not None:
            schema["items"] = self.items
        return schema


class BackingApiAlias(BaseModel):
    """Route template and verb a tool proxies to on the backing REST API."""
    route: str = Field(..., min_length=1, description="Route template, may contain {param} placeholders")
    method: str = Field(default="GET")

    model_config = ConfigDict(frozen=True)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        method = value.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method '{value}'")
        return method


ToolCallback = Callable[[dict[str, Any]], Any]


class ToolDescriptor(BaseModel):
    """
    Complete definition of an MCP tool.

    A tool executes either through a backing API alias or through a local
    callback, never both. Descriptors are frozen; the registry swaps in a
    copy when a tool is enabled, disabled or given a new capability.
    """
    name: str = Field(..., min_length=1, description="Unique tool name")
    description: str = Field(..., min_length=1, description="Clear description for LLM usage")
    kind: ToolKind
    enabled: bool = True
    capability: Optional[str] = Field(default=None, description="Required capability, registry default when unset")
    parameters: dict[str, ParameterSchema] = Field(default_factory=dict)

    # Execution strategy
    alias: Optional[BackingApiAlias] = None
    callback: Optional[ToolCallback] = Field(default=None, exclude=True, repr=False)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _one_strategy(self) -> "ToolDescriptor":
        if self.alias is None and self.callback is None:
            raise ValueError(f"Tool '{self.name}' has no executable handler")
        if self.alias is not None and self.callback is not None:
            raise ValueError(f"Tool '{self.name}' cannot have both an alias and a callback")
        return self

    @property
    def required_parameters(self) -> list[str]:
        """Names of parameters flagged as required, in declaration order."""
        return [name for name, param in self.parameters.items() if param.required]


class Principal(BaseModel):
    """Authenticated identity resolved for a single request."""
    id: int
    login: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    capabilities: frozenset[str] = Field(default_factory=frozenset)

    model_config = ConfigDict(frozen=True)

    def can(self, capability: str) -> bool:
        """Check whether the principal holds a capability."""
        return capability in self.capabilities


class ContentBlock(BaseModel):
    """A single typed block of tool output."""
    type: Literal["text"] = "text"
    text: str


class ToolContent(BaseModel):
    """Protocol content envelope returned by every tool."""
    content: list[ContentBlock]

    @classmethod
    def from_text(cls, text: str) -> "ToolContent":
        return cls(content=[ContentBlock(text=text)])


class AuditStatus(str, Enum):
    """Outcome of an audited tool call."""
    SUCCESS = "success"
    ERROR = "error"


class AuditEntry(BaseModel):
    """
    Audit log entry for tool executions.

    Captures user, tool, arguments, timestamp, and result.
    """
    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: Optional[str] = None

    # User information
    user_login: Optional[str] = None
    user_id: Optional[int] = None

    # Tool information
    tool_name: str
    kind: Optional[ToolKind] = None

    # Request details
    arguments: dict[str, Any] = Field(default_factory=dict)

    # Result information
    status: AuditStatus
    error: Optional[str] = None
    execution_time_ms: float = 0
