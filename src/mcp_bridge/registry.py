"""Tool Registry for MCP Bridge.

Manages registration, discovery, and execution of tools.
Tools are registered by the content tool sets at startup.
"""

import json
from typing import TYPE_CHECKING, Any, Iterable, Optional

from pydantic import ValidationError

from cms.base import ContentError, current_principal
from shared.logging import get_logger
from shared.models import Principal, ToolContent, ToolDescriptor, ToolKind
from shared.schema import build_input_schema, format_schema_error, iter_schema_errors
from mcp_bridge.errors import (
    BackingApiError,
    Forbidden,
    InvalidParameter,
    MissingRequiredParameter,
    ToolDisabled,
    ToolExecutionError,
    ToolNotFound,
    Unauthenticated,
)

if TYPE_CHECKING:
    from mcp_bridge.proxy import BackingApiProxy

logger = get_logger(__name__)

DEFAULT_CAPABILITY = "edit_posts"


def normalize_result(result: Any) -> ToolContent:
    """
    Coerce a handler's return value into protocol content.

    A mapping that already carries a ``content`` list passes through, a
    string becomes a single text block, anything else is rendered as
    indented JSON.
    """
    if isinstance(result, ToolContent):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        return ToolContent.model_validate(result)
    if isinstance(result, str):
        return ToolContent.from_text(result)
    return ToolContent.from_text(json.dumps(result, indent=4, ensure_ascii=False, default=str))


class ToolRegistry:
    """
    Central registry for all MCP tools.

    Responsibilities:
    - Register tool descriptors
    - Publish the manifest of enabled tools
    - Lookup tools by name
    - Enforce availability and capability before executing
    """

    def __init__(
        self,
        proxy: Optional["BackingApiProxy"] = None,
        default_capability: str = DEFAULT_CAPABILITY
    ) -> None:
        self.proxy = proxy
        self.default_capability = default_capability
        # dicts keep insertion order, which is the manifest order
        self._tools: dict[str, ToolDescriptor] = {}

    def register(self, tool: ToolDescriptor) -> bool:
        """
        Register a tool in the registry.

        Registering a name twice keeps the first descriptor.

        Args:
            tool: Tool descriptor to register

        Returns:
            True if the tool was added, False if the name was already taken
        """
        if tool.name in self._tools:
            logger.warning("Tool already registered, keeping existing", tool=tool.name)
            return False

        if tool.capability is None:
            tool = tool.model_copy(update={"capability": self.default_capability})

        self._tools[tool.name] = tool

        logger.info(
            "Tool registered",
            tool=tool.name,
            kind=tool.kind.value,
            strategy="alias" if tool.alias else "callback"
        )
        return True

    def register_many(self, tools: Iterable[ToolDescriptor | dict[str, Any]]) -> int:
        """
        Register multiple tools at once.

        Entries may be descriptors or plain mappings. An entry that fails
        validation is logged and skipped.

        Returns:
            Number of tools added
        """
        count = 0
        for tool in tools:
            try:
                if not isinstance(tool, ToolDescriptor):
                    tool = ToolDescriptor.model_validate(tool)
                if self.register(tool):
                    count += 1
            except (ValidationError, ValueError) as e:
                name = tool.get("name") if isinstance(tool, dict) else getattr(tool, "name", None)
                logger.error("Invalid tool configuration", tool=name, error=str(e))
        return count

    def resolve(self, name: str) -> Optional[ToolDescriptor]:
        """Get a tool by name."""
        return self._tools.get(name)

    def exists(self, name: str) -> bool:
        return name in self._tools

    def _require(self, name: str) -> ToolDescriptor:
        tool = self.resolve(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def list_tools(
        self,
        kind: Optional[ToolKind] = None,
        include_disabled: bool = False
    ) -> list[ToolDescriptor]:
        """
        List registered tools in registration order.

        Args:
            kind: Filter by tool kind
            include_disabled: Include disabled tools
        """
        tools = list(self._tools.values())

        if kind:
            tools = [t for t in tools if t.kind == kind]

        if not include_disabled:
            tools = [t for t in tools if t.enabled]

        return tools

    def set_enabled(self, name: str, enabled: bool) -> None:
        tool = self._require(name)
        self._tools[name] = tool.model_copy(update={"enabled": enabled})
        logger.info("Tool availability changed", tool=name, enabled=enabled)

    def set_capability(self, name: str, capability: str) -> None:
        tool = self._require(name)
        self._tools[name] = tool.model_copy(update={"capability": capability})
        logger.info("Tool capability changed", tool=name, capability=capability)

    def manifest(self) -> dict[str, Any]:
        """
        Get the tools/list payload.

        Returns:
            ``{"tools": [{name, description, inputSchema}, ...]}`` for
            every enabled tool
        """
        return {
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": build_input_schema(tool.parameters),
                }
                for tool in self.list_tools()
            ]
        }

    def get_tool_count(self) -> int:
        """Number of enabled tools."""
        return len(self.list_tools())

    def validate_arguments(self, tool: ToolDescriptor, arguments: dict[str, Any]) -> None:
        """
        Check arguments against the tool's input schema.

        Raises:
            MissingRequiredParameter: A required argument is absent
            InvalidParameter: Any other schema violation
        """
        for name in tool.required_parameters:
            if name not in arguments:
                raise MissingRequiredParameter(name, tool.name)

        errors = iter_schema_errors(arguments, build_input_schema(tool.parameters))
        if errors:
            first = errors[0]
            parameter = str(first.path[0]) if first.path else None
            raise InvalidParameter(format_schema_error(first), parameter=parameter)

    def execute(
        self,
        name: str,
        arguments: Optional[dict[str, Any]],
        principal: Optional[Principal]
    ) -> ToolContent:
        """
        Execute a tool on behalf of a principal.

        Checks run in a fixed order: existence, availability, identity,
        capability, arguments. Only then is the alias proxied or the
        callback invoked.

        Args:
            name: Tool name
            arguments: Tool arguments
            principal: Authenticated caller, None if anonymous

        Returns:
            Normalized tool content
        """
        tool = self.resolve(name)
        if tool is None:
            raise ToolNotFound(name)

        if not tool.enabled:
            raise ToolDisabled(name)

        if principal is None:
            raise Unauthenticated()

        capability = tool.capability or self.default_capability
        if not principal.can(capability):
            logger.warning(
                "Access denied",
                tool=name,
                user=principal.login,
                capability=capability
            )
            raise Forbidden(name)

        arguments = dict(arguments or {})
        self.validate_arguments(tool, arguments)

        logger.debug("Executing tool", tool=name, user=principal.login)

        if tool.alias is not None:
            if self.proxy is None:
                raise ToolExecutionError(f"Tool '{name}' has no backing API configured")
            return self.proxy.call(tool.alias, arguments, principal)

        token = current_principal.set(principal)
        try:
            result = tool.callback(arguments)
        except ContentError as e:
            raise BackingApiError(e.message, e.status, e.code) from e
        except ValueError as e:
            raise ToolExecutionError(str(e)) from e
        finally:
            current_principal.reset(token)

        return normalize_result(result)
