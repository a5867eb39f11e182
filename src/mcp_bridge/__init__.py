"""MCP Bridge - JSON-RPC gateway to content tools.

The bridge registers content tools, authenticates callers, gates requests
by origin, address and rate, dispatches JSON-RPC methods and audits every
tool execution.
"""

from mcp_bridge.registry import ToolRegistry
from mcp_bridge.auth import AuthenticationResolver
from mcp_bridge.security import RateLimiter, SecurityGate
from mcp_bridge.audit import AuditLogger
from mcp_bridge.protocol import ProtocolHandler

__all__ = [
    "ToolRegistry",
    "AuthenticationResolver",
    "RateLimiter",
    "SecurityGate",
    "AuditLogger",
    "ProtocolHandler",
]
