"""Error types for MCP Bridge.

Every failure the bridge reports is a BridgeError. The protocol handler turns
them into JSON-RPC error objects; the HTTP layer uses ``http_status`` for
the few kinds that are rejected at the transport level.

JSON-RPC codes:
- -32700: Parse error (body is not JSON)
- -32600: Invalid Request (no method)
- -32601: Method not found
- -32602: Invalid params (missing or invalid arguments)
- -32603: Internal error
- -32001..-32004: permission, authentication, lookup, availability
- -1: Generic (backing API and tool handler failures)
"""

from typing import Any, Optional

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

PERMISSION_DENIED = -32001
UNAUTHENTICATED = -32002
NOT_FOUND = -32003
UNAVAILABLE = -32004

GENERIC_ERROR = -1


class BridgeError(Exception):
    """
    Base exception for bridge failures.

    Attributes:
        code: JSON-RPC error code.
        message: Human-readable error message.
        data: Optional structured details surfaced to the caller.
        http_status: Status used when the error is answered at the transport level.
    """

    code: int = GENERIC_ERROR
    http_status: int = 200

    def __init__(self, message: str, data: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code}, "
            f"message={self.message!r}, "
            f"data={self.data!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to a JSON-RPC error object."""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            error["data"] = self.data
        return error


class MalformedBody(BridgeError):
    """The request body is not JSON or is not a JSON-RPC request."""

    http_status = 400

    def __init__(self, message: str, code: int = INVALID_REQUEST, request_id: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.request_id = request_id


class MethodNotFound(BridgeError):
    code = METHOD_NOT_FOUND

    def __init__(self, method: str) -> None:
        super().__init__(f"Unknown method: {method}", data={"method": method})


class InvalidParams(BridgeError):
    code = INVALID_PARAMS


class MissingRequiredParameter(InvalidParams):
    def __init__(self, parameter: str, tool: Optional[str] = None) -> None:
        if tool:
            message = f"Required parameter '{parameter}' is missing for tool '{tool}'"
        else:
            message = f"Required parameter '{parameter}' is missing"
        super().__init__(message, data={"parameter": parameter})
        self.parameter = parameter


class InvalidParameter(InvalidParams):
    def __init__(self, message: str, parameter: Optional[str] = None) -> None:
        super().__init__(message, data={"parameter": parameter} if parameter else None)
        self.parameter = parameter


class ToolNotFound(BridgeError):
    code = NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found")
        self.name = name


class ResourceNotFound(BridgeError):
    code = NOT_FOUND


class ToolDisabled(BridgeError):
    code = UNAVAILABLE

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is disabled")
        self.name = name


class Unauthenticated(BridgeError):
    code = UNAUTHENTICATED
    http_status = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class Forbidden(BridgeError):
    code = PERMISSION_DENIED

    def __init__(self, name: str) -> None:
        super().__init__(f"Insufficient permissions to execute tool '{name}'")
        self.name = name


class BackingApiError(BridgeError):
    """The backing content API answered with an error."""

    def __init__(self, message: str, status: int, error_code: Optional[str] = None) -> None:
        super().__init__(
            f"REST API error: {message}",
            data={"status": status, "code": error_code},
        )
        self.status = status
        self.error_code = error_code


class ToolExecutionError(BridgeError):
    """A local tool handler refused or failed the call."""


class InternalError(BridgeError):
    code = INTERNAL_ERROR

    def __init__(self, message: str = "Internal error") -> None:
        super().__init__(message)


class GateRejection(BridgeError):
    """Base for security gate rejections, answered without a JSON-RPC body."""

    http_status = 403


class OriginRejected(GateRejection):
    def __init__(self, origin: str) -> None:
        super().__init__("Origin not allowed")
        self.origin = origin


class IpRejected(GateRejection):
    def __init__(self, ip: str) -> None:
        super().__init__("Client address not allowed")
        self.ip = ip


class RateLimited(GateRejection):
    http_status = 429

    def __init__(self, identifier: str, retry_after: int) -> None:
        super().__init__("Rate limit exceeded")
        self.identifier = identifier
        self.retry_after = retry_after
