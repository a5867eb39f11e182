"""JSON-RPC protocol handling for MCP Bridge.

Parses the request body, authenticates the caller when the method needs it,
dispatches by method name and wraps the outcome in a JSON-RPC envelope.
"""

import asyncio
import functools
import json
import re
import time
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import BaseModel, Field

from cms.base import CATEGORIES, POSTS, ContentError, ContentStore, raw_content
from shared.config import ServerSettings
from shared.logging import get_logger
from shared.models import Principal
from mcp_bridge.audit import AuditLogger
from mcp_bridge.auth import AuthenticationResolver, requires_authentication
from mcp_bridge.errors import (
    INVALID_REQUEST,
    PARSE_ERROR,
    BackingApiError,
    BridgeError,
    InternalError,
    InvalidParams,
    MalformedBody,
    MethodNotFound,
    MissingRequiredParameter,
    ResourceNotFound,
)
from mcp_bridge.registry import ToolRegistry

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"


class RequestState(str, Enum):
    """Lifecycle of a single request through the handler."""
    RECEIVED = "received"
    PARSED = "parsed"
    AUTHENTICATED = "authenticated"
    DISPATCHED = "dispatched"
    RESPONDED = "responded"
    ERROR_RESPONDED = "error-responded"


class RpcMethod(str, Enum):
    INITIALIZE = "initialize"
    PING = "ping"
    NOTIFICATIONS_INITIALIZED = "notifications/initialized"
    INITIALIZED = "initialized"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    PROMPTS_LIST = "prompts/list"
    # Legacy method names kept for older clients
    GET_POSTS = "getPosts"
    CREATE_POST = "createPost"


LEGACY_TOOLS = {
    RpcMethod.GET_POSTS: "wp_get_posts",
    RpcMethod.CREATE_POST: "wp_create_post",
}


class RpcRequest(BaseModel):
    method: str
    id: Any = None
    params: dict[str, Any] = Field(default_factory=dict)


class RpcResponse(BaseModel):
    """Envelope plus the transport metadata the HTTP layer needs."""
    body: dict[str, Any]
    http_status: int = 200
    state: RequestState
    session_id: str
    principal: Optional[Principal] = None

    @property
    def session_status(self) -> str:
        return "error" if self.state == RequestState.ERROR_RESPONDED else "active"


def parse_request(raw: bytes | str) -> RpcRequest:
    """
    Parse a JSON-RPC request body.

    Raises:
        MalformedBody: Body is not JSON (-32700) or has no method (-32600).
            Carries the request id whenever the body is a JSON object.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedBody("Parse error", code=PARSE_ERROR)

    if not isinstance(data, dict):
        raise MalformedBody("Invalid Request", code=INVALID_REQUEST)

    request_id = data.get("id")

    method = data.get("method")
    if not isinstance(method, str) or not method:
        raise MalformedBody(
            "Invalid Request: method is required", code=INVALID_REQUEST, request_id=request_id
        )

    params = data.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise MalformedBody(
            "Invalid Request: params must be an object", code=INVALID_REQUEST, request_id=request_id
        )

    return RpcRequest(method=method, id=request_id, params=params)


def success_envelope(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "result": result, "id": request_id}


def error_envelope(request_id: Any, error: BridgeError) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "error": error.to_dict(), "id": request_id}


class RpcCall(BaseModel):
    """A parsed request bound to its caller."""
    params: dict[str, Any] = Field(default_factory=dict)
    principal: Optional[Principal] = None
    session_id: Optional[str] = None


Handler = Callable[[RpcCall], Awaitable[Any]]


class ProtocolHandler:
    """
    Session and method dispatcher.

    One instance lives for the whole process. Its session identifier is
    informational and is never used to look up state.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        resolver: AuthenticationResolver,
        store: ContentStore,
        audit: Optional[AuditLogger] = None,
        settings: Optional[ServerSettings] = None
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.store = store
        self.audit = audit
        self.settings = settings or ServerSettings()
        self._session_id: Optional[str] = None
        self.handshake_complete = False
        self._resource_uri = re.compile(
            rf"^{re.escape(self.settings.resource_scheme)}://posts/([\w-]+)$"
        )

        self._handlers: dict[RpcMethod, Handler] = {
            RpcMethod.INITIALIZE: self._initialize,
            RpcMethod.PING: self._ping,
            RpcMethod.NOTIFICATIONS_INITIALIZED: self._initialized,
            RpcMethod.INITIALIZED: self._initialized,
            RpcMethod.TOOLS_LIST: self._tools_list,
            RpcMethod.TOOLS_CALL: self._tools_call,
            RpcMethod.RESOURCES_LIST: self._resources_list,
            RpcMethod.RESOURCES_READ: self._resources_read,
            RpcMethod.PROMPTS_LIST: self._prompts_list,
            RpcMethod.GET_POSTS: self._get_posts,
            RpcMethod.CREATE_POST: self._create_post,
        }

    @property
    def session_id(self) -> str:
        if self._session_id is None:
            self._session_id = uuid.uuid4().hex
            logger.info("Session started", session_id=self._session_id)
        return self._session_id

    async def handle(self, raw: bytes | str, headers: Mapping[str, str]) -> RpcResponse:
        """
        Handle one JSON-RPC request.

        Never raises: every failure becomes an error envelope.
        """
        headers = {k.lower(): v for k, v in headers.items()}
        session_id = headers.get("mcp-session-id") or self.session_id
        state = RequestState.RECEIVED
        request_id = None
        principal: Optional[Principal] = None

        def respond(body: dict[str, Any], final: RequestState, http_status: int = 200) -> RpcResponse:
            logger.debug("Request state", state=final.value, session_id=session_id)
            return RpcResponse(
                body=body,
                http_status=http_status,
                state=final,
                session_id=session_id,
                principal=principal,
            )

        try:
            request = parse_request(raw)
            request_id = request.id
            state = RequestState.PARSED
            logger.debug("Request parsed", method=request.method, session_id=session_id)

            if requires_authentication(request.method):
                principal = await self._run(self.resolver.resolve, headers)
                state = RequestState.AUTHENTICATED

            state = RequestState.DISPATCHED
            call = RpcCall(params=request.params, principal=principal, session_id=session_id)
            result = await self.dispatch(request.method, call)
            return respond(success_envelope(request_id, result), RequestState.RESPONDED)

        except BridgeError as e:
            if isinstance(e, MalformedBody) and request_id is None:
                request_id = e.request_id
            logger.info(
                "Request failed",
                state=state.value,
                code=e.code,
                error=e.message,
                session_id=session_id
            )
            return respond(error_envelope(request_id, e), RequestState.ERROR_RESPONDED, e.http_status)

        except Exception:
            logger.exception("Unhandled error in protocol handler", state=state.value)
            return respond(error_envelope(request_id, InternalError()), RequestState.ERROR_RESPONDED)

    async def dispatch(self, method: str, call: RpcCall) -> Any:
        """
        Route a method to its handler.

        A method outside the table that names a registered tool is treated
        as a tools/call with ``params`` as the arguments.
        """
        try:
            rpc_method = RpcMethod(method)
        except ValueError:
            if self.registry.exists(method):
                return await self.call_tool(method, call.params, call)
            raise MethodNotFound(method)

        return await self._handlers[rpc_method](call)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run blocking store or registry work off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def call_tool(self, name: str, arguments: dict[str, Any], call: RpcCall) -> dict[str, Any]:
        """Execute a tool and record the attempt in the audit log."""
        start_time = time.perf_counter()
        error: Optional[str] = None

        try:
            content = await self._run(self.registry.execute, name, arguments, call.principal)
            return content.model_dump()
        except BridgeError as e:
            error = e.message
            raise
        except Exception:
            error = "Internal error"
            raise
        finally:
            if self.audit is not None:
                await self.audit.log(
                    name,
                    arguments,
                    call.principal,
                    error=error,
                    execution_time_ms=(time.perf_counter() - start_time) * 1000,
                    tool=self.registry.resolve(name),
                    session_id=call.session_id,
                )

    async def _initialize(self, call: RpcCall) -> dict[str, Any]:
        requested = call.params.get("protocolVersion")
        if requested and requested != self.settings.protocol_version:
            logger.warning(
                "Client protocol version differs",
                client_version=requested,
                server_version=self.settings.protocol_version
            )

        client = call.params.get("clientInfo") or {}
        logger.info("Client initializing", client=client.get("name"), client_version=client.get("version"))

        return {
            "protocolVersion": self.settings.protocol_version,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"listChanged": False},
                "prompts": {"listChanged": False},
                "logging": {},
            },
            "serverInfo": {
                "name": self.settings.server_name,
                "version": self.settings.server_version,
            },
        }

    async def _ping(self, call: RpcCall) -> dict[str, Any]:
        return {}

    async def _initialized(self, call: RpcCall) -> dict[str, Any]:
        self.handshake_complete = True
        logger.info("Client initialized", session_id=call.session_id)
        return {}

    async def _tools_list(self, call: RpcCall) -> dict[str, Any]:
        return self.registry.manifest()

    async def _tools_call(self, call: RpcCall) -> dict[str, Any]:
        name = call.params.get("name")
        if name is None or name == "":
            raise MissingRequiredParameter("name")
        if not isinstance(name, str):
            raise InvalidParams("Tool name must be a string", data={"parameter": "name"})
        arguments = call.params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParams("Tool arguments must be an object", data={"parameter": "arguments"})
        return await self.call_tool(name, arguments, call)

    async def _get_posts(self, call: RpcCall) -> dict[str, Any]:
        return await self.call_tool(LEGACY_TOOLS[RpcMethod.GET_POSTS], call.params, call)

    async def _create_post(self, call: RpcCall) -> dict[str, Any]:
        return await self.call_tool(LEGACY_TOOLS[RpcMethod.CREATE_POST], call.params, call)

    async def _prompts_list(self, call: RpcCall) -> dict[str, Any]:
        return {"prompts": []}

    def _list_categories(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            return self.store.list_items(CATEGORIES, filters).items
        except ContentError as e:
            raise BackingApiError(e.message, e.status, e.code) from e

    def _category_posts(self, category_id: int) -> list[dict[str, Any]]:
        try:
            return self.store.list_items(POSTS, {
                "categories": [category_id],
                "status": "publish",
                "per_page": self.settings.resource_page_size,
            }).items
        except ContentError as e:
            raise BackingApiError(e.message, e.status, e.code) from e

    async def _resources_list(self, call: RpcCall) -> dict[str, Any]:
        categories = await self._run(self._list_categories, {"per_page": 100, "hide_empty": False})
        scheme = self.settings.resource_scheme
        return {
            "resources": [
                {
                    "uri": f"{scheme}://posts/{category['slug']}",
                    "name": category["name"],
                    "description": category.get("description") or f"Posts in the {category['name']} category",
                    "mimeType": "text/plain",
                }
                for category in categories
            ]
        }

    async def _resources_read(self, call: RpcCall) -> dict[str, Any]:
        uri = call.params.get("uri")
        match = self._resource_uri.match(uri) if isinstance(uri, str) else None
        if match is None:
            raise InvalidParams(f"Invalid resource URI: {uri}", data={"parameter": "uri"})

        slug = match.group(1)
        categories = await self._run(self._list_categories, {"slug": slug, "hide_empty": False})
        if not categories:
            raise ResourceNotFound(f"Resource not found: {uri}", data={"uri": uri})

        posts = await self._run(self._category_posts, categories[0]["id"])
        return {
            "contents": [
                {
                    "uri": uri,
                    "mimeType": "text/plain",
                    "text": raw_content(post),
                }
                for post in posts
            ]
        }
