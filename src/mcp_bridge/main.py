"""MCP Bridge - FastAPI Application.

Serves the JSON-RPC endpoint that exposes the content tools. The HTTP layer
only runs the security gate, hands the body to the protocol handler and
copies transport metadata into response headers.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.config import get_settings
from shared.logging import bind_context, clear_context, get_logger, setup_logging
from mcp_bridge.context import BridgeContext, build_context
from mcp_bridge.errors import GateRejection, RateLimited
from mcp_bridge.protocol import RpcResponse

logger = get_logger(__name__)

TRANSPORT = "http"

CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "Authorization", "X-API-Key", "Mcp-Session-Id", "MCP-Protocol-Version"]
CORS_EXPOSE_HEADERS = [
    "Mcp-Session-Id",
    "MCP-Transport",
    "MCP-Protocol-Version",
    "MCP-Session-Status",
    "MCP-Server-Name",
    "MCP-Server-Version",
]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    tool_count: int


class ManifestResponse(BaseModel):
    """Tool manifest with the server version."""
    version: str
    tools: list[dict[str, Any]]


def get_bridge(request: Request) -> BridgeContext:
    return request.app.state.bridge


def client_ip(request: Request, bridge: BridgeContext) -> Optional[str]:
    """Client address, from X-Forwarded-For only when configured to trust it."""
    if bridge.settings.security.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def mcp_headers(response: RpcResponse, bridge: BridgeContext) -> dict[str, str]:
    server = bridge.settings.server
    return {
        "Mcp-Session-Id": response.session_id,
        "MCP-Transport": TRANSPORT,
        "MCP-Protocol-Version": server.protocol_version,
        "MCP-Session-Status": response.session_status,
        "MCP-Server-Name": server.server_name,
        "MCP-Server-Version": server.server_version,
    }


async def check_gate(request: Request, bridge: BridgeContext = Depends(get_bridge)) -> None:
    """
    Dependency running the security gate before the body is read.

    Rejections are plain HTTP errors, never JSON-RPC envelopes.
    """
    try:
        bridge.gate.check(request.headers.get("origin"), client_ip(request, bridge))
    except GateRejection as e:
        headers = {"Retry-After": str(e.retry_after)} if isinstance(e, RateLimited) else None
        raise HTTPException(status_code=e.http_status, detail=e.message, headers=headers)


def create_app(context: Optional[BridgeContext] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        context: Prebuilt bridge; built from the settings file when omitted
    """
    settings = context.settings if context is not None else get_settings()
    setup_logging(settings.log_level, json_output=settings.environment == "production")
    bridge = context or build_context(settings)
    namespace = "/" + settings.server.namespace.strip("/")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(
            "MCP Bridge started",
            namespace=namespace,
            tool_count=bridge.registry.get_tool_count()
        )

        yield

        logger.info("Shutting down MCP Bridge")
        await bridge.close()

    app = FastAPI(
        title="MCP Bridge",
        description="JSON-RPC gateway exposing content tools over MCP",
        version=settings.server.server_version,
        lifespan=lifespan
    )
    app.state.bridge = bridge

    # Preflight is answered here, before the security gate runs
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=bridge.gate.origin_regex,
        allow_credentials=True,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=CORS_EXPOSE_HEADERS,
    )

    async def rpc(request: Request, bridge: BridgeContext = Depends(get_bridge)) -> JSONResponse:
        """
        Handle one JSON-RPC request.

        Protocol errors answer 200; parse failures answer 400 and failed
        authentication 401, each with a JSON-RPC error envelope.
        """
        raw = await request.body()
        bind_context(client_ip=client_ip(request, bridge))
        try:
            result = await bridge.handler.handle(raw, request.headers)
        finally:
            clear_context()

        headers = mcp_headers(result, bridge)
        if result.http_status == status.HTTP_401_UNAUTHORIZED:
            headers["WWW-Authenticate"] = f'Basic realm="{bridge.settings.server.server_name}"'

        return JSONResponse(content=result.body, status_code=result.http_status, headers=headers)

    for path in (f"{namespace}/mcp", f"{namespace}/rpc"):
        app.add_api_route(path, rpc, methods=["POST"], dependencies=[Depends(check_gate)], tags=["MCP"])

    @app.get(
        f"{namespace}/tools",
        response_model=ManifestResponse,
        dependencies=[Depends(check_gate)],
        tags=["Tools"]
    )
    async def list_tools(bridge: BridgeContext = Depends(get_bridge)):
        """Manifest of enabled tools, same shape as tools/list."""
        return ManifestResponse(
            version=bridge.settings.server.server_version,
            tools=bridge.registry.manifest()["tools"],
        )

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(bridge: BridgeContext = Depends(get_bridge)):
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=bridge.settings.server.server_version,
            tool_count=bridge.registry.get_tool_count(),
        )

    return app


def main():
    """Run the MCP Bridge."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "mcp_bridge.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
