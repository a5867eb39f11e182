"""Bridge context.

Everything a request needs is built once at startup and handed to the HTTP
layer in a BridgeContext. Nothing is looked up from module globals.
"""

from dataclasses import dataclass
from typing import Optional

from shared.config import Settings, get_settings
from shared.logging import get_logger
from cms import build_store, register_default_tools
from cms.base import ContentStore
from cms.dispatcher import RestDispatcher
from cms.users import UserDirectory
from mcp_bridge.audit import AuditLogger
from mcp_bridge.auth import AuthenticationResolver
from mcp_bridge.protocol import ProtocolHandler
from mcp_bridge.proxy import BackingApiProxy
from mcp_bridge.registry import ToolRegistry
from mcp_bridge.security import SecurityGate

logger = get_logger(__name__)


@dataclass
class BridgeContext:
    """The wired-up components of one bridge instance."""
    settings: Settings
    store: ContentStore
    registry: ToolRegistry
    resolver: AuthenticationResolver
    gate: SecurityGate
    audit: AuditLogger
    handler: ProtocolHandler

    async def close(self) -> None:
        """Flush pending audit entries and release the store."""
        await self.audit.flush()
        self.store.close()


def build_context(
    settings: Optional[Settings] = None,
    store: Optional[ContentStore] = None,
    directory: Optional[UserDirectory] = None
) -> BridgeContext:
    """
    Build a bridge from settings.

    Args:
        settings: Application settings, loaded from the config file when omitted
        store: Content store, built from ``settings.cms`` when omitted
        directory: User table, built from ``settings.cms.users`` when omitted
    """
    settings = settings or get_settings()
    store = store or build_store(settings.cms)
    directory = directory if directory is not None else UserDirectory(settings.cms.users)

    proxy = BackingApiProxy(RestDispatcher(store))
    registry = ToolRegistry(proxy=proxy, default_capability=settings.security.required_capability)
    register_default_tools(registry, store, settings.tools)

    resolver = AuthenticationResolver(
        directory,
        store=store,
        required_capability=settings.security.required_capability,
        fallback_headers=settings.security.auth_fallback_headers,
    )
    gate = SecurityGate.from_settings(settings.security)
    audit = AuditLogger.from_settings(settings.audit)
    handler = ProtocolHandler(registry, resolver, store, audit=audit, settings=settings.server)

    logger.info(
        "Bridge context built",
        backend=settings.cms.backend,
        users=len(directory),
        tool_count=registry.get_tool_count()
    )

    return BridgeContext(
        settings=settings,
        store=store,
        registry=registry,
        resolver=resolver,
        gate=gate,
        audit=audit,
        handler=handler,
    )
