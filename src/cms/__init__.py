"""Content tools and stores.

Each tool set contains:
- Tool descriptors
- Callbacks for the tools that are not plain REST aliases

Tool sets only reach content through the ContentStore they are given.
"""

from typing import TYPE_CHECKING, Optional

from shared.config import CMSSettings, ToolSettings
from shared.logging import get_logger
from cms.base import ContentStore

if TYPE_CHECKING:
    from mcp_bridge.registry import ToolRegistry

logger = get_logger(__name__)


def build_store(settings: CMSSettings) -> ContentStore:
    """Create the content store selected by ``cms.backend``."""
    if settings.backend == "rest":
        from cms.rest import RESTContentStore
        return RESTContentStore.from_settings(settings)

    from cms.memory import MemoryContentStore
    if settings.seed_path:
        return MemoryContentStore.from_yaml(settings.seed_path)
    return MemoryContentStore()


def register_default_tools(
    registry: "ToolRegistry",
    store: ContentStore,
    tool_settings: Optional[ToolSettings] = None
) -> int:
    """
    Register every content tool set.

    Disabled tools and capability overrides from settings are applied
    after registration.

    Returns:
        Number of tools registered
    """
    from cms.site import register_site_tools
    from cms.posts import register_posts_tools
    from cms.pages import register_pages_tools
    from cms.taxonomy import register_taxonomy_tools

    count = register_site_tools(registry, store)
    count += register_posts_tools(registry, store)
    count += register_pages_tools(registry, store)
    count += register_taxonomy_tools(registry, store)

    if tool_settings is not None:
        for name in tool_settings.disabled:
            if registry.exists(name):
                registry.set_enabled(name, False)
            else:
                logger.warning("Cannot disable unknown tool", tool=name)
        for name, capability in tool_settings.capabilities.items():
            if registry.exists(name):
                registry.set_capability(name, capability)
            else:
                logger.warning("Cannot set capability of unknown tool", tool=name)

    logger.info("Default tools registered", count=count)
    return count


__all__ = ["build_store", "register_default_tools"]
