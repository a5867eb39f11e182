"""Site tools - site information and the legacy post tools.

These three tools predate the resource-specific tool sets and are kept
under their first names:
- wp_get_site_info: site identity and settings
- wp_get_posts: post listing through the REST API
- wp_create_post: post creation with the caller as author
"""

import json
from typing import Any

from shared import __version__
from shared.logging import get_logger
from shared.models import BackingApiAlias, ToolContent, ToolDescriptor, ToolKind
from cms import params
from cms.base import POSTS, ContentStore, ToolSet, current_principal, raw_content

logger = get_logger(__name__)

CREATE_STATUSES = ["publish", "draft", "private", "pending"]
LIST_STATUSES = ["publish", "draft", "private", "pending", "future"]


class SiteTools(ToolSet):
    """Site information and the legacy post tools."""

    name = "site"

    def __init__(self, store: ContentStore, plugin_version: str = __version__) -> None:
        super().__init__(store)
        self.plugin_version = plugin_version
        self._tools: dict[str, ToolDescriptor] = {}
        self._define_tools()

    def _define_tools(self) -> None:
        """Define all site tools."""

        self._tools["wp_get_site_info"] = ToolDescriptor(
            name="wp_get_site_info",
            description="Get basic WordPress site information",
            kind=ToolKind.READ,
            callback=self.get_site_info,
        )

        self._tools["wp_get_posts"] = ToolDescriptor(
            name="wp_get_posts",
            description="Get WordPress posts with optional filtering",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/posts", method="GET"),
            parameters={
                "per_page": params.integer("Number of posts to retrieve", default=10, minimum=1, maximum=100),
                "page": params.integer("Page number", default=1, minimum=1),
                "search": params.string("Search term"),
                "status": params.string("Post status", default="publish", enum=LIST_STATUSES),
            },
        )

        self._tools["wp_create_post"] = ToolDescriptor(
            name="wp_create_post",
            description="Create a new WordPress post",
            kind=ToolKind.CREATE,
            callback=self.create_post,
            parameters={
                "title": params.string("Post title", required=True),
                "content": params.string("Post content", required=True),
                "status": params.string("Post status", default="draft", enum=CREATE_STATUSES),
                "excerpt": params.string("Post excerpt"),
            },
        )

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools.values())

    def get_site_info(self, arguments: dict[str, Any]) -> ToolContent:
        info = self.store.site_info()
        site = {
            "name": info.get("name"),
            "description": info.get("description"),
            "url": info.get("url"),
            "admin_email": info.get("admin_email"),
            "version": info.get("version"),
            "language": info.get("language"),
            "timezone": info.get("timezone"),
            "date_format": info.get("date_format"),
            "time_format": info.get("time_format"),
            "start_of_week": info.get("start_of_week"),
            "plugin_version": self.plugin_version,
        }
        return ToolContent.from_text(json.dumps(site, indent=4, ensure_ascii=False))

    def create_post(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Create a post authored by the calling user.

        An unknown status falls back to draft instead of failing.
        """
        principal = current_principal.get()
        logger.info("Creating post", user=principal.login if principal else None)

        title = str(arguments.get("title") or "").strip()
        if not title:
            raise ValueError("Post title is required")
        content = arguments.get("content")
        if not content:
            raise ValueError("Post content is required")

        status = arguments.get("status") or "draft"
        if status not in CREATE_STATUSES:
            status = "draft"

        data: dict[str, Any] = {"title": title, "content": str(content), "status": status}
        if arguments.get("excerpt"):
            data["excerpt"] = str(arguments["excerpt"])

        post = self.store.create_item(POSTS, data, author=principal.id if principal else None)
        logger.info("Post created", id=post["id"], status=post["status"])

        base_url = str(self.store.site_info().get("url") or "").rstrip("/")
        return {
            "id": post["id"],
            "title": raw_content(post, "title"),
            "content": raw_content(post),
            "excerpt": raw_content(post, "excerpt"),
            "status": post["status"],
            "date": post.get("date"),
            "modified": post.get("modified"),
            "author": post.get("author"),
            "slug": post.get("slug"),
            "permalink": post.get("link"),
            "edit_link": f"{base_url}/wp-admin/post.php?post={post['id']}&action=edit",
        }


def register_site_tools(registry, store: ContentStore) -> int:
    """Register the site tools with the registry."""
    return SiteTools(store).register(registry)
