"""Pages tools - page CRUD and page meta.

Page CRUD is aliased to /wp/v2/pages. Page meta is keyed by meta key
rather than meta id, so those tools run as local callbacks against the
content store.
"""

from typing import Any, Optional

from shared.logging import get_logger
from shared.models import BackingApiAlias, ToolDescriptor, ToolKind
from cms import params
from cms.base import PAGES, ContentError, ContentStore, ToolSet

logger = get_logger(__name__)

PAGE_STATUSES = ["publish", "draft", "private", "pending"]
NEW_PAGE_STATUSES = ["publish", "draft", "private"]
SEARCH_STATUSES = ["publish", "draft", "private", "pending", "future"]


class PagesTools(ToolSet):
    """
    Page tools.

    Provides:
    - Page search, read, create, update and delete
    - Page meta read and write by key
    """

    name = "pages"

    def __init__(self, store: ContentStore) -> None:
        super().__init__(store)
        self._tools: dict[str, ToolDescriptor] = {}
        self._define_tools()
        self._define_meta_tools()

    def _define_tools(self) -> None:
        """Define the page tools."""

        self._tools["wp_pages_search"] = ToolDescriptor(
            name="wp_pages_search",
            description="Search and filter WordPress pages with pagination",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/pages", method="GET"),
            parameters={
                **params.listing("pages"),
                "status": params.string("Limit result set to pages assigned one or more statuses",
                                        default="publish", enum=SEARCH_STATUSES),
                "parent": params.integer("Limit result set to items with a particular parent ID"),
                "orderby": params.orderby(["date", "title", "modified", "menu_order"], "date"),
                "order": params.order("desc"),
            },
        )

        self._tools["wp_get_page"] = ToolDescriptor(
            name="wp_get_page",
            description="Get a WordPress page by ID",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/pages/{id}", method="GET"),
            parameters={
                "id": params.item_id("page"),
                "context": params.context("view", "edit"),
            },
        )

        self._tools["wp_add_page"] = ToolDescriptor(
            name="wp_add_page",
            description="Create a new WordPress page",
            kind=ToolKind.CREATE,
            alias=BackingApiAlias(route="/wp/v2/pages", method="POST"),
            parameters={
                "title": params.string("The title for the page", required=True),
                "content": params.string("The content for the page", required=True),
                "excerpt": params.string("The excerpt for the page"),
                "status": params.string("A named status for the page", default="draft", enum=NEW_PAGE_STATUSES),
                "parent": params.integer("The ID for the parent of the page"),
                "menu_order": params.integer("The order of the page in relation to other pages", default=0),
                "template": params.string("The theme file to use to display the page"),
            },
        )

        self._tools["wp_update_page"] = ToolDescriptor(
            name="wp_update_page",
            description="Update a WordPress page by ID",
            kind=ToolKind.UPDATE,
            alias=BackingApiAlias(route="/wp/v2/pages/{id}", method="POST"),
            parameters={
                "id": params.item_id("page"),
                "title": params.string("The title for the page"),
                "content": params.string("The content for the page"),
                "excerpt": params.string("The excerpt for the page"),
                "status": params.string("A named status for the page", enum=PAGE_STATUSES),
                "parent": params.integer("The ID for the parent of the page"),
                "menu_order": params.integer("The order of the page in relation to other pages"),
                "template": params.string("The theme file to use to display the page"),
            },
        )

        self._tools["wp_delete_page"] = ToolDescriptor(
            name="wp_delete_page",
            description="Delete a WordPress page by ID",
            kind=ToolKind.DELETE,
            alias=BackingApiAlias(route="/wp/v2/pages/{id}", method="DELETE"),
            parameters={
                "id": params.item_id("page"),
                "force": params.force(),
            },
        )

    def _define_meta_tools(self) -> None:
        """Define the page meta tools."""

        self._tools["wp_get_page_meta"] = ToolDescriptor(
            name="wp_get_page_meta",
            description="Get meta of a page, either one key or all keys",
            kind=ToolKind.READ,
            callback=self.get_page_meta,
            parameters={
                "page_id": params.item_id("page"),
                "key": params.string("Meta key to read; all meta when omitted"),
                "single": params.boolean("Return only the first value of the key", default=False),
            },
        )

        self._tools["wp_add_page_meta"] = ToolDescriptor(
            name="wp_add_page_meta",
            description="Add a meta value to a page",
            kind=ToolKind.CREATE,
            callback=self.add_page_meta,
            parameters={
                "page_id": params.item_id("page"),
                "key": params.string("Meta key", required=True),
                "value": params.meta_value("Meta value", required=True),
                "unique": params.boolean("Refuse to add the key if it already exists", default=False),
            },
        )

        self._tools["wp_update_page_meta"] = ToolDescriptor(
            name="wp_update_page_meta",
            description="Update a meta value of a page, adding the key if it is missing",
            kind=ToolKind.UPDATE,
            callback=self.update_page_meta,
            parameters={
                "page_id": params.item_id("page"),
                "key": params.string("Meta key", required=True),
                "value": params.meta_value("New meta value", required=True),
                "prev_value": params.meta_value("Only update entries holding this value"),
            },
        )

        self._tools["wp_delete_page_meta"] = ToolDescriptor(
            name="wp_delete_page_meta",
            description="Delete a meta key from a page",
            kind=ToolKind.DELETE,
            callback=self.delete_page_meta,
            parameters={
                "page_id": params.item_id("page"),
                "key": params.string("Meta key", required=True),
                "value": params.meta_value("Only delete entries holding this value"),
            },
        )

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools.values())

    def _require_page(self, arguments: dict[str, Any]) -> int:
        page_id = arguments.get("page_id")
        if not page_id:
            raise ValueError("Page ID is required")
        try:
            page = self.store.get_item(PAGES, int(page_id))
        except ContentError as e:
            if e.status == 404:
                raise ValueError("Page not found") from e
            raise
        return page["id"]

    @staticmethod
    def _require_key(arguments: dict[str, Any]) -> str:
        key = arguments.get("key")
        if not key:
            raise ValueError("Page ID and key are required")
        return str(key)

    def get_page_meta(self, arguments: dict[str, Any]) -> dict[str, Any]:
        page_id = self._require_page(arguments)
        key = arguments.get("key")
        entries = self.store.list_meta(PAGES, page_id, key=key or None)

        if key:
            values = [entry["value"] for entry in entries]
            if arguments.get("single"):
                meta: Any = values[0] if values else ""
            else:
                meta = values
        else:
            meta = {}
            for entry in entries:
                meta.setdefault(entry["key"], []).append(entry["value"])

        return {"page_id": page_id, "meta": meta}

    def add_page_meta(self, arguments: dict[str, Any]) -> dict[str, Any]:
        page_id = self._require_page(arguments)
        key = self._require_key(arguments)
        value = arguments.get("value")

        if arguments.get("unique") and self.store.list_meta(PAGES, page_id, key=key):
            raise ValueError("Failed to add page meta")

        entry = self.store.add_meta(PAGES, page_id, key, value)
        logger.info("Page meta added", page_id=page_id, key=key)
        return {"page_id": page_id, "key": key, "value": value, "meta_id": entry["id"]}

    def update_page_meta(self, arguments: dict[str, Any]) -> dict[str, Any]:
        page_id = self._require_page(arguments)
        key = self._require_key(arguments)
        value = arguments.get("value")
        prev_value: Optional[Any] = arguments.get("prev_value")

        entries = self.store.list_meta(PAGES, page_id, key=key)
        if prev_value is not None:
            entries = [entry for entry in entries if entry["value"] == prev_value]
            if not entries:
                raise ValueError("Failed to update page meta")

        if entries:
            for entry in entries:
                self.store.update_meta(PAGES, page_id, entry["id"], value=value)
        else:
            self.store.add_meta(PAGES, page_id, key, value)

        logger.info("Page meta updated", page_id=page_id, key=key, entries=len(entries) or 1)
        return {"page_id": page_id, "key": key, "value": value, "updated": True}

    def delete_page_meta(self, arguments: dict[str, Any]) -> dict[str, Any]:
        page_id = self._require_page(arguments)
        key = self._require_key(arguments)
        value = arguments.get("value")

        entries = self.store.list_meta(PAGES, page_id, key=key)
        if value is not None:
            entries = [entry for entry in entries if entry["value"] == value]
        if not entries:
            raise ValueError("Failed to delete page meta")

        for entry in entries:
            self.store.delete_meta(PAGES, page_id, entry["id"])

        logger.info("Page meta deleted", page_id=page_id, key=key, entries=len(entries))
        return {"page_id": page_id, "key": key, "deleted": True}


def register_pages_tools(registry, store: ContentStore) -> int:
    """Register the page tools with the registry."""
    return PagesTools(store).register(registry)
