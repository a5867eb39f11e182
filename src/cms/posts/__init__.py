"""Posts tools - post CRUD and post meta.

Every tool here is a REST alias on /wp/v2/posts; the backing API does the
work and the registry only validates arguments.
"""

from shared.models import BackingApiAlias, ToolDescriptor, ToolKind
from cms import params
from cms.base import ContentStore, ToolSet

POST_STATUSES = ["publish", "draft", "private", "pending"]
SEARCH_STATUSES = ["publish", "draft", "private", "pending", "future"]


class PostsTools(ToolSet):
    """
    Post tools.

    Provides:
    - Post search, read, update and delete
    - Post meta listing and editing
    """

    name = "posts"

    def __init__(self, store: ContentStore) -> None:
        super().__init__(store)
        self._tools: dict[str, ToolDescriptor] = {}
        self._define_tools()
        self._define_meta_tools()

    def _define_tools(self) -> None:
        """Define the post tools."""

        self._tools["wp_posts_search"] = ToolDescriptor(
            name="wp_posts_search",
            description="Search and filter WordPress posts with pagination",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/posts", method="GET"),
            parameters={
                **params.listing("posts"),
                "status": params.string("Limit result set to posts assigned one or more statuses",
                                        default="publish", enum=SEARCH_STATUSES),
                "orderby": params.orderby(["date", "title", "modified", "menu_order"], "date"),
                "order": params.order("desc"),
            },
        )

        self._tools["wp_get_post"] = ToolDescriptor(
            name="wp_get_post",
            description="Get a WordPress post by ID",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/posts/{id}", method="GET"),
            parameters={
                "id": params.item_id("post"),
                "context": params.context("view", "edit"),
            },
        )

        self._tools["wp_update_post"] = ToolDescriptor(
            name="wp_update_post",
            description="Update a WordPress post by ID",
            kind=ToolKind.UPDATE,
            alias=BackingApiAlias(route="/wp/v2/posts/{id}", method="POST"),
            parameters={
                "id": params.item_id("post"),
                "title": params.string("The title for the post"),
                "content": params.string("The content for the post"),
                "excerpt": params.string("The excerpt for the post"),
                "status": params.string("A named status for the post", enum=POST_STATUSES),
                "categories": params.id_list("The terms assigned to the post in the category taxonomy"),
                "tags": params.id_list("The terms assigned to the post in the post_tag taxonomy"),
            },
        )

        self._tools["wp_delete_post"] = ToolDescriptor(
            name="wp_delete_post",
            description="Delete a WordPress post by ID",
            kind=ToolKind.DELETE,
            alias=BackingApiAlias(route="/wp/v2/posts/{id}", method="DELETE"),
            parameters={
                "id": params.item_id("post"),
                "force": params.force(),
            },
        )

    def _define_meta_tools(self) -> None:
        """Define the post meta tools."""

        self._tools["wp_get_post_meta"] = ToolDescriptor(
            name="wp_get_post_meta",
            description="Get all meta for a post",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/posts/{parent}/meta", method="GET"),
            parameters={
                "parent": params.item_id("parent post"),
                "key": params.string("Limit result set to meta with a specific key"),
                "context": params.context("view", "edit"),
            },
        )

        self._tools["wp_get_post_meta_value"] = ToolDescriptor(
            name="wp_get_post_meta_value",
            description="Get a single meta entry of a post",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/posts/{parent}/meta/{id}", method="GET"),
            parameters={
                "parent": params.item_id("parent post"),
                "id": params.item_id("meta entry"),
                "context": params.context("view", "edit"),
            },
        )

        self._tools["wp_add_post_meta"] = ToolDescriptor(
            name="wp_add_post_meta",
            description="Add a meta entry to a post",
            kind=ToolKind.CREATE,
            alias=BackingApiAlias(route="/wp/v2/posts/{parent}/meta", method="POST"),
            parameters={
                "parent": params.item_id("parent post"),
                "key": params.string("The key for the meta entry", required=True),
                "value": params.meta_value("The value of the meta entry", required=True),
            },
        )

        self._tools["wp_update_post_meta"] = ToolDescriptor(
            name="wp_update_post_meta",
            description="Update a meta entry of a post",
            kind=ToolKind.UPDATE,
            alias=BackingApiAlias(route="/wp/v2/posts/{parent}/meta/{id}", method="PUT"),
            parameters={
                "parent": params.item_id("parent post"),
                "id": params.item_id("meta entry"),
                "key": params.string("The key for the meta entry"),
                "value": params.meta_value("The value of the meta entry"),
            },
        )

        self._tools["wp_delete_post_meta"] = ToolDescriptor(
            name="wp_delete_post_meta",
            description="Delete a meta entry from a post",
            kind=ToolKind.DELETE,
            alias=BackingApiAlias(route="/wp/v2/posts/{parent}/meta/{id}", method="DELETE"),
            parameters={
                "parent": params.item_id("parent post"),
                "id": params.item_id("meta entry"),
                "force": params.force("Required to be true, as meta does not support trashing"),
            },
        )

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools.values())


def register_posts_tools(registry, store: ContentStore) -> int:
    """Register the post tools with the registry."""
    return PostsTools(store).register(registry)
