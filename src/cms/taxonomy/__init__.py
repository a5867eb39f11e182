"""Taxonomy tools - categories, tags and taxonomy lookups.

Category and tag CRUD plus the taxonomy listings are REST aliases. Term
listing by taxonomy slug and the per-post taxonomy summary run as local
callbacks.
"""

import math
from typing import Any

from shared.logging import get_logger
from shared.models import BackingApiAlias, ToolDescriptor, ToolKind
from cms import params
from cms.base import POSTS, ContentError, ContentStore, ToolSet, raw_content

logger = get_logger(__name__)

TERM_ORDERBY = ["id", "include", "name", "slug", "include_slugs", "term_group", "description", "count"]


def _term_tools(collection: str, singular: str, plural: str, hierarchical: bool) -> dict[str, ToolDescriptor]:
    """CRUD aliases for one term collection."""
    route = f"/wp/v2/{collection}"

    listing: dict[str, Any] = {
        **params.listing(plural),
        "exclude": params.id_list("Ensure result set excludes specific IDs"),
        "include": params.id_list("Limit result set to specific IDs"),
        "orderby": params.orderby(TERM_ORDERBY, "name"),
        "order": params.order("asc"),
        "hide_empty": params.boolean("Whether to hide terms not assigned to any posts", default=False),
        "post": params.integer("Limit result set to terms assigned to a specific post"),
        "slug": params.string_list("Limit result set to terms with one or more specific slugs"),
    }
    if hierarchical:
        listing["parent"] = params.integer("Limit result set to terms assigned to a specific parent")
    else:
        listing["offset"] = params.integer("Offset the result set by a specific number of items")

    fields: dict[str, Any] = {
        "description": params.string(f"HTML description of the {singular}"),
        "slug": params.string(f"An alphanumeric identifier for the {singular} unique to its type"),
    }
    if hierarchical:
        fields["parent"] = params.integer(f"The parent {singular} ID", default=0)
    fields["meta"] = params.object_param("Meta fields")

    update_fields = dict(fields)
    if hierarchical:
        update_fields["parent"] = params.integer(f"The parent {singular} ID")

    return {
        f"wp_list_{plural}": ToolDescriptor(
            name=f"wp_list_{plural}",
            description=f"List all WordPress {plural}",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route=route, method="GET"),
            parameters=listing,
        ),
        f"wp_get_{singular}": ToolDescriptor(
            name=f"wp_get_{singular}",
            description=f"Get a WordPress {singular} by ID",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route=f"{route}/{{id}}", method="GET"),
            parameters={
                "id": params.item_id(singular),
                "context": params.context("view", "embed", "edit"),
            },
        ),
        f"wp_add_{singular}": ToolDescriptor(
            name=f"wp_add_{singular}",
            description=f"Create a new WordPress {singular}",
            kind=ToolKind.CREATE,
            alias=BackingApiAlias(route=route, method="POST"),
            parameters={
                "name": params.string(f"HTML title for the {singular}", required=True),
                **fields,
            },
        ),
        f"wp_update_{singular}": ToolDescriptor(
            name=f"wp_update_{singular}",
            description=f"Update a WordPress {singular}",
            kind=ToolKind.UPDATE,
            alias=BackingApiAlias(route=f"{route}/{{id}}", method="POST"),
            parameters={
                "id": params.item_id(singular),
                "name": params.string(f"HTML title for the {singular}"),
                **update_fields,
            },
        ),
        f"wp_delete_{singular}": ToolDescriptor(
            name=f"wp_delete_{singular}",
            description=f"Delete a WordPress {singular}",
            kind=ToolKind.DELETE,
            alias=BackingApiAlias(route=f"{route}/{{id}}", method="DELETE"),
            parameters={
                "id": params.item_id(singular),
                "force": params.force(f"Required to be true, as {plural} do not support trashing"),
            },
        ),
    }


class CategoriesTools(ToolSet):
    """Category CRUD."""

    name = "categories"

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(_term_tools("categories", "category", "categories", hierarchical=True).values())


class TagsTools(ToolSet):
    """Tag CRUD."""

    name = "tags"

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(_term_tools("tags", "tag", "tags", hierarchical=False).values())


class TaxonomyTools(ToolSet):
    """
    Taxonomy tools.

    Provides:
    - Taxonomy listing and lookup
    - Terms of any taxonomy, paginated
    - The terms attached to a post, grouped by taxonomy
    """

    name = "taxonomies"

    def __init__(self, store: ContentStore) -> None:
        super().__init__(store)
        self._tools: dict[str, ToolDescriptor] = {}
        self._define_tools()

    def _define_tools(self) -> None:
        """Define the taxonomy tools."""

        self._tools["wp_list_taxonomies"] = ToolDescriptor(
            name="wp_list_taxonomies",
            description="List all WordPress taxonomies",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/taxonomies", method="GET"),
            parameters={
                "context": params.context("view", "embed", "edit"),
                "type": params.string("Limit results to taxonomies associated with a specific post type"),
            },
        )

        self._tools["wp_get_taxonomy"] = ToolDescriptor(
            name="wp_get_taxonomy",
            description="Get a WordPress taxonomy by slug",
            kind=ToolKind.READ,
            alias=BackingApiAlias(route="/wp/v2/taxonomies/{taxonomy}", method="GET"),
            parameters={
                "taxonomy": params.string("An alphanumeric identifier for the taxonomy", required=True),
                "context": params.context("view", "embed", "edit"),
            },
        )

        self._tools["wp_get_taxonomy_terms"] = ToolDescriptor(
            name="wp_get_taxonomy_terms",
            description="Get the terms of a taxonomy with pagination",
            kind=ToolKind.READ,
            callback=self.get_taxonomy_terms,
            parameters={
                "taxonomy": params.string("Taxonomy slug", required=True),
                **params.listing("terms"),
                "hide_empty": params.boolean("Whether to hide terms not assigned to any posts", default=False),
                "parent": params.integer("Limit result set to terms assigned to a specific parent"),
                "orderby": params.orderby(["id", "name", "slug", "count", "term_group"], "name"),
                "order": params.order("asc"),
            },
        )

        self._tools["wp_get_post_taxonomies"] = ToolDescriptor(
            name="wp_get_post_taxonomies",
            description="Get all taxonomies and terms assigned to a post",
            kind=ToolKind.READ,
            callback=self.get_post_taxonomies,
            parameters={
                "post_id": params.item_id("post"),
            },
        )

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools.values())

    def _taxonomy(self, slug: str) -> dict[str, Any]:
        try:
            return self.store.get_taxonomy(slug)
        except ContentError as e:
            if e.status == 404:
                raise ValueError(f"Taxonomy '{slug}' does not exist") from e
            raise

    def get_taxonomy_terms(self, arguments: dict[str, Any]) -> dict[str, Any]:
        slug = arguments.get("taxonomy")
        if not slug:
            raise ValueError("Taxonomy is required")
        taxonomy = self._taxonomy(str(slug))

        per_page = int(arguments.get("per_page") or 10)
        page = int(arguments.get("page") or 1)
        filters = params.clean({
            "per_page": per_page,
            "page": page,
            "search": arguments.get("search"),
            "hide_empty": bool(arguments.get("hide_empty", False)),
            "parent": arguments.get("parent") if taxonomy.get("hierarchical") else None,
            "orderby": arguments.get("orderby") or "name",
            "order": arguments.get("order") or "asc",
        })

        logger.debug("Listing taxonomy terms", taxonomy=slug, page=page, per_page=per_page)
        result = self.store.list_items(taxonomy.get("rest_base") or slug, filters)
        terms = [
            {
                "id": term["id"],
                "name": term.get("name"),
                "slug": term.get("slug"),
                "description": term.get("description", ""),
                "parent": term.get("parent", 0),
                "count": term.get("count", 0),
                "taxonomy": term.get("taxonomy", slug),
                "link": term.get("link"),
            }
            for term in result.items
        ]
        return {
            "terms": terms,
            "total": result.total,
            "page": page,
            "per_page": per_page,
            "pages": math.ceil(result.total / per_page),
        }

    def get_post_taxonomies(self, arguments: dict[str, Any]) -> dict[str, Any]:
        post_id = arguments.get("post_id")
        if not post_id:
            raise ValueError("Post ID is required")
        try:
            post = self.store.get_item(POSTS, int(post_id))
        except ContentError as e:
            if e.status == 404:
                raise ValueError("Post not found") from e
            raise

        post_type = post.get("type", "post")
        grouped: dict[str, Any] = {}
        for slug, taxonomy in self.store.list_taxonomies(post_type).items():
            rest_base = taxonomy.get("rest_base") or slug
            term_ids = post.get(rest_base) or []
            if not term_ids:
                continue

            terms = self.store.list_items(rest_base, {
                "include": term_ids,
                "per_page": 100,
                "hide_empty": False,
            }).items
            if not terms:
                continue

            grouped[slug] = {
                "taxonomy": {
                    "name": taxonomy.get("name"),
                    "slug": taxonomy.get("slug", slug),
                    "hierarchical": taxonomy.get("hierarchical", False),
                    "public": taxonomy.get("public", True),
                },
                "terms": [
                    {
                        "id": term["id"],
                        "name": term.get("name"),
                        "slug": term.get("slug"),
                        "description": term.get("description", ""),
                        "parent": term.get("parent", 0),
                        "count": term.get("count", 0),
                        "link": term.get("link"),
                    }
                    for term in terms
                ],
            }

        return {
            "post_id": post["id"],
            "post_title": raw_content(post, "title"),
            "post_type": post_type,
            "taxonomies": grouped,
        }


def register_taxonomy_tools(registry, store: ContentStore) -> int:
    """Register the category, tag and taxonomy tools with the registry."""
    count = CategoriesTools(store).register(registry)
    count += TagsTools(store).register(registry)
    count += TaxonomyTools(store).register(registry)
    return count
