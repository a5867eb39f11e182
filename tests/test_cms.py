"""Tests for the content store, the REST dispatcher and the tool sets."""

import json

import pytest

from shared.models import Principal

EDITOR = Principal(
    id=5,
    login="editor",
    roles=["editor"],
    capabilities=frozenset({"read", "edit_posts", "manage_categories"}),
)


def make_registry(store=None, tool_settings=None):
    from cms import register_default_tools
    from cms.dispatcher import RestDispatcher
    from cms.memory import MemoryContentStore
    from mcp_bridge.proxy import BackingApiProxy
    from mcp_bridge.registry import ToolRegistry

    store = store or MemoryContentStore()
    registry = ToolRegistry(proxy=BackingApiProxy(RestDispatcher(store)))
    register_default_tools(registry, store, tool_settings)
    return registry, store


def call(registry, name, arguments=None):
    """Execute a tool as the editor and decode its JSON text."""
    content = registry.execute(name, arguments or {}, EDITOR)
    return json.loads(content.content[0].text)


class TestMemoryContentStore:
    """Tests for the in-memory store."""

    def setup_method(self):
        """Set up test fixtures."""
        from cms.memory import MemoryContentStore

        self.store = MemoryContentStore()

    def test_list_defaults(self):
        """Test that listing returns published posts, newest first."""
        page = self.store.list_items("posts", {})

        assert [p["id"] for p in page.items] == [2, 1]
        assert page.total == 2
        assert page.total_pages == 1
        assert page.items[0]["title"]["raw"] == "Version 1.0 released"

    def test_list_filters(self):
        """Test search and taxonomy filters."""
        assert [p["id"] for p in self.store.list_items("posts", {"search": "stable"}).items] == [2]
        assert [p["id"] for p in self.store.list_items("posts", {"categories": [1]}).items] == [1]
        assert [p["id"] for p in self.store.list_items("posts", {"tags": "3"}).items] == [2]

    def test_list_pagination(self):
        """Test page size and out-of-range pages."""
        from cms.base import ContentError

        page = self.store.list_items("posts", {"per_page": 1, "page": 2})
        assert [p["id"] for p in page.items] == [1]
        assert page.total_pages == 2

        with pytest.raises(ContentError) as exc_info:
            self.store.list_items("posts", {"per_page": 1, "page": 3})
        assert exc_info.value.code == "rest_post_invalid_page_number"

        with pytest.raises(ContentError) as exc_info:
            self.store.list_items("posts", {"per_page": 500})
        assert exc_info.value.code == "rest_invalid_param"

    def test_term_counts_and_hide_empty(self):
        """Test that term counts follow published posts."""
        categories = {c["slug"]: c for c in self.store.list_items("categories", {}).items}

        assert categories["uncategorized"]["count"] == 1
        assert categories["news"]["count"] == 1

        self.store.update_item("posts", 1, {"status": "draft"})
        visible = self.store.list_items("categories", {"hide_empty": True}).items

        assert [c["slug"] for c in visible] == ["news"]

    def test_create_post(self):
        """Test creation defaults."""
        post = self.store.create_item("posts", {"title": "My Post", "content": "Body"}, author=5)

        assert post["id"] == 4
        assert post["slug"] == "my-post"
        assert post["status"] == "draft"
        assert post["author"] == 5
        assert post["categories"] == [1]

    def test_rejected_update_leaves_record(self):
        """Test that a failed update changes nothing."""
        from cms.base import ContentError

        with pytest.raises(ContentError) as exc_info:
            self.store.update_item("posts", 1, {"title": "Changed", "categories": [99]})

        assert exc_info.value.code == "rest_invalid_term_id"
        assert self.store.get_item("posts", 1)["title"]["raw"] == "Hello world!"

    def test_trash_then_delete(self):
        """Test that posts go to trash before they can be deleted."""
        from cms.base import ContentError

        trashed = self.store.delete_item("posts", 1)
        assert trashed["status"] == "trash"

        with pytest.raises(ContentError) as exc_info:
            self.store.delete_item("posts", 1)
        assert exc_info.value.status == 410

        deleted = self.store.delete_item("posts", 1, force=True)
        assert deleted["deleted"] is True
        assert deleted["previous"]["id"] == 1

        with pytest.raises(ContentError) as exc_info:
            self.store.get_item("posts", 1)
        assert exc_info.value.code == "rest_post_invalid_id"

    def test_terms_cannot_be_trashed(self):
        """Test that term deletion requires force and detaches posts."""
        from cms.base import ContentError

        with pytest.raises(ContentError) as exc_info:
            self.store.delete_item("tags", 3)
        assert exc_info.value.code == "rest_trash_not_supported"
        assert exc_info.value.status == 501

        self.store.delete_item("tags", 3, force=True)
        assert self.store.get_item("posts", 2)["tags"] == []

    def test_duplicate_term_name(self):
        """Test that sibling terms need distinct names."""
        from cms.base import ContentError

        with pytest.raises(ContentError) as exc_info:
            self.store.create_item("categories", {"name": "news"})

        assert exc_info.value.code == "term_exists"

    def test_meta_lifecycle(self):
        """Test adding, updating and deleting post meta."""
        from cms.base import ContentError

        entry = self.store.add_meta("posts", 1, "color", "blue")
        assert self.store.list_meta("posts", 1, key="color") == [entry]

        updated = self.store.update_meta("posts", 1, entry["id"], value="red")
        assert updated["value"] == "red"

        self.store.delete_meta("posts", 1, entry["id"])
        assert self.store.list_meta("posts", 1) == []

        with pytest.raises(ContentError) as exc_info:
            self.store.get_meta("posts", 1, entry["id"])
        assert exc_info.value.code == "rest_meta_invalid_id"

    def test_seed_from_yaml(self, tmp_path):
        """Test loading content from a seed file."""
        from cms.memory import MemoryContentStore

        seed = tmp_path / "seed.yaml"
        seed.write_text(
            "site:\n"
            "  name: Seeded\n"
            "posts:\n"
            "  - id: 10\n"
            "    title: Seeded post\n"
            "    status: publish\n"
            "meta:\n"
            "  - parent: 10\n"
            "    key: source\n"
            "    value: yaml\n"
        )

        store = MemoryContentStore.from_yaml(seed)

        assert store.site_info()["name"] == "Seeded"
        assert [p["id"] for p in store.list_items("posts", {}).items] == [10]
        assert store.list_meta("posts", 10)[0]["value"] == "yaml"

    def test_missing_seed_file(self, tmp_path):
        """Test that a missing seed file falls back to the default content."""
        from cms.memory import MemoryContentStore

        store = MemoryContentStore.from_yaml(tmp_path / "missing.yaml")

        assert store.list_items("posts", {}).total == 2


class TestRestDispatcher:
    """Tests for the in-process REST routes."""

    def setup_method(self):
        """Set up test fixtures."""
        from cms.dispatcher import RestDispatcher
        from cms.memory import MemoryContentStore

        self.store = MemoryContentStore()
        self.dispatcher = RestDispatcher(self.store)

    def request(self, method, route, query=None, body=None, principal=None):
        from cms.base import BackingApiRequest

        return self.dispatcher.dispatch(BackingApiRequest(
            method=method,
            route=route,
            query=query or {},
            body=body or {},
            principal=principal,
        ))

    def test_collection_routes(self):
        """Test listing and creating."""
        listing = self.request("GET", "/wp/v2/posts", query={"per_page": 1})
        assert listing.status == 200
        assert len(listing.data) == 1

        created = self.request("POST", "/wp/v2/posts", body={"title": "New", "id": 77}, principal=EDITOR)
        assert created.status == 201
        assert created.data["author"] == EDITOR.id
        assert created.data["id"] != 77

    def test_item_routes(self):
        """Test reading, updating and deleting an item."""
        assert self.request("HEAD", "/wp/v2/pages/3").data["id"] == 3

        updated = self.request("PUT", "/wp/v2/pages/3", body={"id": 3, "menu_order": 4})
        assert updated.data["menu_order"] == 4

        deleted = self.request("DELETE", "/wp/v2/categories/2", body={"force": True})
        assert deleted.data["deleted"] is True

    def test_errors_become_responses(self):
        """Test that store errors are returned, not raised."""
        response = self.request("GET", "/wp/v2/posts/99")

        assert response.is_error
        assert response.status == 404
        assert response.error_code == "rest_post_invalid_id"
        assert response.data["data"] == {"status": 404}

    def test_unknown_route_and_verb(self):
        """Test that unmatched routes and verbs answer rest_no_route."""
        for method, route in (("GET", "/wp/v2/comments"), ("PATCH", "/wp/v2/taxonomies"), ("GET", "/wp/v2/posts/{id}")):
            response = self.request(method, route)
            assert response.status == 404
            assert response.error_code == "rest_no_route"

    def test_meta_routes(self):
        """Test the post meta routes."""
        created = self.request("POST", "/wp/v2/posts/1/meta", body={"parent": 1, "key": "color", "value": "blue"})
        assert created.status == 201
        meta_id = created.data["id"]

        assert self.request("GET", "/wp/v2/posts/1/meta", query={"key": "color"}).data[0]["value"] == "blue"
        assert self.request("PUT", f"/wp/v2/posts/1/meta/{meta_id}", body={"value": "red"}).data["value"] == "red"
        assert self.request("DELETE", f"/wp/v2/posts/1/meta/{meta_id}").data["deleted"] is True

    def test_taxonomy_routes(self):
        """Test taxonomy listing and lookup."""
        assert set(self.request("GET", "/wp/v2/taxonomies").data) == {"category", "post_tag"}
        assert self.request("GET", "/wp/v2/taxonomies/post_tag").data["rest_base"] == "tags"
        assert self.request("GET", "/wp/v2/taxonomies/genre").error_code == "rest_taxonomy_invalid"


class TestDefaultTools:
    """Tests for registration of the content tool sets."""

    def test_catalogue(self):
        """Test that every tool set is registered."""
        registry, _ = make_registry()
        names = {tool.name for tool in registry.list_tools()}

        assert len(names) == 35
        assert {
            "wp_get_site_info", "wp_get_posts", "wp_create_post",
            "wp_posts_search", "wp_delete_post_meta",
            "wp_add_page", "wp_update_page_meta",
            "wp_list_categories", "wp_delete_tag",
            "wp_get_taxonomy_terms", "wp_get_post_taxonomies",
        } <= names

    def test_settings_overrides(self):
        """Test that disabled tools and capability overrides are applied."""
        from shared.config import ToolSettings

        registry, _ = make_registry(tool_settings=ToolSettings(
            disabled=["wp_delete_post", "not_a_tool"],
            capabilities={"wp_delete_page": "delete_pages"},
        ))

        assert not registry.resolve("wp_delete_post").enabled
        assert registry.resolve("wp_delete_page").capability == "delete_pages"
        assert registry.resolve("wp_get_post").capability == "edit_posts"

    def test_tag_tools_have_no_parent(self):
        """Test that flat taxonomies do not accept a parent."""
        registry, _ = make_registry()

        assert "parent" not in registry.resolve("wp_add_tag").parameters
        assert "offset" in registry.resolve("wp_list_tags").parameters
        assert registry.resolve("wp_add_category").parameters["parent"].default == 0


class TestSiteTools:
    """Tests for the site tools."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry, self.store = make_registry()

    def test_site_info(self):
        """Test that site info is JSON with the site name."""
        info = call(self.registry, "wp_get_site_info")

        assert info["name"] == "MCP Bridge"
        assert info["plugin_version"] == "1.2.2"
        assert "admin_email" in info

    def test_get_posts(self):
        """Test the aliased post listing."""
        posts = call(self.registry, "wp_get_posts", {"per_page": 1})

        assert [p["id"] for p in posts] == [2]

    def test_create_post_uses_caller_as_author(self):
        """Test that the created post belongs to the caller."""
        post = call(self.registry, "wp_create_post", {"title": "Hello", "content": "World", "status": "publish"})

        assert post["author"] == EDITOR.id
        assert post["status"] == "publish"
        assert post["title"] == "Hello"
        assert post["edit_link"].endswith(f"post.php?post={post['id']}&action=edit")

    def test_create_post_status_falls_back_to_draft(self):
        """Test that an unknown status is replaced rather than rejected."""
        from cms.site import SiteTools

        post = SiteTools(self.store).create_post({"title": "T", "content": "C", "status": "archived"})

        assert post["status"] == "draft"

    def test_create_post_requires_title(self):
        """Test that an empty title is refused."""
        from mcp_bridge.errors import ToolExecutionError

        with pytest.raises(ToolExecutionError, match="Post title is required"):
            self.registry.execute("wp_create_post", {"title": " ", "content": "C"}, EDITOR)

    def test_create_post_schema_rejects_bad_status(self):
        """Test that calls through the registry validate the status enum."""
        from mcp_bridge.errors import InvalidParameter

        with pytest.raises(InvalidParameter):
            self.registry.execute("wp_create_post", {"title": "T", "content": "C", "status": "archived"}, EDITOR)


class TestPostAndPageTools:
    """Tests for the post and page tools."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry, self.store = make_registry()

    def test_update_post(self):
        """Test updating a post through its alias."""
        post = call(self.registry, "wp_update_post", {"id": 1, "title": "Updated", "categories": [2]})

        assert post["title"]["raw"] == "Updated"
        assert post["categories"] == [2]

    def test_get_missing_post(self):
        """Test that backing errors keep their status."""
        from mcp_bridge.errors import BackingApiError

        with pytest.raises(BackingApiError) as exc_info:
            self.registry.execute("wp_get_post", {"id": 99}, EDITOR)

        assert exc_info.value.status == 404

    def test_post_meta_tools(self):
        """Test the aliased post meta tools."""
        entry = call(self.registry, "wp_add_post_meta", {"parent": 1, "key": "rating", "value": 5})

        values = call(self.registry, "wp_get_post_meta", {"parent": 1})
        assert values == [entry]

        single = call(self.registry, "wp_get_post_meta_value", {"parent": 1, "id": entry["id"]})
        assert single["value"] == 5

        call(self.registry, "wp_delete_post_meta", {"parent": 1, "id": entry["id"], "force": True})
        assert call(self.registry, "wp_get_post_meta", {"parent": 1}) == []

    def test_add_page(self):
        """Test page creation through the alias."""
        page = call(self.registry, "wp_add_page", {"title": "About", "content": "Us", "parent": 3})

        assert page["parent"] == 3
        assert page["status"] == "draft"
        assert call(self.registry, "wp_pages_search", {"parent": 3, "status": "draft"})[0]["id"] == page["id"]

    def test_page_meta_tools(self):
        """Test the page meta callbacks."""
        added = call(self.registry, "wp_add_page_meta", {"page_id": 3, "key": "layout", "value": "wide"})
        assert added["page_id"] == 3
        assert added["meta_id"]

        assert call(self.registry, "wp_get_page_meta", {"page_id": 3}) == {"page_id": 3, "meta": {"layout": ["wide"]}}

        updated = call(self.registry, "wp_update_page_meta", {"page_id": 3, "key": "layout", "value": "narrow"})
        assert updated["updated"] is True

        single = call(self.registry, "wp_get_page_meta", {"page_id": 3, "key": "layout", "single": True})
        assert single["meta"] == "narrow"

        deleted = call(self.registry, "wp_delete_page_meta", {"page_id": 3, "key": "layout"})
        assert deleted == {"page_id": 3, "key": "layout", "deleted": True}

    def test_update_page_meta_adds_missing_key(self):
        """Test that updating an absent key creates it."""
        call(self.registry, "wp_update_page_meta", {"page_id": 3, "key": "sidebar", "value": False})

        assert call(self.registry, "wp_get_page_meta", {"page_id": 3, "key": "sidebar"})["meta"] == [False]

    def test_page_meta_failures(self):
        """Test the page meta refusals."""
        from mcp_bridge.errors import ToolExecutionError

        with pytest.raises(ToolExecutionError, match="Page not found"):
            self.registry.execute("wp_get_page_meta", {"page_id": 1}, EDITOR)

        call(self.registry, "wp_add_page_meta", {"page_id": 3, "key": "layout", "value": "wide"})

        with pytest.raises(ToolExecutionError, match="Failed to add page meta"):
            self.registry.execute("wp_add_page_meta", {"page_id": 3, "key": "layout", "value": "x", "unique": True}, EDITOR)

        with pytest.raises(ToolExecutionError, match="Failed to update page meta"):
            self.registry.execute(
                "wp_update_page_meta",
                {"page_id": 3, "key": "layout", "value": "x", "prev_value": "narrow"},
                EDITOR,
            )

        with pytest.raises(ToolExecutionError, match="Failed to delete page meta"):
            self.registry.execute("wp_delete_page_meta", {"page_id": 3, "key": "missing"}, EDITOR)


class TestTaxonomyTools:
    """Tests for category, tag and taxonomy tools."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry, self.store = make_registry()

    def test_category_crud(self):
        """Test category creation, update and forced deletion."""
        from mcp_bridge.errors import BackingApiError

        created = call(self.registry, "wp_add_category", {"name": "Guides", "parent": 2})
        assert created["parent"] == 2
        assert created["slug"] == "guides"

        updated = call(self.registry, "wp_update_category", {"id": created["id"], "description": "How-tos"})
        assert updated["description"] == "How-tos"

        with pytest.raises(BackingApiError) as exc_info:
            self.registry.execute("wp_delete_category", {"id": created["id"]}, EDITOR)
        assert exc_info.value.status == 501

        assert call(self.registry, "wp_delete_category", {"id": created["id"], "force": True})["deleted"] is True

    def test_list_tags(self):
        """Test the aliased tag listing."""
        tags = call(self.registry, "wp_list_tags", {"search": "rel"})

        assert [t["slug"] for t in tags] == ["release"]

    def test_taxonomy_lookup(self):
        """Test the taxonomy aliases."""
        assert set(call(self.registry, "wp_list_taxonomies")) == {"category", "post_tag"}
        assert call(self.registry, "wp_get_taxonomy", {"taxonomy": "category"})["hierarchical"] is True

    def test_taxonomy_terms(self):
        """Test paginated terms of a taxonomy."""
        result = call(self.registry, "wp_get_taxonomy_terms", {"taxonomy": "category", "per_page": 1})

        assert result["total"] == 2
        assert result["pages"] == 2
        assert result["page"] == 1
        assert result["terms"][0]["name"] == "News"
        assert result["terms"][0]["taxonomy"] == "category"

    def test_unknown_taxonomy(self):
        """Test that an unknown taxonomy is refused by name."""
        from mcp_bridge.errors import ToolExecutionError

        with pytest.raises(ToolExecutionError, match="Taxonomy 'genre' does not exist"):
            self.registry.execute("wp_get_taxonomy_terms", {"taxonomy": "genre"}, EDITOR)

    def test_post_taxonomies(self):
        """Test grouping a post's terms by taxonomy."""
        result = call(self.registry, "wp_get_post_taxonomies", {"post_id": 2})

        assert result["post_title"] == "Version 1.0 released"
        assert result["post_type"] == "post"
        assert set(result["taxonomies"]) == {"category", "post_tag"}
        assert result["taxonomies"]["post_tag"]["terms"][0]["name"] == "Release"
        assert result["taxonomies"]["category"]["taxonomy"]["hierarchical"] is True

    def test_post_taxonomies_skip_empty(self):
        """Test that taxonomies without terms on the post are left out."""
        result = call(self.registry, "wp_get_post_taxonomies", {"post_id": 1})

        assert set(result["taxonomies"]) == {"category"}

    def test_post_taxonomies_missing_post(self):
        """Test the refusal for an unknown post."""
        from mcp_bridge.errors import ToolExecutionError

        with pytest.raises(ToolExecutionError, match="Post not found"):
            self.registry.execute("wp_get_post_taxonomies", {"post_id": 99}, EDITOR)
