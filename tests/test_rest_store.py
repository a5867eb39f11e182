"""Tests for the WordPress REST content store."""

import base64
import json

import httpx
import pytest


def make_store(handler):
    from cms.rest import RESTContentStore

    return RESTContentStore(
        "https://example.com/",
        username="bridge",
        application_password="abcd efgh",
        transport=httpx.MockTransport(handler),
    )


class TestRESTContentStore:
    """Tests against a mocked site."""

    def test_list_items(self):
        """Test query flattening and the pagination headers."""
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json=[{"id": 1}],
                headers={"X-WP-Total": "12", "X-WP-TotalPages": "2"},
            )

        page = make_store(handler).list_items("posts", {"categories": [1, 2], "sticky": False, "search": None})

        assert seen["path"] == "/wp-json/wp/v2/posts"
        assert seen["params"] == {"categories": "1,2", "sticky": "false", "context": "edit"}
        assert page.items == [{"id": 1}]
        assert page.total == 12
        assert page.total_pages == 2

    def test_authentication_header(self):
        """Test that the service account is sent as Basic credentials."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"id": 3})

        make_store(handler).get_item("pages", 3)

        assert seen["auth"].startswith("Basic ")

    def test_error_mapping(self):
        """Test that WordPress error bodies become ContentError."""
        from cms.base import ContentError

        def handler(request):
            return httpx.Response(404, json={"code": "rest_post_invalid_id", "message": "Invalid post ID."})

        with pytest.raises(ContentError) as exc_info:
            make_store(handler).get_item("posts", 99)

        assert exc_info.value.code == "rest_post_invalid_id"
        assert exc_info.value.status == 404

    def test_error_without_body(self):
        """Test errors that carry no JSON."""
        from cms.base import ContentError

        def handler(request):
            return httpx.Response(500, text="oops")

        with pytest.raises(ContentError) as exc_info:
            make_store(handler).get_item("posts", 1)

        assert exc_info.value.code == "rest_error"
        assert exc_info.value.message == "Internal Server Error"

    def test_transport_failure(self):
        """Test that connection failures map to 502."""
        from cms.base import ContentError

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ContentError) as exc_info:
            make_store(handler).get_item("posts", 1)

        assert exc_info.value.status == 502

    def test_create_and_delete(self):
        """Test the author default and the force flag."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": 4})

        store = make_store(handler)
        store.create_item("posts", {"title": "T"}, author=7)
        store.delete_item("posts", 4, force=True)

        assert json.loads(requests[0].content) == {"title": "T", "author": 7}
        assert requests[1].method == "DELETE"
        assert requests[1].url.params["force"] == "true"

    def test_meta_by_position(self):
        """Test that meta ids are positions in the item's meta mapping."""
        writes = []

        def handler(request):
            if request.method == "POST":
                writes.append(json.loads(request.content))
                return httpx.Response(200, json={"id": 1})
            return httpx.Response(200, json={"id": 1, "meta": {"color": "blue", "size": "L"}})

        store = make_store(handler)

        entries = store.list_meta("posts", 1)
        assert [(e["id"], e["key"]) for e in entries] == [(1, "color"), (2, "size")]

        deleted = store.delete_meta("posts", 1, 2)
        assert deleted["previous"]["key"] == "size"
        assert writes == [{"meta": {"size": None}}]

    def test_site_info_without_settings_access(self):
        """Test that site info falls back to the index when settings are refused."""

        def handler(request):
            if request.url.path.endswith("/settings"):
                return httpx.Response(403, json={"code": "rest_forbidden", "message": "Sorry."})
            return httpx.Response(200, json={"name": "Blog", "description": "", "url": "https://example.com"})

        info = make_store(handler).site_info()

        assert info["name"] == "Blog"
        assert "admin_email" not in info

    def test_verify_application_password(self):
        """Test asking the site who a credential belongs to."""

        def handler(request):
            if request.headers["authorization"] != "Basic " + base64.b64encode(b"alice:pw").decode():
                return httpx.Response(401, json={"code": "invalid_username"})
            return httpx.Response(200, json={
                "id": 2,
                "username": "alice",
                "roles": ["editor"],
                "capabilities": {"edit_posts": True, "manage_options": False},
            })

        store = make_store(handler)
        principal = store.verify_application_password("alice", "pw")

        assert principal.id == 2
        assert principal.can("edit_posts")
        assert not principal.can("manage_options")
        assert store.verify_application_password("alice", "wrong") is None

    def test_verify_with_unexpected_payload(self):
        """Test that a 200 without a usable user body is not a credential match."""
        bodies = iter([
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(200, json={"username": "alice"}),
            httpx.Response(200, json=["not", "a", "user"]),
        ])

        def handler(request):
            return next(bodies)

        store = make_store(handler)

        assert store.verify_application_password("alice", "pw") is None
        assert store.verify_application_password("alice", "pw") is None
        assert store.verify_application_password("alice", "pw") is None

    def test_from_settings_requires_url(self):
        """Test the rest backend configuration check."""
        from cms.rest import RESTContentStore
        from shared.config import CMSSettings

        with pytest.raises(ValueError, match="base_url"):
            RESTContentStore.from_settings(CMSSettings(backend="rest"))
