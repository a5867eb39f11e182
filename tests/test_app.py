"""End-to-end tests for the HTTP application."""

import base64
import json

import pytest
from fastapi.testclient import TestClient

PASSWORD = "abcd EFGH 1234 ijkl MNOP 6789"
AUTH = {"Authorization": "Basic " + base64.b64encode(f"editor:{PASSWORD}".encode()).decode()}
ENDPOINT = "/mcp/v1/mcp"


def make_client(**overrides):
    """Build a test client over the memory backend with one editor."""
    from cms.users import ApplicationPassword, StoredUser, UserDirectory, hash_password
    from mcp_bridge.context import build_context
    from mcp_bridge.main import create_app
    from shared.config import Settings

    settings = Settings(audit={"enabled": False}, **overrides)
    directory = UserDirectory([StoredUser(
        id=1, login="editor", roles=["editor"],
        application_passwords=[ApplicationPassword(password=hash_password(PASSWORD))],
    )])
    return TestClient(create_app(build_context(settings, directory=directory)))


def rpc(method, params=None, request_id=1):
    body = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        body["params"] = params
    return body


class TestRpcEndpoint:
    """Tests for the JSON-RPC route."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = make_client()

    def test_full_session(self):
        """Test handshake, listing and a tool call."""
        init = self.client.post(ENDPOINT, json=rpc("initialize", {"protocolVersion": "2025-03-26"}))
        assert init.status_code == 200
        session_id = init.headers["Mcp-Session-Id"]

        initialized = self.client.post(
            ENDPOINT,
            json=rpc("notifications/initialized"),
            headers={"Mcp-Session-Id": session_id},
        )
        assert initialized.json()["result"] == {}

        listed = self.client.post(ENDPOINT, json=rpc("tools/list", request_id=2), headers=AUTH)
        names = [tool["name"] for tool in listed.json()["result"]["tools"]]
        assert "wp_get_site_info" in names

        called = self.client.post(
            ENDPOINT,
            json=rpc("tools/call", {"name": "wp_get_site_info", "arguments": {}}, request_id=3),
            headers=AUTH,
        )
        body = called.json()
        assert body["id"] == 3
        assert "name" in json.loads(body["result"]["content"][0]["text"])

    def test_mcp_headers(self):
        """Test the transport metadata headers."""
        response = self.client.post(ENDPOINT, json=rpc("ping"))

        assert response.headers["MCP-Transport"] == "http"
        assert response.headers["MCP-Protocol-Version"] == "2025-03-26"
        assert response.headers["MCP-Session-Status"] == "active"
        assert response.headers["MCP-Server-Name"] == "mcp-bridge"
        assert response.headers["Mcp-Session-Id"]

    def test_error_session_status(self):
        """Test that error responses mark the session status."""
        response = self.client.post(ENDPOINT, json=rpc("no/such/method"), headers=AUTH)

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601
        assert response.headers["MCP-Session-Status"] == "error"

    def test_parse_error(self):
        """Test that an unparseable body answers 400 with an envelope."""
        response = self.client.post(
            ENDPOINT,
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    def test_unauthenticated(self):
        """Test the 401 answer and its challenge header."""
        response = self.client.post(ENDPOINT, json=rpc("tools/list"))

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == 'Basic realm="mcp-bridge"'
        assert response.json()["error"]["code"] == -32002

    def test_cors_allowed_origin(self):
        """Test that an allowed origin is echoed back."""
        response = self.client.post(
            ENDPOINT,
            json=rpc("ping"),
            headers={"Origin": "http://localhost:3000"},
        )

        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
        assert response.headers["Access-Control-Allow-Credentials"] == "true"
        assert "Mcp-Session-Id" in response.headers["Access-Control-Expose-Headers"]

    def test_rpc_alias(self):
        """Test the second route serving the same handler."""
        response = self.client.post("/mcp/v1/rpc", json=rpc("ping"))

        assert response.json() == {"jsonrpc": "2.0", "result": {}, "id": 1}

    def test_preflight(self):
        """Test that OPTIONS answers with CORS headers."""
        response = self.client.options(ENDPOINT, headers={
            "Origin": "http://127.0.0.1:8080",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization, Mcp-Session-Id",
        })

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "http://127.0.0.1:8080"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]


class TestSecurityGate:
    """Tests for rejections before the protocol handler."""

    def test_origin_rejected(self):
        """Test that a foreign origin is refused without an envelope."""
        client = make_client()

        response = client.post(
            ENDPOINT,
            json=rpc("ping"),
            headers={"Origin": "https://evil.example.net"},
        )

        assert response.status_code == 403
        assert response.json() == {"detail": "Origin not allowed"}
        assert "Access-Control-Allow-Origin" not in response.headers

    def test_ip_allow_list(self):
        """Test the address check with a trusted forwarding proxy."""
        client = make_client(security={"allowed_ips": ["10.0.0.0/8"], "trust_forwarded_for": True})

        allowed = client.post(ENDPOINT, json=rpc("ping"), headers={"X-Forwarded-For": "10.1.2.3, 192.0.2.1"})
        rejected = client.post(ENDPOINT, json=rpc("ping"), headers={"X-Forwarded-For": "11.0.0.1"})

        assert allowed.status_code == 200
        assert rejected.status_code == 403
        assert rejected.json() == {"detail": "Client address not allowed"}

    def test_forwarded_for_ignored_by_default(self):
        """Test that X-Forwarded-For is not trusted unless configured."""
        client = make_client(security={"allowed_ips": ["10.0.0.0/8"]})

        response = client.post(ENDPOINT, json=rpc("ping"), headers={"X-Forwarded-For": "10.1.2.3"})

        assert response.status_code == 403

    def test_rate_limit(self):
        """Test that request N+1 in the window answers 429."""
        client = make_client(security={"rate_limit_requests": 3, "rate_limit_window": 60})

        for _ in range(3):
            assert client.post(ENDPOINT, json=rpc("ping")).status_code == 200

        response = client.post(ENDPOINT, json=rpc("ping"))

        assert response.status_code == 429
        assert "jsonrpc" not in response.json()
        assert 0 < int(response.headers["Retry-After"]) <= 60

    def test_preflight_bypasses_gate(self):
        """Test that preflight is answered even when the limit is spent."""
        client = make_client(security={"rate_limit_requests": 1})

        client.post(ENDPOINT, json=rpc("ping"))
        assert client.post(ENDPOINT, json=rpc("ping")).status_code == 429

        preflight = client.options(ENDPOINT, headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
        })
        assert preflight.status_code == 200

    def test_rejections_carry_cors_headers(self):
        """Test that a browser can read a 429 from an allowed origin."""
        client = make_client(security={"rate_limit_requests": 1})
        origin = {"Origin": "http://localhost:3000"}

        client.post(ENDPOINT, json=rpc("ping"), headers=origin)
        response = client.post(ENDPOINT, json=rpc("ping"), headers=origin)

        assert response.status_code == 429
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
        assert response.headers["Retry-After"]

    def test_preflight_from_foreign_origin(self):
        """Test that preflight from an unlisted origin is refused."""
        client = make_client(security={"allowed_origins": ["https://app.example.com"]})

        refused = client.options(ENDPOINT, headers={
            "Origin": "https://evil.example.net",
            "Access-Control-Request-Method": "POST",
        })
        listed = client.options(ENDPOINT, headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
        })

        assert refused.status_code == 400
        assert "Access-Control-Allow-Origin" not in refused.headers
        assert listed.headers["Access-Control-Allow-Origin"] == "https://app.example.com"


class TestAuxiliaryRoutes:
    """Tests for the manifest and health routes."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = make_client(tools={"disabled": ["wp_delete_post"]})

    def test_tools_manifest(self):
        """Test that the manifest lists enabled tools with the version."""
        response = self.client.get("/mcp/v1/tools")

        body = response.json()
        names = [tool["name"] for tool in body["tools"]]
        assert response.status_code == 200
        assert body["version"] == "1.2.2"
        assert "wp_delete_post" not in names
        assert len(names) == 34

    def test_health(self):
        """Test the health endpoint."""
        response = self.client.get("/health")

        assert response.json() == {"status": "healthy", "version": "1.2.2", "tool_count": 34}

    def test_disabled_tool_call(self):
        """Test that a disabled tool answers -32004."""
        response = self.client.post(
            ENDPOINT,
            json=rpc("tools/call", {"name": "wp_delete_post", "arguments": {"id": 1}}),
            headers=AUTH,
        )

        assert response.json()["error"]["code"] == -32004


@pytest.mark.parametrize("namespace", ["/wp-json/mcp/v1", "custom/"])
def test_custom_namespace(namespace):
    """Test that routes follow the configured namespace."""
    client = make_client(server={"namespace": namespace})
    prefix = "/" + namespace.strip("/")

    assert client.post(f"{prefix}/mcp", json=rpc("ping")).status_code == 200
    assert client.post(ENDPOINT, json=rpc("ping")).status_code == 404
