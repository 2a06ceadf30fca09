import time

import httpx
import pytest

from chat_proxy.config import ProxyConfig
from chat_proxy.routes import RouteKind, classify
from chat_proxy.utils_tests.fake_upstream import APP_JS, INDEX_HTML, TEST_API_URL


@pytest.fixture
def debug_config(asset_root):
    return ProxyConfig(
        api_url=TEST_API_URL,
        static_root=asset_root,
        enable_debug_endpoint=True,
        environment={"API_URL": TEST_API_URL, "APP_ENV": "staging", "PORT": "9000"},
    )


class TestClassify:
    @pytest.mark.parametrize(
        "method,path,expected",
        [
            ("OPTIONS", "/api/login", RouteKind.PREFLIGHT),
            ("OPTIONS", "/health", RouteKind.PREFLIGHT),
            ("options", "/anything", RouteKind.PREFLIGHT),
            ("POST", "/api/login", RouteKind.API_PROXY),
            ("GET", "/api/", RouteKind.API_PROXY),
            ("GET", "/api", RouteKind.STATIC),
            ("GET", "/apidocs", RouteKind.STATIC),
            ("GET", "/health", RouteKind.HEALTH),
            ("GET", "/health/", RouteKind.STATIC),
            ("GET", "/debug", RouteKind.STATIC),
            ("GET", "/", RouteKind.STATIC),
            ("GET", "/chat/42", RouteKind.STATIC),
        ],
    )
    def test_precedence(self, config, method, path, expected):
        assert classify(method, path, config) == expected

    def test_debug_requires_opt_in(self, debug_config):
        assert classify("GET", "/debug", debug_config) == RouteKind.DEBUG


class TestPreflight:
    @pytest.mark.parametrize("path", ["/", "/api/login", "/health", "/deep/link"])
    def test_preflight_any_path(self, client, upstream, path):
        response = client.options(path)

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert (
            response.headers["access-control-allow-methods"]
            == "GET, POST, PUT, DELETE, OPTIONS"
        )
        allowed = response.headers["access-control-allow-headers"].lower()
        assert "x-session-id" in allowed
        assert "x-username" in allowed
        assert response.headers["access-control-max-age"] == "86400"
        assert upstream.requests == []


class TestHealthAndDebug:
    def test_health(self, client):
        before = int(time.time() * 1000)

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["proxy"] == "running"
        assert before <= body["timestamp"] <= int(time.time() * 1000)

    def test_debug_disabled_serves_app(self, client):
        response = client.get("/debug")

        assert response.status_code == 200
        assert response.content == INDEX_HTML

    def test_debug_enabled(self, make_client, debug_config):
        with make_client(debug_config) as debug_client:
            response = debug_client.get("/debug")

        assert response.status_code == 200
        assert response.json() == {
            "API_SERVER_URL": TEST_API_URL,
            "env_API_URL": TEST_API_URL,
            "APP_ENV": "staging",
            "PORT": "9000",
        }


class TestApiRoutes:
    def test_proxied_with_query(self, client, upstream):
        response = client.get(
            "/api/messages?session=a%20b&tag=x%2Fy",
            headers={"x-session-id": "s-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert upstream.last.url.raw_path == b"/messages?session=a%20b&tag=x%2Fy"
        assert upstream.last.headers["x-session-id"] == "s-1"

    def test_post_login(self, client, upstream):
        upstream.respond = lambda request: httpx.Response(
            200, json={"sessionId": "s-1", "username": "alice"}
        )

        response = client.post(
            "/api/login",
            headers={"x-username": "alice", "content-type": "application/json"},
            content=b"{}",
        )

        assert response.json() == {"sessionId": "s-1", "username": "alice"}
        assert upstream.last.method == "POST"
        assert upstream.last.url.path == "/login"
        assert upstream.last.content == b"{}"
        assert upstream.last.headers["x-username"] == "alice"

    def test_upstream_down(self, client, upstream):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        upstream.respond = refuse

        response = client.get("/api/sessions")

        assert response.status_code == 503
        assert response.json()["error"] == "API server unavailable"

    def test_upstream_html(self, client, upstream):
        upstream.respond = lambda request: httpx.Response(
            200, content=b"<html></html>", headers={"content-type": "text/html"}
        )

        response = client.get("/api/sessions")

        assert response.status_code == 502
        assert response.headers["content-type"] == "application/json"
        assert "error" in response.json()

    def test_response_headers_sanitized(self, client, upstream):
        upstream.respond = lambda request: httpx.Response(
            200,
            content=b'{"a": 1}',
            headers={"content-type": "application/json", "x-request-id": "r-9"},
        )

        response = client.get("/api/sessions")

        assert response.json() == {"a": 1}
        assert "content-encoding" not in response.headers
        assert "content-length" not in response.headers
        assert response.headers["x-request-id"] == "r-9"

    def test_latin1_header_forwarded_byte_for_byte(self, client, upstream):
        username = "José".encode("latin-1")

        response = client.get("/api/sessions", headers={"x-username": username})

        assert response.status_code == 200
        assert dict(upstream.last.headers.raw)[b"x-username"] == username

    @pytest.mark.parametrize("method", ["PROPFIND", "MKCOL", "PATCH"])
    def test_extension_methods_proxied(self, client, upstream, method):
        response = client.request(method, "/api/sessions", content=b"<propfind/>")

        assert response.status_code == 200
        assert upstream.last.method == method
        assert upstream.last.content == b"<propfind/>"

    def test_extension_method_outside_api_serves_app(self, client, upstream):
        response = client.request("PROPFIND", "/chat/42")

        assert response.status_code == 200
        assert response.content == INDEX_HTML
        assert upstream.requests == []


class TestStaticRoutes:
    def test_root_matches_index(self, client):
        root = client.get("/")
        index = client.get("/index.html")

        assert root.status_code == index.status_code == 200
        assert root.content == index.content == INDEX_HTML

    def test_deep_link_fallback(self, client):
        response = client.get("/some/unknown/deep-link")

        assert response.status_code == 200
        assert response.content == INDEX_HTML
        assert response.headers["cache-control"] == "no-cache"

    def test_script_long_lived(self, client):
        response = client.get("/app.js")

        assert response.content == APP_JS
        assert response.headers["content-type"] == "application/javascript"
        assert "max-age=31536000" in response.headers["cache-control"]

    def test_missing_without_index(self, make_client, tmp_path):
        config = ProxyConfig(api_url=TEST_API_URL, static_root=tmp_path / "empty")
        with make_client(config) as empty_client:
            response = empty_client.get("/missing.png")

        assert response.status_code == 404
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "File not found"

    def test_head_request(self, client):
        response = client.head("/app.js")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/javascript"

    def test_docs_routes_not_shadowing_app(self, client):
        assert client.get("/docs").content == INDEX_HTML
        assert client.get("/openapi.json").content == INDEX_HTML
