import httpx
import pytest
from fastapi.testclient import TestClient

from chat_proxy.app_proxy import ApiProxy
from chat_proxy.config import ProxyConfig
from chat_proxy.server import create_app
from chat_proxy.utils_tests.fake_upstream import APP_JS, INDEX_HTML, TEST_API_URL, FakeUpstream


@pytest.fixture
def asset_root(tmp_path):
    """A small web build: index document, script, stylesheet and an icon."""
    root = tmp_path / "web"
    (root / "assets" / "fonts").mkdir(parents=True)
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "app.js").write_bytes(APP_JS)
    (root / "assets" / "style.css").write_bytes(b"body { margin: 0; }")
    (root / "assets" / "fonts" / "Roboto.woff2").write_bytes(b"\x77\x4f\x46\x32")
    (root / "favicon.ico").write_bytes(b"\x00\x00\x01\x00")
    (root / "data.bin").write_bytes(b"\x01\x02\x03")
    return root


@pytest.fixture
def config(asset_root):
    return ProxyConfig(api_url=TEST_API_URL, static_root=asset_root)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def api_proxy(config, upstream):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    return ApiProxy(config, client=client)


@pytest.fixture
def make_client(upstream):
    """Build a TestClient for a given configuration, wired to the fake upstream."""

    def _make(config):
        proxy = ApiProxy(
            config,
            client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)),
        )
        app = create_app(config, proxy=proxy, observability=False)
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client, config):
    with make_client(config) as test_client:
        yield test_client
