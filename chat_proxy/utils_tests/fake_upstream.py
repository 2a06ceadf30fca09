import httpx

TEST_API_URL = "http://chat-api:10000"

INDEX_HTML = b"<!DOCTYPE html><html><body><script src='main.dart.js'></script></body></html>"
APP_JS = b"console.log('chat');"


class FakeUpstream:
    """Stands in for the chat API behind an httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.respond = lambda request: httpx.Response(
            200, json={"ok": True}, headers={"content-type": "application/json"}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


class InterruptedStream(httpx.AsyncByteStream):
    """Upstream body that delivers its first chunks and then loses the connection."""

    def __init__(self, *chunks: bytes):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        raise httpx.ReadError("Connection reset by peer")

    async def aclose(self) -> None:
        self.closed = True
