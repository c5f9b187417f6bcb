"""End-to-end tests for RESTClient against a local HTTP server."""

import gzip
import io
import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from pcord_rest import (
    BASE_USER_AGENT,
    DiscordAPIError,
    RequestTimeoutError,
    RESTClient,
    RestConfig,
    SessionHttpTransport,
    TokenRequiredError,
    TokenType,
)


class RecordingHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.received.append({
            "method": self.command,
            "path": self.path,
            "headers": dict(self.headers.items()),
            "body": body,
        })
        status, headers, payload = self.server.responder(self)
        self.send_response(status)
        for name, value in headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if self.server.body_delay:
            self.wfile.flush()
            time.sleep(self.server.body_delay)
        self.wfile.write(payload)

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _handle

    def log_message(self, format, *args):
        pass


def json_reply(payload, status=200, headers=None):
    return status, {"Content-Type": "application/json", **(headers or {})}, json.dumps(payload).encode()


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), RecordingHandler)
    httpd.daemon_threads = True
    httpd.received = []
    httpd.body_delay = 0
    httpd.responder = lambda handler: (204, {}, b"")
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()


@pytest.fixture
def make_client(server):
    clients = []

    def factory(**overrides):
        session = requests.Session()
        session.trust_env = False
        options = {"token": "token", **overrides}
        client = RESTClient(
            config=RestConfig(),
            transport=SessionHttpTransport(session),
            api="127.0.0.1",
            port=server.server_address[1],
            scheme="http",
            **options,
        )
        clients.append((client, session))
        return client

    yield factory
    for client, session in clients:
        client.close()
        session.close()


# =============================================================================
# Request Shape Tests
# =============================================================================


class TestRequestShape:
    """Tests for what reaches the server."""

    def test_default_headers(self, server, make_client):
        """Every request should carry User-Agent and Accept-Encoding."""
        make_client().request("GET", "/users/@me")

        headers = server.received[0]["headers"]
        assert headers["User-Agent"] == BASE_USER_AGENT
        assert headers["Accept-Encoding"] == "gzip,deflate"
        assert "Authorization" not in headers

    def test_user_agent_suffix(self, server, make_client):
        """The configured suffix should be appended to the User-Agent."""
        client = make_client(user_agent_suffix="MyBot/1.0")
        client.request("GET", "/users/@me")

        assert server.received[0]["headers"]["User-Agent"] == f"{BASE_USER_AGENT}, MyBot/1.0"
        assert client.user_agent == f"{BASE_USER_AGENT}, MyBot/1.0"

    def test_v9_path_by_default(self, server, make_client):
        """Routes should be prefixed with /api/v9 and keep their query string."""
        make_client().request("GET", "/channels/1/messages", query_string={"limit": 5})

        assert server.received[0]["path"] == "/api/v9/channels/1/messages?limit=5"

    @pytest.mark.parametrize(("token_type", "expected"), [
        (TokenType.BOT, "Bot token"),
        (TokenType.BEARER, "Bearer token"),
    ])
    def test_authorization(self, server, make_client, token_type, expected):
        """Authorization should use the configured token type."""
        make_client(token_type=token_type).request("GET", "/users/@me", auth=True)

        assert server.received[0]["headers"]["Authorization"] == expected

    def test_json_body(self, server, make_client):
        """Structured bodies should be sent as JSON."""
        make_client().request("POST", "/channels/1/messages", body={"content": "hi"})

        received = server.received[0]
        assert received["method"] == "POST"
        assert received["headers"]["Content-Type"] == "application/json"
        assert json.loads(received["body"]) == {"content": "hi"}

    def test_raw_bytes_body(self, server, make_client):
        """Raw bytes should be sent unmodified without a Content-Type."""
        make_client().request("PUT", "/", body=b"\x00\x01raw")

        received = server.received[0]
        assert received["body"] == b"\x00\x01raw"
        assert "Content-Type" not in received["headers"]

    def test_stream_body(self, server, make_client):
        """Stream bodies should be sent in full."""
        make_client().request("POST", "/", body=io.BytesIO(b"foo\nbar"))

        assert server.received[0]["body"] == b"foo\nbar"

    def test_missing_token_raises_before_sending(self, server, make_client):
        """auth=True without a token should fail before anything is sent."""
        client = make_client(token=None)

        with pytest.raises(TokenRequiredError):
            client.submit("GET", "/users/@me", auth=True)

        assert server.received == []


# =============================================================================
# Response Tests
# =============================================================================


class TestResponses:
    """Tests for decoded results and errors."""

    def test_json_result(self, server, make_client):
        """JSON responses should be parsed."""
        server.responder = lambda handler: json_reply({"id": "1", "username": "pcord"})

        assert make_client().request("GET", "/users/@me") == {"id": "1", "username": "pcord"}

    def test_gzip_result(self, server, make_client):
        """gzip responses should be decompressed."""
        server.responder = lambda handler: (
            200,
            {"Content-Type": "application/json", "Content-Encoding": "gzip"},
            gzip.compress(b'{"compressed": true}'),
        )

        assert make_client().request("GET", "/") == {"compressed": True}

    def test_binary_result(self, server, make_client):
        """Non-JSON responses should be returned as bytes."""
        server.responder = lambda handler: (200, {"Content-Type": "image/png"}, b"\x89PNG")

        assert make_client().request("GET", "/") == b"\x89PNG"

    def test_streaming_result(self, server, make_client):
        """stream=True should return the live body."""
        server.responder = lambda handler: (200, {"Content-Type": "text/plain"}, b"foo\nbar")

        stream = make_client().request("GET", "/", stream=True)

        assert stream.read() == b"foo\nbar"

    def test_api_error(self, server, make_client):
        """Error responses should raise DiscordAPIError with the remote code and message."""
        server.responder = lambda handler: json_reply({"code": 10003, "message": "Unknown Channel"}, status=404)

        with pytest.raises(DiscordAPIError) as ctx:
            make_client().request("GET", "/channels/1")

        assert ctx.value.code == 10003
        assert ctx.value.message == "Unknown Channel"
        assert ctx.value.status == 404
        assert "test_api_error" in ctx.value.origin_stack

    def test_api_error_without_body(self, server, make_client):
        """Error responses without a body should use code -1 and the reason phrase."""
        server.responder = lambda handler: (403, {}, b"")

        with pytest.raises(DiscordAPIError) as ctx:
            make_client().request("GET", "/channels/1")

        assert ctx.value.code == -1
        assert ctx.value.message == "Forbidden"

    def test_retries_server_errors(self, server, make_client):
        """5xx responses should be retried."""
        replies = iter([(502, {}, b""), json_reply({"ok": True})])
        server.responder = lambda handler: next(replies)

        assert make_client().request("GET", "/guilds/1") == {"ok": True}
        assert len(server.received) == 2

    def test_retries_rate_limited_requests(self, server, make_client):
        """429 responses should be retried after the reset."""
        replies = iter([
            json_reply({"message": "You are being rate limited.", "retry_after": 0.1}, status=429, headers={
                "Retry-After": "0.1", "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(time.time() + 0.1),
            }),
            json_reply({"ok": True}),
        ])
        server.responder = lambda handler: next(replies)

        assert make_client().request("GET", "/channels/1") == {"ok": True}
        assert len(server.received) == 2

    def test_timeout(self, server, make_client):
        """A slow server should surface as RequestTimeoutError."""
        def slow(handler):
            time.sleep(0.5)
            return 204, {}, b""

        server.responder = slow

        with pytest.raises(RequestTimeoutError):
            make_client().request("GET", "/", timeout=0.1)

    def test_stream_stays_readable_after_timeout(self, server, make_client):
        """A slow stream body should be readable past the request timeout."""
        server.responder = lambda handler: (200, {"Content-Type": "application/octet-stream"}, b"data")
        server.body_delay = 0.6

        stream = make_client().request("GET", "/attachments", stream=True, timeout=0.3)

        assert stream.read() == b"data"

    def test_bucket_reset_beyond_budget_times_out(self, server, make_client):
        """A 429 whose reset lies past the budget should fail within the budget."""
        reset = time.time() + 1.5
        replies = iter([
            json_reply({"message": "You are being rate limited."}, status=429, headers={
                "X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset),
            }),
        ])
        server.responder = lambda handler: next(replies, json_reply({"ok": True}))
        started = time.monotonic()

        with pytest.raises(RequestTimeoutError):
            make_client().request("GET", "/channels/1", timeout=0.3)

        assert time.monotonic() - started < 1.0
        assert len(server.received) == 1

    def test_submit_returns_future(self, server, make_client):
        """submit() should return futures resolved in order."""
        server.responder = lambda handler: json_reply({"path": handler.path})
        client = make_client()

        futures = [client.submit("GET", f"/channels/1/messages/{i}") for i in range(5)]

        assert [f.result(timeout=5)["path"] for f in futures] == [
            f"/api/v9/channels/1/messages/{i}" for i in range(5)
        ]


# =============================================================================
# Client Lifecycle Tests
# =============================================================================


class TestClientLifecycle:
    """Tests for construction and cleanup."""

    def test_unknown_override_raises(self):
        """Unknown config overrides should raise ValueError."""
        with pytest.raises(ValueError):
            RESTClient(config=RestConfig(), unknown_field=1)

    def test_owns_default_transport(self):
        """The client should create and own a transport when none is given."""
        with RESTClient(config=RestConfig()) as client:
            assert isinstance(client.transport, SessionHttpTransport)
            assert client._owns_transport

    def test_does_not_close_injected_transport(self):
        """An injected transport should be left open."""
        transport = SessionHttpTransport()
        client = RESTClient(config=RestConfig(), transport=transport)

        client.close()

        assert not client._owns_transport
        transport.close()

    def test_repr_hides_token(self):
        """The token should never appear in reprs."""
        client = RESTClient(config=RestConfig(), token="secret")
        assert "secret" not in repr(client)
        assert "secret" not in repr(client.config)
