import httpx
import pytest
import respx

from hls_relay.const import DEFAULT_USER_AGENT

MANIFEST_URL = "https://cdn.example.com/videos/top.m3u8"
SEGMENT_URL = "https://cdn.example.com/videos/seg001.ts"
KEY_URL = "https://cdn.example.com/videos/key.bin"

TOP_MANIFEST = """#EXTM3U
#EXT-X-KEY:METHOD=AES-128,URI="key.bin"
#EXTINF:10,
seg001.ts
sub/playlist.m3u8"""

CLIENT_CONTEXT_HEADERS = {
    "Referer": "https://viewer.example.org/watch",
    "Origin": "https://viewer.example.org",
    "Cookie": "session=secret",
}


def assert_neutral_identity(request: httpx.Request):
    assert request.headers["user-agent"] == DEFAULT_USER_AGENT
    assert request.headers["accept"] == "*/*"
    for header in ("referer", "origin", "cookie"):
        assert header not in request.headers


@pytest.mark.parametrize(
    "path, message",
    [
        ("/stream", "M3U8 URL is required"),
        ("/segment", "Segment URL is required"),
        ("/key", "Key URL is required"),
    ],
)
def test_missing_url_is_rejected_before_any_upstream_request(client, path, message):
    with respx.mock(assert_all_called=False) as respx_mock:
        route = respx_mock.route()
        response = client.get(path)

    assert response.status_code == 400
    assert response.text == message
    assert response.headers["content-type"].startswith("text/plain")
    assert not route.called


@respx.mock
def test_stream_rewrites_manifest(client):
    route = respx.get(MANIFEST_URL).respond(
        200, text=TOP_MANIFEST, headers={"Content-Type": "application/vnd.apple.mpegurl"}
    )

    response = client.get("/stream", params={"url": MANIFEST_URL}, headers=CLIENT_CONTEXT_HEADERS)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/vnd.apple.mpegurl"
    assert response.text.split("\n") == [
        "#EXTM3U",
        '#EXT-X-KEY:METHOD=AES-128,URI="/key?url=https%3A%2F%2Fcdn.example.com%2Fvideos%2Fkey.bin"',
        "#EXTINF:10,",
        "/segment?url=https%3A%2F%2Fcdn.example.com%2Fvideos%2Fseg001.ts",
        "/stream?url=https%3A%2F%2Fcdn.example.com%2Fvideos%2Fsub%2Fplaylist.m3u8",
    ]
    assert_neutral_identity(route.calls.last.request)


@respx.mock
def test_stream_resolves_against_redirected_url(client):
    respx.get(MANIFEST_URL).respond(302, headers={"Location": "https://edge.example.net/live/index.m3u8"})
    respx.get("https://edge.example.net/live/index.m3u8").respond(200, text="#EXTM3U\n#EXTINF:4,\n1.ts")

    response = client.get("/stream", params={"url": MANIFEST_URL})

    assert response.status_code == 200
    assert response.text.split("\n")[2] == "/segment?url=https%3A%2F%2Fedge.example.net%2Flive%2F1.ts"


@respx.mock
def test_stream_propagates_upstream_status(client):
    respx.get(MANIFEST_URL).respond(404, text="not here")

    response = client.get("/stream", params={"url": MANIFEST_URL})

    assert response.status_code == 404
    assert response.text == "Error fetching M3U8: 404"


@respx.mock
def test_stream_transport_failure_is_500(client):
    respx.get(MANIFEST_URL).mock(side_effect=httpx.ConnectError("connection refused"))

    response = client.get("/stream", params={"url": MANIFEST_URL})

    assert response.status_code == 500
    assert response.text == "Failed to fetch the stream: connection refused"


@respx.mock
def test_segment_is_streamed_with_transport_stream_type(client):
    payload = b"\x47" + b"\x00" * 187
    route = respx.get(SEGMENT_URL).respond(200, content=payload, headers={"Content-Type": "text/plain"})

    response = client.get("/segment", params={"url": SEGMENT_URL}, headers=CLIENT_CONTEXT_HEADERS)

    assert response.status_code == 200
    assert response.content == payload
    assert response.headers["content-type"] == "video/MP2T"
    assert_neutral_identity(route.calls.last.request)


@pytest.mark.parametrize(
    "url, content_type",
    [
        ("https://cdn.example.com/v/chunk-1.m4s", "video/mp4"),
        ("https://cdn.example.com/v/chunk-1.MP4?token=abc", "video/mp4"),
        ("https://cdn.example.com/a/chunk-1.aac", "audio/aac"),
        ("https://cdn.example.com/s/subs-1.vtt", "text/vtt; charset=utf-8"),
        ("https://cdn.example.com/v/chunk-1", "video/MP2T"),
    ],
)
def test_segment_content_type_follows_extension(client, url, content_type):
    with respx.mock:
        respx.get(url).respond(200, content=b"data")
        response = client.get("/segment", params={"url": url})

    assert response.status_code == 200
    assert response.headers["content-type"] == content_type


@respx.mock
def test_segment_propagates_upstream_status(client):
    respx.get(SEGMENT_URL).respond(403)

    response = client.get("/segment", params={"url": SEGMENT_URL})

    assert response.status_code == 403
    assert response.text == "Error fetching segment: 403"


@respx.mock
def test_segment_transport_failure_is_500(client):
    respx.get(SEGMENT_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

    response = client.get("/segment", params={"url": SEGMENT_URL})

    assert response.status_code == 500
    assert response.text == "Failed to fetch segment: timed out"


@respx.mock
def test_key_is_returned_as_octet_stream(client):
    key = bytes(range(16))
    route = respx.get(KEY_URL).respond(200, content=key, headers={"Content-Type": "text/plain"})

    response = client.get("/key", params={"url": KEY_URL}, headers=CLIENT_CONTEXT_HEADERS)

    assert response.status_code == 200
    assert response.content == key
    assert response.headers["content-type"] == "application/octet-stream"
    assert_neutral_identity(route.calls.last.request)


@respx.mock
def test_key_propagates_upstream_status(client):
    respx.get(KEY_URL).respond(401)

    response = client.get("/key", params={"url": KEY_URL})

    assert response.status_code == 401
    assert response.text == "Error fetching key: 401"


@respx.mock
def test_key_transport_failure_is_500(client):
    respx.get(KEY_URL).mock(side_effect=httpx.ConnectError("no route to host"))

    response = client.get("/key", params={"url": KEY_URL})

    assert response.status_code == 500
    assert response.text == "Failed to fetch encryption key: no route to host"


def test_cors_headers_are_sent(client):
    response = client.get("/stream", headers={"Origin": "https://player.example.org"})

    assert response.headers["access-control-allow-origin"] == "*"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@respx.mock
def test_stream_ignores_byte_order_mark(client):
    body = "\ufeff#EXTM3U\n#EXTINF:10,\nseg001.ts".encode("utf-8")
    respx.get(MANIFEST_URL).respond(200, content=body, headers={"Content-Type": "application/vnd.apple.mpegurl"})

    response = client.get("/stream", params={"url": MANIFEST_URL})

    assert response.status_code == 200
    assert response.text.split("\n") == [
        "#EXTM3U",
        "#EXTINF:10,",
        "/segment?url=https%3A%2F%2Fcdn.example.com%2Fvideos%2Fseg001.ts",
    ]


@respx.mock
def test_stream_survives_unresolvable_line(client):
    respx.get(MANIFEST_URL).respond(200, text="#EXTM3U\n//[::1\nseg001.ts")

    response = client.get("/stream", params={"url": MANIFEST_URL})

    assert response.status_code == 200
    assert response.text.split("\n")[1] == "//[::1"
