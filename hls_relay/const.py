STREAM_ROUTE = "/stream"
SEGMENT_ROUTE = "/segment"
KEY_ROUTE = "/key"
EMBED_ROUTE = "/embed"
PLAYER_ROUTE = "/player"
API_PROXY_ROUTE = "/api-proxy"

MANIFEST_EXTENSION = ".m3u8"
KEY_DIRECTIVE = "#EXT-X-KEY"

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
DEFAULT_SEGMENT_CONTENT_TYPE = "video/MP2T"
KEY_CONTENT_TYPE = "application/octet-stream"

SEGMENT_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4s": "video/mp4",
    ".m4v": "video/mp4",
    ".cmfv": "video/mp4",
    ".m4a": "audio/mp4",
    ".cmfa": "audio/mp4",
    ".aac": "audio/aac",
    ".vtt": "text/vtt",
    ".webvtt": "text/vtt",
}

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

EXCLUDED_FORWARD_REQUEST_HEADERS = [
    "host",
    "connection",
    "content-length",
    "accept-encoding",
]

EXCLUDED_FORWARD_RESPONSE_HEADERS = [
    "connection",
    "transfer-encoding",
    "content-encoding",
    "content-length",
]
