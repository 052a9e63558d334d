import logging
from urllib.parse import urlparse

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.background import BackgroundTask

from .configs import Settings
from .const import (
    DEFAULT_SEGMENT_CONTENT_TYPE,
    EXCLUDED_FORWARD_REQUEST_HEADERS,
    EXCLUDED_FORWARD_RESPONSE_HEADERS,
    KEY_CONTENT_TYPE,
    MANIFEST_CONTENT_TYPE,
    SEGMENT_CONTENT_TYPES,
)
from .utils.http_utils import (
    DownloadError,
    EnhancedStreamingResponse,
    Streamer,
    build_upstream_headers,
    create_httpx_client,
    fetch_resource,
)
from .utils.m3u8_processor import M3U8Processor

logger = logging.getLogger(__name__)


def setup_client_and_streamer(settings: Settings) -> tuple[httpx.AsyncClient, Streamer]:
    """
    Set up an HTTP client and a streamer.

    Args:
        settings (Settings): The application settings.

    Returns:
        tuple: An httpx.AsyncClient instance and a Streamer instance.
    """
    client = create_httpx_client(settings.transport_config)
    return client, Streamer(client, enable_progress=settings.enable_streaming_progress)


def handle_exceptions(exception: Exception, upstream_error: str, failure_message: str) -> Response:
    """
    Handle exceptions and return appropriate HTTP responses.

    Args:
        exception (Exception): The exception that was raised.
        upstream_error (str): Message prefix used when the upstream answered with an error status.
        failure_message (str): Message prefix used for any other failure.

    Returns:
        Response: A plain text HTTP response corresponding to the exception type.
    """
    if isinstance(exception, DownloadError):
        logger.error(f"{upstream_error}: {exception}")
        return PlainTextResponse(f"{upstream_error}: {exception.status_code}", status_code=exception.status_code)
    logger.exception(f"{failure_message}: {exception}")
    return PlainTextResponse(f"{failure_message}: {exception}", status_code=500)


def get_segment_content_type(url: str) -> str:
    """
    Guess the content type of a media segment from its URL path extension.

    Args:
        url (str): The segment URL.

    Returns:
        str: The matching container type, or the MPEG transport stream type.
    """
    path = urlparse(url).path.lower()
    for extension, content_type in SEGMENT_CONTENT_TYPES.items():
        if path.endswith(extension):
            return content_type
    return DEFAULT_SEGMENT_CONTENT_TYPE


async def handle_stream_proxy(url: str, settings: Settings) -> Response:
    """
    Fetch an HLS manifest and rewrite its references to point back at the relay.

    Args:
        url (str): The absolute manifest URL.
        settings (Settings): The application settings.

    Returns:
        Response: The rewritten manifest, or an error response.
    """
    logger.info(f"Proxying stream from: {url}")
    async with create_httpx_client(settings.transport_config) as client:
        try:
            response = await fetch_resource(client, url, build_upstream_headers(settings.user_agent))
            processor = M3U8Processor(settings.route_prefix)
            content = processor.process_m3u8(response.text, str(response.url))
        except Exception as e:
            return handle_exceptions(e, "Error fetching M3U8", "Failed to fetch the stream")

    return Response(content=content, media_type=MANIFEST_CONTENT_TYPE)


async def handle_segment_proxy(url: str, settings: Settings) -> Response:
    """
    Stream a media segment from upstream without buffering it.

    Args:
        url (str): The absolute segment URL.
        settings (Settings): The application settings.

    Returns:
        Response: A streaming response with the segment content, or an error response.
    """
    logger.info(f"Fetching segment: {url}")
    _, streamer = setup_client_and_streamer(settings)

    try:
        await streamer.create_streaming_response(url, build_upstream_headers(settings.user_agent))
    except Exception as e:
        await streamer.close()
        return handle_exceptions(e, "Error fetching segment", "Failed to fetch segment")

    return EnhancedStreamingResponse(
        streamer.stream_content(),
        media_type=get_segment_content_type(url),
        background=BackgroundTask(streamer.close),
    )


async def handle_key_proxy(url: str, settings: Settings) -> Response:
    """
    Fetch an encryption key.

    Args:
        url (str): The absolute key URL.
        settings (Settings): The application settings.

    Returns:
        Response: The key bytes, or an error response.
    """
    logger.info(f"Fetching encryption key: {url}")
    async with create_httpx_client(settings.transport_config) as client:
        try:
            response = await fetch_resource(client, url, build_upstream_headers(settings.user_agent))
        except Exception as e:
            return handle_exceptions(e, "Error fetching key", "Failed to fetch encryption key")

    return Response(content=response.content, media_type=KEY_CONTENT_TYPE)


async def handle_api_proxy(request: Request, url: str, settings: Settings) -> Response:
    """
    Forward an arbitrary API request and relay the upstream answer.

    The inbound method, headers and body are forwarded; the user agent is replaced by
    the fixed relay identity. The upstream body is returned as JSON, text or bytes
    depending on its content type.

    Args:
        request (Request): The incoming HTTP request.
        url (str): The target URL.
        settings (Settings): The application settings.

    Returns:
        Response: The relayed upstream response, or a JSON error response.
    """
    logger.info(f"Proxying API request to: {url}")
    logger.info(f"Method: {request.method}")

    headers = {k: v for k, v in request.headers.items() if k not in EXCLUDED_FORWARD_REQUEST_HEADERS}
    headers["user-agent"] = settings.user_agent
    body = None if request.method in ("GET", "HEAD") else await request.body()

    try:
        # Redirects are relayed to the caller, not followed.
        async with create_httpx_client(settings.transport_config, follow_redirects=False) as client:
            upstream = await client.request(request.method, url, headers=headers, content=body)

        content_type = upstream.headers.get("content-type", "")
        if "application/json" in content_type:
            response = JSONResponse(content=upstream.json(), status_code=upstream.status_code)
            media_type = "application/json"
        elif "text/" in content_type:
            # Re-encoded as UTF-8 whatever the upstream charset was.
            media_type = f"{content_type.split(';')[0].strip()}; charset=utf-8"
            response = Response(content=upstream.text, status_code=upstream.status_code, media_type=media_type)
        else:
            media_type = content_type
            response = Response(content=upstream.content, status_code=upstream.status_code)
    except Exception as e:
        logger.error(f"API proxy error: {e}")
        return JSONResponse({"error": f"Failed to proxy API request: {e}"}, status_code=500)

    for key, value in upstream.headers.multi_items():
        if key in EXCLUDED_FORWARD_RESPONSE_HEADERS or key == "content-type":
            continue
        response.headers.append(key, value)
    if media_type:
        response.headers["content-type"] = media_type

    return response
