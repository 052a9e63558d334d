from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from hls_relay.access import enforce_access_policy
from hls_relay.configs import Settings, get_settings
from hls_relay.const import API_PROXY_ROUTE, KEY_ROUTE, SEGMENT_ROUTE, STREAM_ROUTE
from hls_relay.handlers import handle_api_proxy, handle_key_proxy, handle_segment_proxy, handle_stream_proxy

proxy_router = APIRouter()


@proxy_router.get(STREAM_ROUTE, name="hls_manifest_proxy", dependencies=[Depends(enforce_access_policy)])
async def hls_manifest_proxy(
    settings: Annotated[Settings, Depends(get_settings)],
    url: Optional[str] = Query(None, description="The absolute URL of the HLS manifest."),
):
    """
    Proxify an HLS manifest, routing its keys, nested playlists and segments through the relay.

    Args:
        settings (Settings): The application settings.
        url (str): The absolute URL of the HLS manifest.

    Returns:
        Response: The rewritten manifest.
    """
    if not url:
        return PlainTextResponse("M3U8 URL is required", status_code=400)
    return await handle_stream_proxy(url, settings)


@proxy_router.get(SEGMENT_ROUTE, name="hls_segment_proxy", dependencies=[Depends(enforce_access_policy)])
async def hls_segment_proxy(
    settings: Annotated[Settings, Depends(get_settings)],
    url: Optional[str] = Query(None, description="The absolute URL of the media segment."),
):
    """
    Stream a media segment through the relay.

    Args:
        settings (Settings): The application settings.
        url (str): The absolute URL of the media segment.

    Returns:
        Response: The streamed segment.
    """
    if not url:
        return PlainTextResponse("Segment URL is required", status_code=400)
    return await handle_segment_proxy(url, settings)


@proxy_router.get(KEY_ROUTE, name="hls_key_proxy", dependencies=[Depends(enforce_access_policy)])
async def hls_key_proxy(
    settings: Annotated[Settings, Depends(get_settings)],
    url: Optional[str] = Query(None, description="The absolute URL of the encryption key."),
):
    """
    Fetch an encryption key through the relay.

    Args:
        settings (Settings): The application settings.
        url (str): The absolute URL of the encryption key.

    Returns:
        Response: The key bytes.
    """
    if not url:
        return PlainTextResponse("Key URL is required", status_code=400)
    return await handle_key_proxy(url, settings)


@proxy_router.api_route(
    API_PROXY_ROUTE,
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    name="api_proxy",
)
async def api_proxy(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    url: Optional[str] = Query(None, description="The target API URL."),
):
    """Forward any request to the target API and relay its response."""
    if not url:
        return JSONResponse({"error": "Target URL is required as a query parameter"}, status_code=400)
    return await handle_api_proxy(request, url, settings)
