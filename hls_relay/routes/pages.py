from importlib import resources
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from starlette.templating import Jinja2Templates

from hls_relay.access import enforce_access_policy
from hls_relay.configs import Settings, get_settings
from hls_relay.const import API_PROXY_ROUTE, EMBED_ROUTE, PLAYER_ROUTE, STREAM_ROUTE
from hls_relay.utils.http_utils import get_server_origin
from hls_relay.utils.m3u8_processor import encode_relay_url

pages_router = APIRouter()

templates = Jinja2Templates(directory=str(resources.files("hls_relay").joinpath("templates")))


def _player_context(request: Request, url: str, settings: Settings) -> dict:
    server_origin = get_server_origin(request)
    return {
        "server_origin": server_origin,
        "stream_url": url,
        "proxy_url": server_origin + encode_relay_url(STREAM_ROUTE, url, settings.route_prefix),
        "embed_url": server_origin + encode_relay_url(EMBED_ROUTE, url, settings.route_prefix),
    }


@pages_router.get("/", include_in_schema=False)
async def index(request: Request, settings: Annotated[Settings, Depends(get_settings)]):
    """Demo page with forms for the stream relay and the API proxy."""
    if settings.disable_home_page:
        raise HTTPException(status_code=404, detail="Not Found")

    prefix = settings.route_prefix.rstrip("/")
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "server_origin": get_server_origin(request),
            "stream_route": prefix + STREAM_ROUTE,
            "embed_route": prefix + EMBED_ROUTE,
            "player_route": prefix + PLAYER_ROUTE,
            "api_proxy_route": prefix + API_PROXY_ROUTE,
        },
    )


@pages_router.get(EMBED_ROUTE, include_in_schema=False, dependencies=[Depends(enforce_access_policy)])
async def embed(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    url: Optional[str] = Query(None, description="The absolute URL of the HLS manifest."),
):
    """Bare player page meant to be framed by other sites."""
    if not url:
        return PlainTextResponse("Stream URL is required as a query parameter", status_code=400)

    response = templates.TemplateResponse(request, "embed.html", _player_context(request, url, settings))
    if settings.allowed_domains:
        ancestors = " ".join(f"https://{domain}" for domain in settings.allowed_domains)
        response.headers["Content-Security-Policy"] = f"frame-ancestors 'self' {ancestors}"
    return response


@pages_router.get(PLAYER_ROUTE, include_in_schema=False, dependencies=[Depends(enforce_access_policy)])
async def player(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    url: Optional[str] = Query(None, description="The absolute URL of the HLS manifest."),
):
    """Full player page with embed code generation."""
    if not url:
        return PlainTextResponse("Stream URL is required as a query parameter", status_code=400)
    return templates.TemplateResponse(request, "player.html", _player_context(request, url, settings))
