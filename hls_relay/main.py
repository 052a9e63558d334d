import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.cors import CORSMiddleware

from hls_relay.access import AccessDeniedError, build_access_policy
from hls_relay.configs import Settings
from hls_relay.routes import pages_router, proxy_router

logger = logging.getLogger(__name__)


async def access_denied_handler(request: Request, exc: AccessDeniedError):
    return PlainTextResponse(exc.message, status_code=403)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings (Settings, optional): The configuration to run with. Read from the environment when omitted.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    app = FastAPI(title="HLS Relay")
    app.state.settings = settings
    app.state.access_policy = build_access_policy(settings.allowed_domains, settings.allow_direct_access)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AccessDeniedError, access_denied_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    app.include_router(proxy_router, tags=["proxy"])
    app.include_router(pages_router, tags=["pages"])
    return app


def run():
    import uvicorn

    settings = Settings()
    app = create_app(settings)
    logger.info(f"Proxy server running on http://localhost:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
