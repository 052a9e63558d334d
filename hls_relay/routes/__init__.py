from .pages import pages_router
from .proxy import proxy_router

__all__ = ["proxy_router", "pages_router"]
