import logging
from typing import Callable, Iterable
from urllib.parse import urlparse

from fastapi import Request

logger = logging.getLogger(__name__)

AccessPolicy = Callable[[Request], bool]

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class AccessDeniedError(Exception):
    def __init__(self, message: str = "Access denied. This service is not available for your domain"):
        self.message = message
        super().__init__(message)


def allow_all(request: Request) -> bool:
    return True


def _hostname(value: str) -> str:
    """Hostname of an Origin or Referer header value, lower-cased."""
    return (urlparse(value).hostname or "").lower()


class DomainAllowList:
    """
    Allows callers whose Origin or Referer belongs to one of the configured domains.

    A domain matches itself and any of its subdomains. Local callers are always allowed,
    and callers sending neither header are allowed when ``allow_direct`` is set.
    """

    def __init__(self, domains: Iterable[str], allow_direct: bool = True):
        self.domains = tuple(domain.lower().strip(".") for domain in domains if domain)
        self.allow_direct = allow_direct

    def matches(self, hostname: str) -> bool:
        if hostname in LOCAL_HOSTS:
            return True
        return any(hostname == domain or hostname.endswith(f".{domain}") for domain in self.domains)

    def __call__(self, request: Request) -> bool:
        origin = request.headers.get("origin", "")
        referer = request.headers.get("referer", "")

        if not origin and not referer:
            return self.allow_direct

        return any(self.matches(_hostname(value)) for value in (origin, referer) if value)


def build_access_policy(allowed_domains: Iterable[str], allow_direct_access: bool = True) -> AccessPolicy:
    """
    Build the caller access policy.

    Args:
        allowed_domains (Iterable[str]): Domains allowed to use the relay. Empty allows everyone.
        allow_direct_access (bool): Whether callers without Origin and Referer are allowed.

    Returns:
        AccessPolicy: The policy to install on the application.
    """
    domains = [domain for domain in allowed_domains if domain]
    if not domains:
        return allow_all
    return DomainAllowList(domains, allow_direct=allow_direct_access)


async def enforce_access_policy(request: Request):
    """
    Dependency rejecting callers refused by the application's access policy.

    Raises:
        AccessDeniedError: If the policy refuses the request.
    """
    policy: AccessPolicy = request.app.state.access_policy
    if not policy(request):
        logger.warning(
            f"Access denied for origin={request.headers.get('origin', '')!r} "
            f"referer={request.headers.get('referer', '')!r} path={request.url.path}"
        )
        raise AccessDeniedError()
