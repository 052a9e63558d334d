import logging
import typing

import anyio
import h11
import httpx
from starlette.requests import Request
from starlette.responses import StreamingResponse
from starlette.types import Send
from tqdm.asyncio import tqdm as tqdm_asyncio

from hls_relay.configs import TransportConfig

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    def __init__(self, status_code, message):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


def create_httpx_client(
    transport_config: TransportConfig, follow_redirects: bool = True, **kwargs
) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient using the configured mounts and timeout.

    Args:
        transport_config (TransportConfig): Upstream transport configuration.
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        **kwargs: Additional AsyncClient keyword arguments.

    Returns:
        httpx.AsyncClient: Configured client.
    """
    kwargs.setdefault("timeout", transport_config.timeout)
    return httpx.AsyncClient(mounts=transport_config.get_mounts(), follow_redirects=follow_redirects, **kwargs)


def build_upstream_headers(user_agent: str) -> dict:
    """
    Headers for every relayed fetch. Nothing from the inbound request is carried over.
    """
    return {"User-Agent": user_agent, "Accept": "*/*"}


async def fetch_resource(client: httpx.AsyncClient, url: str, headers: dict) -> httpx.Response:
    """
    Fetch a URL and require a 200 response.

    Args:
        client (httpx.AsyncClient): HTTP client to use for the request.
        url (str): Target URL.
        headers (dict): Request headers.

    Returns:
        httpx.Response: HTTP response with the body loaded.

    Raises:
        DownloadError: If the upstream answers with anything other than 200.
    """
    response = await client.get(url, headers=headers)
    if response.status_code != 200:
        logger.error(f"HTTP error {response.status_code} while downloading {url}")
        raise DownloadError(response.status_code, f"HTTP error {response.status_code} while downloading {url}")
    return response


class Streamer:
    def __init__(self, client: httpx.AsyncClient, enable_progress: bool = False):
        """
        Initialize a Streamer with a configured HTTP client.

        Args:
            client (httpx.AsyncClient): The HTTP client to use for streaming.
            enable_progress (bool): Whether to render a console progress bar while streaming.
        """
        self.client = client
        self.enable_progress = enable_progress
        self.response = None
        self.progress_bar = None
        self.bytes_transferred = 0
        self.total_size = 0

    async def create_streaming_response(self, url: str, headers: dict):
        """
        Send a streaming GET request and require a 200 response.

        Args:
            url (str): Source URL for the streaming content.
            headers (dict): Request headers.

        Raises:
            DownloadError: If the upstream answers with anything other than 200.
        """
        request = self.client.build_request("GET", url, headers=headers)
        self.response = await self.client.send(request, stream=True)
        if self.response.status_code != 200:
            logger.error(f"HTTP error {self.response.status_code} while creating streaming response for {url}")
            raise DownloadError(
                self.response.status_code, f"HTTP error {self.response.status_code} while downloading {url}"
            )
        self.total_size = int(self.response.headers.get("Content-Length", 0))

    async def stream_content(self) -> typing.AsyncGenerator[bytes, None]:
        """
        Stream response content as an async byte generator.
        """
        if not self.response:
            raise RuntimeError("No response available for streaming")

        try:
            if self.enable_progress:
                with tqdm_asyncio(
                    total=self.total_size or None,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc="Streaming",
                    ncols=100,
                    mininterval=1,
                ) as self.progress_bar:
                    async for chunk in self.response.aiter_bytes():
                        yield chunk
                        self.bytes_transferred += len(chunk)
                        self.progress_bar.update(len(chunk))
            else:
                async for chunk in self.response.aiter_bytes():
                    yield chunk
                    self.bytes_transferred += len(chunk)
        except httpx.RemoteProtocolError as e:
            if self.bytes_transferred > 0:
                logger.warning(
                    f"Remote server closed connection after {self.bytes_transferred} bytes: {e}"
                )
                return
            raise DownloadError(502, f"Remote server closed connection without sending any data: {e}")
        except GeneratorExit:
            logger.info("Streaming session stopped by the client")

    async def close(self):
        """
        Close HTTP response and client resources.
        """
        if self.response:
            await self.response.aclose()
        if self.progress_bar:
            self.progress_bar.close()
        await self.client.aclose()


def get_original_scheme(request: Request) -> str:
    """
    Determine the original scheme (http or https) of the incoming request.

    Args:
        request (Request): Incoming HTTP request.

    Returns:
        str: 'http' or 'https'
    """
    forwarded_proto = request.headers.get("X-Forwarded-Proto")
    if forwarded_proto:
        return forwarded_proto.split(",")[0].strip()

    if (
        request.url.scheme == "https"
        or request.headers.get("X-Forwarded-Ssl") == "on"
        or request.headers.get("X-Url-Scheme") == "https"
    ):
        return "https"

    return "http"


def get_server_origin(request: Request) -> str:
    """
    The public origin (scheme and host) the caller used to reach the relay.
    """
    host = request.headers.get("X-Forwarded-Host") or request.headers.get("host") or request.url.netloc
    return f"{get_original_scheme(request)}://{host}"


class EnhancedStreamingResponse(StreamingResponse):
    """
    StreamingResponse that tolerates client disconnects and upstream protocol errors mid-stream.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.actual_content_length = 0

    async def stream_response(self, send: Send) -> None:
        await send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            }
        )

        try:
            async for chunk in self.body_iterator:
                if not isinstance(chunk, (bytes, memoryview)):
                    chunk = chunk.encode(self.charset)
                try:
                    await send({"type": "http.response.body", "body": chunk, "more_body": True})
                except (ConnectionResetError, anyio.BrokenResourceError):
                    logger.info("Client disconnected during streaming")
                    return
                self.actual_content_length += len(chunk)
        except (httpx.RemoteProtocolError, h11.LocalProtocolError, DownloadError) as e:
            if not self.actual_content_length:
                logger.error(f"Protocol error before any data was streamed: {e}")
                raise
            logger.warning(
                f"Upstream error after partial streaming ({self.actual_content_length} bytes transferred): {e}"
            )

        await send({"type": "http.response.body", "body": b"", "more_body": False})
