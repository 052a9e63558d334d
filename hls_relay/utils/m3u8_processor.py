import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Union
from urllib import parse

from hls_relay.const import KEY_DIRECTIVE, KEY_ROUTE, MANIFEST_EXTENSION, SEGMENT_ROUTE, STREAM_ROUTE

logger = logging.getLogger(__name__)

KEY_URI_PATTERN = re.compile(r'URI="([^"]+)"')

# Same unreserved set as JavaScript's encodeURIComponent.
_URL_SAFE_CHARS = "!~*'()"


def get_base_url(url: str) -> str:
    """
    Returns the URL truncated after its last path separator.

    Args:
        url (str): The URL the manifest was fetched from.

    Returns:
        str: The base URL used to resolve relative references.
    """
    return url[: url.rfind("/") + 1]


def is_absolute_url(reference: str) -> bool:
    return reference.startswith("http")


def resolve_url(reference: str, base_url: str) -> str:
    """
    Resolves a possibly relative reference against the base URL.

    Args:
        reference (str): The reference found in the manifest.
        base_url (str): The base URL of the containing manifest.

    Returns:
        str: The absolute URL. Absolute references are returned unchanged.
    """
    if is_absolute_url(reference):
        return reference
    return parse.urljoin(base_url, reference)


def encode_relay_url(route: str, url: str, route_prefix: str = "") -> str:
    """
    Builds a relay-local path carrying the absolute URL as the ``url`` query value.

    Args:
        route (str): One of the relay routes (stream, segment or key).
        url (str): The absolute upstream URL.
        route_prefix (str, optional): Path the relay is mounted under. Defaults to "".

    Returns:
        str: The relay path, e.g. ``/segment?url=https%3A%2F%2F...``.
    """
    return f"{route_prefix.rstrip('/')}{route}?url={parse.quote(url, safe=_URL_SAFE_CHARS)}"


@dataclass(frozen=True)
class KeyLine:
    line: str
    key_url: str
    original_uri: str

    def render(self, route_prefix: str = "") -> str:
        relay_uri = encode_relay_url(KEY_ROUTE, self.key_url, route_prefix)
        return KEY_URI_PATTERN.sub(lambda _: f'URI="{relay_uri}"', self.line, count=1)


@dataclass(frozen=True)
class NestedManifestLine:
    line: str
    playlist_url: str

    def render(self, route_prefix: str = "") -> str:
        return encode_relay_url(STREAM_ROUTE, self.playlist_url, route_prefix)


@dataclass(frozen=True)
class SegmentLine:
    line: str
    segment_url: str

    def render(self, route_prefix: str = "") -> str:
        return encode_relay_url(SEGMENT_ROUTE, self.segment_url, route_prefix)


@dataclass(frozen=True)
class PassThroughLine:
    line: str

    def render(self, route_prefix: str = "") -> str:
        return self.line


ClassifiedLine = Union[KeyLine, NestedManifestLine, SegmentLine, PassThroughLine]


def classify_line(line: str, base_url: str) -> ClassifiedLine:
    """
    Classifies a single manifest line.

    The key directive is tested first, then the nested playlist suffix, then any
    other non-directive content is treated as a segment. Everything else passes through.

    Args:
        line (str): The raw manifest line.
        base_url (str): The base URL of the containing manifest.

    Returns:
        ClassifiedLine: The classified, whitespace-trimmed line. A reference that cannot
        be resolved leaves its line unchanged.
    """
    # A byte order mark survives decoding on the first line.
    line = line.strip().lstrip("\ufeff").strip()

    try:
        if line.startswith(KEY_DIRECTIVE):
            uri_match = KEY_URI_PATTERN.search(line)
            if uri_match:
                original_uri = uri_match.group(1)
                return KeyLine(line, resolve_url(original_uri, base_url), original_uri)
            return PassThroughLine(line)

        if line.startswith("#") or not line:
            return PassThroughLine(line)

        if line.endswith(MANIFEST_EXTENSION):
            return NestedManifestLine(line, resolve_url(line, base_url))

        return SegmentLine(line, resolve_url(line, base_url))
    except ValueError as e:
        logger.warning(f"Leaving unresolvable manifest line unchanged: {line!r} ({e})")
        return PassThroughLine(line)


class M3U8Processor:
    def __init__(self, route_prefix: str = ""):
        """
        Initializes the M3U8Processor.

        Args:
            route_prefix (str, optional): Path the relay is mounted under. Defaults to "".
        """
        self.route_prefix = route_prefix

    def process_m3u8(self, content: str, playlist_url: str) -> str:
        """
        Processes the m3u8 content, routing keys, nested playlists and segments through the relay.

        Args:
            content (str): The m3u8 content to process.
            playlist_url (str): The URL the content was fetched from.

        Returns:
            str: The processed m3u8 content.
        """
        base_url = get_base_url(playlist_url)
        classified_lines = [classify_line(line, base_url) for line in content.split("\n")]

        if logger.isEnabledFor(logging.DEBUG):
            counts = Counter(type(classified).__name__ for classified in classified_lines)
            logger.debug(
                f"Rewrote {playlist_url}: {counts['KeyLine']} keys, "
                f"{counts['NestedManifestLine']} playlists, {counts['SegmentLine']} segments"
            )

        return "\n".join(classified.render(self.route_prefix) for classified in classified_lines)


def rewrite_manifest(content: str, playlist_url: str, route_prefix: str = "") -> str:
    """
    Rewrites every key, nested playlist and segment reference to point back at the relay.

    Lines are split and joined on ``\\n``; each output line corresponds to exactly
    one input line.

    Args:
        content (str): The manifest text.
        playlist_url (str): The absolute URL the manifest was fetched from.
        route_prefix (str, optional): Path the relay is mounted under. Defaults to "".

    Returns:
        str: The rewritten manifest text.
    """
    return M3U8Processor(route_prefix).process_m3u8(content, playlist_url)
