"""
Content identifier parsing.

Accepted shapes:
- https://www.youtube.com/watch?v=ID (also m., music. and any ``v=`` query on a youtube.com page)
- https://youtu.be/ID
- https://www.youtube.com/embed/ID and https://www.youtube-nocookie.com/embed/ID
- https://www.youtube.com/v/ID, /e/ID, /shorts/ID, /live/ID
- the bare 11 character ID
"""

import re
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from mediaflow_resolver.errors import InvalidIdentifier

VIDEO_ID_RE = re.compile(r"[A-Za-z0-9_-]{11}")

YOUTUBE_HOSTS = ("youtube.com", "youtube-nocookie.com")
SHORT_LINK_HOSTS = ("youtu.be",)
PATH_PREFIXES = ("embed", "v", "e", "shorts", "live")


def _host_matches(host: str, domains: tuple) -> bool:
    return any(host == domain or host.endswith("." + domain) for domain in domains)


def _valid(candidate: Optional[str]) -> Optional[str]:
    if candidate and VIDEO_ID_RE.fullmatch(candidate):
        return candidate
    return None


def parse_identifier(url: str) -> Optional[str]:
    """
    Extract the canonical 11 character identifier from a URL.

    Returns None for anything that does not carry a well-formed identifier. Never raises.
    """
    if not isinstance(url, str):
        return None
    url = url.strip()
    if not url:
        return None
    if VIDEO_ID_RE.fullmatch(url):
        return url

    if "://" not in url:
        url = "https://" + url
    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return None

    segments = [segment for segment in parts.path.split("/") if segment]

    if _host_matches(host, SHORT_LINK_HOSTS):
        return _valid(segments[0]) if segments else None

    if not _host_matches(host, YOUTUBE_HOSTS):
        return None

    query_ids = parse_qs(parts.query).get("v")
    if query_ids:
        return _valid(query_ids[0])

    if len(segments) >= 2 and segments[0] in PATH_PREFIXES:
        return _valid(segments[1])

    return None


def require_identifier(url: str) -> str:
    """Strict variant of :func:`parse_identifier` for callers that want an exception."""
    video_id = parse_identifier(url)
    if video_id is None:
        raise InvalidIdentifier(f"No valid video identifier in {url!r}")
    return video_id
