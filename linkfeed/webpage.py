"""Fetch a submitted page and pull a title and description out of its head."""

from __future__ import annotations

import html
import logging
import re
import time
from typing import Optional, Union
from urllib.parse import parse_qs, urlsplit

import requests
from bs4 import BeautifulSoup, SoupStrainer
from bs4.builder import ParserRejectedMarkup

from .config import HOMEPAGE, NAME, VERSION
from .models import Summary, WebPage

LOGGER = logging.getLogger(__name__)

FETCH_TIMEOUT = 30
MAX_REDIRECTS = 10
MAX_PAGE_BYTES = 1024 * 1024
CHUNK_SIZE = 8 * 1024
USER_AGENT = f"{NAME}/{VERSION}; (+{HOMEPAGE})"

YOUTUBE_HOSTS = frozenset({"www.youtube.com", "youtu.be", "m.youtube.com", "youtube-nocookie.com"})
YOUTUBE_EMBED = (
    '<iframe width="560" height="315" src="https://www.youtube-nocookie.com/embed/{video_id}" '
    'title="YouTube video player" frameborder="0" allow="accelerometer; autoplay; '
    'clipboard-write; encrypted-media; gyroscope; picture-in-picture; web-share" '
    'referrerpolicy="strict-origin-when-cross-origin" allowfullscreen></iframe>'
)

_HEAD_END = re.compile(rb"</head\s*>", re.IGNORECASE)
_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class FetchError(Exception):
    """Base class for failures while fetching page metadata."""


class HttpError(FetchError):
    """Transport level failure: connection, TLS, redirects or timeout."""


class ReadError(FetchError):
    """The response body could not be read."""


class MarkupError(FetchError):
    """The HTML parser gave up on the document."""


class UnsuccessfulError(FetchError):
    """The server answered with something other than 200 OK."""

    def __init__(self, status_code: int, reason: str) -> None:
        super().__init__(f"HTTP request was unsuccessful: {reason} ({status_code})")
        self.status_code = status_code
        self.reason = reason


def new_session() -> requests.Session:
    session = requests.Session()
    session.max_redirects = MAX_REDIRECTS
    session.headers["User-Agent"] = USER_AGENT
    return session


def fetch(url: str, session: Optional[requests.Session] = None) -> WebPage:
    """Fetch ``url`` and extract its metadata.

    Only the document head is read: the body is streamed until ``</head>``
    shows up or ``MAX_PAGE_BYTES`` have arrived, and the whole exchange is
    bounded by ``FETCH_TIMEOUT`` seconds.

    Raises:
        FetchError: one of its subclasses describing what went wrong.
    """

    if session is None:
        with new_session() as session:
            return fetch(url, session)

    deadline = time.monotonic() + FETCH_TIMEOUT
    try:
        response = session.get(url, timeout=FETCH_TIMEOUT, stream=True)
    except requests.RequestException as exc:
        raise HttpError(f"HTTP error: {exc}") from exc

    with response:
        if response.status_code != 200:
            raise UnsuccessfulError(response.status_code, response.reason or "")
        markup = _read_head(response, deadline)
        content_type = response.headers.get("Content-Type", "")
        encoding = response.encoding if "charset" in content_type.lower() else None

    LOGGER.debug("Read %d bytes of markup from %s", len(markup), url)
    return extract_metadata(markup, encoding=encoding)


def _read_head(response: requests.Response, deadline: float) -> bytes:
    buffer = bytearray()
    try:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            start = max(0, len(buffer) - 16)
            buffer += chunk
            if _HEAD_END.search(buffer, start) or len(buffer) >= MAX_PAGE_BYTES:
                break
            if time.monotonic() > deadline:
                raise ReadError(f"timed out after {FETCH_TIMEOUT}s reading response body")
    except requests.RequestException as exc:
        raise ReadError(f"I/O error: {exc}") from exc
    return bytes(buffer[:MAX_PAGE_BYTES])


def extract_metadata(markup: Union[bytes, str], encoding: Optional[str] = None) -> WebPage:
    """Pull title, description and author from ``<meta>`` and ``<title>`` tags.

    Open Graph values win over ``<title>``; among repeated tags the longest
    value is kept.
    """

    options = {"parse_only": SoupStrainer(["meta", "title"])}
    if encoding and isinstance(markup, bytes):
        options["from_encoding"] = encoding
    try:
        soup = BeautifulSoup(markup, "html.parser", **options)
    except ParserRejectedMarkup as exc:
        raise MarkupError(f"unable to parse HTML: {exc}") from exc

    page = WebPage()
    title_text = []
    for tag in soup.find_all(["meta", "title"]):
        if tag.name == "title":
            title_text.append(tag.get_text())
            continue

        content = tag.get("content")
        if content is None:
            continue
        content = content.strip()

        prop = tag.get("property")
        if prop is not None:
            prop = prop.strip().lower()
            if prop == "og:title":
                page.title = set_if_longer(page.title, content)
            elif prop == "og:description":
                page.description = set_if_longer(page.description, content)
            continue

        name = (tag.get("name") or "").strip().lower()
        if name == "description":
            page.description = set_if_longer(page.description, content)
        elif name == "author":
            page.author = set_if_longer(page.author, content)

    if page.title is None:
        page.title = set_if_longer(None, "".join(title_text).strip())

    return page


def set_if_longer(current: Optional[str], candidate: Optional[str]) -> Optional[str]:
    """Return ``candidate`` if it is longer than ``current``, else ``current``.

    Blank candidates never replace anything.
    """

    if not candidate:
        return current
    if current is None or len(candidate) > len(current):
        return candidate
    return current


def youtube_video_id(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return None
    if host not in YOUTUBE_HOSTS:
        return None

    video_id = None
    query = parse_qs(parts.query)
    segments = [segment for segment in parts.path.split("/") if segment]
    if query.get("v"):
        video_id = query["v"][0]
    elif len(segments) >= 2 and segments[0] == "v":
        video_id = segments[1]
    elif host == "youtu.be" and len(segments) == 1:
        video_id = segments[0]

    if video_id and _VIDEO_ID.match(video_id):
        return video_id
    return None


def summarize(url: str, description: Optional[str]) -> Summary:
    """Build the entry summary for ``url``.

    YouTube links get an embedded player with the description underneath,
    anything else gets the description as plain text or a bare link.
    """

    video_id = youtube_video_id(url)
    if video_id:
        parts = [YOUTUBE_EMBED.format(video_id=video_id)]
        if description:
            parts.append(f"<div>{html.escape(description)}</div>")
        return Summary("\n".join(parts), "html")

    if description:
        return Summary(description, "text")

    escaped = html.escape(url, quote=True)
    return Summary(f'<a href="{escaped}">{escaped}</a>', "html")


__all__ = [
    "FetchError",
    "HttpError",
    "MarkupError",
    "ReadError",
    "UnsuccessfulError",
    "extract_metadata",
    "fetch",
    "set_if_longer",
    "summarize",
    "youtube_video_id",
]
