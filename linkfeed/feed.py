"""The Atom document that holds saved links, persisted to a single file."""

from __future__ import annotations

import enum
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

import feedparser
from dateutil import parser as date_parser
from feedgen.entry import FeedEntry
from feedgen.ext.base import BaseEntryExtension
from feedgen.feed import FeedGenerator

from .config import HOMEPAGE, NAME, TAG_AUTHORITY, VERSION
from .ids import base62
from .models import Author, Entry, Generator, Link, Summary, WebPage
from .webpage import summarize

LOGGER = logging.getLogger(__name__)

MIN_ENTRIES = 50
TRIM_AGE = timedelta(days=30)
ID_LENGTH = 16
DEFAULT_TITLE = "Untitled"

# Characters that XML 1.0 cannot carry, even escaped.
_XML_INVALID = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")

# feedparser reports content types as MIME types.
_SUMMARY_KINDS = {"text/html": "html", "application/xhtml+xml": "html"}


class FeedError(Exception):
    """Base class for feed store failures."""


class FeedFormatError(FeedError):
    """The feed file is not a usable Atom document."""


class FeedIOError(FeedError):
    """The feed file could not be read or written."""


class AddResult(enum.Enum):
    ADDED = "Added"
    DUPLICATE = "Duplicate"


class SummaryTypeExtension(BaseEntryExtension):
    """Marks an entry's ``<summary>`` as ``text`` or ``html``."""

    def __init__(self) -> None:
        self.kind = "text"

    def extend_atom(self, entry):
        for child in entry:
            if isinstance(child.tag, str) and child.tag.rsplit("}", 1)[-1] == "summary":
                child.set("type", self.kind)
        return entry


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tag_uri(now: Optional[datetime] = None) -> str:
    """Mint a ``tag:`` URI (RFC 4151) with a random specific part."""

    now = now or utcnow()
    return f"tag:{TAG_AUTHORITY},{now.year}:{base62(ID_LENGTH)}"


def default_generator() -> Generator:
    return Generator(value=NAME, uri=HOMEPAGE, version=VERSION)


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value or not value.strip():
        raise FeedFormatError("missing timestamp")
    try:
        parsed = date_parser.parse(value.strip())
    except (ValueError, OverflowError) as exc:
        raise FeedFormatError(f"invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Feed:
    """An Atom feed bound to the file it was read from or will be saved to.

    Entries are kept oldest first. The object is not thread safe; callers
    serialize access to it (see ``linkfeed.rwlock``).
    """

    def __init__(
        self,
        path: Union[str, Path],
        id: str,
        title: str,
        updated: datetime,
        authors: Optional[List[Author]] = None,
        entries: Optional[List[Entry]] = None,
        generator: Optional[Generator] = None,
        links: Optional[List[Link]] = None,
    ) -> None:
        self.path = Path(path)
        self.id = id
        self.title = title
        self.updated = updated
        self.authors = authors or []
        self.entries = entries or []
        self.generator = generator
        self.links = links or []

    @classmethod
    def generate_new(cls, path: Union[str, Path]) -> "Feed":
        """Build an empty feed for ``path``. Nothing is written until ``save``."""

        now = utcnow()
        return cls(
            path,
            id=tag_uri(now),
            title=NAME,
            updated=now,
            authors=[Author(name=NAME, uri=HOMEPAGE)],
            generator=default_generator(),
        )

    @classmethod
    def read(cls, path: Union[str, Path]) -> "Feed":
        """Parse the Atom document at ``path``.

        Raises:
            FeedIOError: the file is missing or unreadable.
            FeedFormatError: the file is not a well-formed Atom feed.
        """

        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise FeedIOError(f"I/O error: {exc}") from exc

        parsed = feedparser.parse(data, resolve_relative_uris=False, sanitize_html=False)
        if parsed.bozo:
            raise FeedFormatError(f"feed error: {parsed.bozo_exception}")
        if parsed.version != "atom10":
            raise FeedFormatError(f"feed error: not an Atom 1.0 document ({parsed.version or 'unknown'})")

        header = parsed.feed
        generator = None
        if "generator_detail" in header:
            detail = header.generator_detail
            generator = Generator(
                value=detail.get("name", ""),
                uri=detail.get("href"),
                version=detail.get("version"),
            )

        updated = header.get("updated")
        return cls(
            path,
            id=header.get("id", ""),
            title=header.get("title", ""),
            updated=parse_timestamp(updated) if updated else utcnow(),
            authors=[_parse_author(author) for author in header.get("authors", [])],
            entries=[_parse_entry(entry) for entry in parsed.entries],
            generator=generator,
            links=[_parse_link(link) for link in header.get("links", [])],
        )

    def contains(self, url: str) -> bool:
        return any(link.href == url for entry in self.entries for link in entry.links)

    def add_if_new(self, url: str, page: WebPage, now: Optional[datetime] = None) -> AddResult:
        """Append an entry for ``url`` unless one already links to it.

        URLs are compared as plain strings.
        """

        if self.contains(url):
            LOGGER.debug("Skipping duplicate link: %s", url)
            return AddResult.DUPLICATE

        now = now or utcnow()
        entry = Entry(
            id=tag_uri(now),
            title=page.title or DEFAULT_TITLE,
            updated=now,
            links=[Link(href=url, rel="alternate")],
            summary=summarize(url, page.description),
            authors=[Author(name=page.author)] if page.author else [],
        )
        self.entries.append(entry)
        self.updated = now
        self.generator = default_generator()
        LOGGER.info("Added %s to feed (%d entries)", url, len(self.entries))
        return AddResult.ADDED

    def trim(
        self,
        min_entries: int = MIN_ENTRIES,
        trim_age: timedelta = TRIM_AGE,
        now: Optional[datetime] = None,
    ) -> int:
        """Drop entries older than ``trim_age``, oldest first, keeping at least ``min_entries``.

        Returns the number of entries removed.
        """

        self.entries.sort(key=lambda entry: entry.updated)
        now = now or utcnow()

        expired = 0
        for entry in self.entries[: max(len(self.entries) - min_entries, 0)]:
            if now - entry.updated <= trim_age:
                break
            expired += 1

        if expired:
            del self.entries[:expired]
            self.updated = now
            LOGGER.info("Trimmed %d expired entries from feed", expired)
        return expired

    def save(self) -> None:
        """Write the feed to a sibling temp file, then rename it over ``path``.

        Readers see either the old or the new document, never a partial one.
        A temp file left behind by a failed save is overwritten next time.
        """

        document = self.to_bytes()
        tmp_path = self.path.with_suffix(".tmp")
        try:
            with tmp_path.open("wb") as handle:
                handle.write(document)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise FeedIOError(f"I/O error: {exc}") from exc
        LOGGER.debug("Saved feed with %d entries to %s", len(self.entries), self.path)

    def to_bytes(self) -> bytes:
        """Serialize the feed as a UTF-8 Atom document.

        Raises:
            FeedFormatError: a field holds a value Atom cannot express.
        """

        try:
            return self._generator().atom_str(pretty=True)
        except ValueError as exc:
            raise FeedFormatError(f"feed error: {exc}") from exc

    def _generator(self) -> FeedGenerator:
        fg = FeedGenerator()
        fg.id(_clean(self.id) or tag_uri())
        fg.title(_clean(self.title) or DEFAULT_TITLE)
        fg.updated(_utc_seconds(self.updated))
        for author in self.authors:
            fg.author(_author_fields(author))
        for link in self.links:
            fg.link(_link_fields(link))
        generator = self.generator or default_generator()
        fg.generator(_clean(generator.value), version=generator.version, uri=generator.uri)
        fg.entry([_feed_entry(entry) for entry in self.entries], replace=True)
        return fg


def _clean(text: Optional[str]) -> str:
    return _XML_INVALID.sub("", text or "")


def _utc_seconds(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def _parse_author(detail) -> Author:
    return Author(name=detail.get("name", ""), uri=detail.get("href"), email=detail.get("email"))


def _author_fields(author: Author) -> dict:
    fields = {"name": _clean(author.name)}
    if author.uri:
        fields["uri"] = _clean(author.uri)
    if author.email:
        fields["email"] = _clean(author.email)
    return fields


def _parse_link(detail) -> Link:
    return Link(
        href=detail.get("href", ""),
        rel=detail.get("rel", "alternate"),
        type=detail.get("type"),
        title=detail.get("title"),
    )


def _link_fields(link: Link) -> dict:
    fields = {"href": _clean(link.href), "rel": link.rel}
    if link.type:
        fields["type"] = link.type
    if link.title:
        fields["title"] = _clean(link.title)
    return fields


def _parse_entry(detail) -> Entry:
    entry_id = (detail.get("id") or "").strip()
    if not entry_id:
        raise FeedFormatError("feed error: entry without id")

    summary = None
    if "summary_detail" in detail:
        summary = Summary(
            value=detail.summary_detail.get("value", ""),
            kind=_SUMMARY_KINDS.get(detail.summary_detail.get("type"), "text"),
        )

    return Entry(
        id=entry_id,
        title=detail.get("title", ""),
        updated=parse_timestamp(detail.get("updated")),
        links=[_parse_link(link) for link in detail.get("links", [])],
        summary=summary,
        authors=[_parse_author(author) for author in detail.get("authors", [])],
    )


def _feed_entry(entry: Entry) -> FeedEntry:
    fe = FeedEntry()
    fe.id(_clean(entry.id))
    fe.title(_clean(entry.title) or DEFAULT_TITLE)
    fe.updated(_utc_seconds(entry.updated))
    for author in entry.authors:
        if author.name:
            fe.author(_author_fields(author))
    for link in entry.links:
        fe.link(_link_fields(link))
    if entry.summary is not None and entry.summary.value:
        fe.register_extension("summary_type", SummaryTypeExtension, atom=True, rss=False)
        fe.summary_type.kind = entry.summary.kind
        fe.summary(_clean(entry.summary.value))
    return fe


__all__ = [
    "AddResult",
    "Feed",
    "FeedError",
    "FeedFormatError",
    "FeedIOError",
    "parse_timestamp",
]
