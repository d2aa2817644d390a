"""Shared dataclasses and type definitions for the feed."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class WebPage:
    """Metadata scraped from a submitted page. Every field is best effort."""

    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None


@dataclass
class Author:
    name: str
    uri: Optional[str] = None
    email: Optional[str] = None


@dataclass
class Link:
    href: str
    rel: str = "alternate"
    type: Optional[str] = None
    title: Optional[str] = None


@dataclass
class Summary:
    """Entry summary body and its Atom text construct type (``text`` or ``html``)."""

    value: str
    kind: str = "text"


@dataclass
class Entry:
    """A single saved link."""

    id: str
    title: str
    updated: datetime
    links: List[Link] = field(default_factory=list)
    summary: Optional[Summary] = None
    authors: List[Author] = field(default_factory=list)

    @property
    def href(self) -> Optional[str]:
        """Return the URL this entry points at, preferring the alternate link."""

        for link in self.links:
            if link.rel == "alternate":
                return link.href
        return self.links[0].href if self.links else None


@dataclass
class Generator:
    value: str
    uri: Optional[str] = None
    version: Optional[str] = None


__all__ = ["Author", "Entry", "Generator", "Link", "Summary", "WebPage"]
