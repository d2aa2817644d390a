"""Shared test fixtures for linkfeed tests."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import pytest

from linkfeed.config import Config
from linkfeed.feed import Feed
from linkfeed.models import Entry, Link, WebPage
from linkfeed.server import create_app


PRIVATE_TOKEN = "TestTestTestTestTestTestTest1234"
FEED_TOKEN = "FeedFeedFeedFeedFeedFeedFeedFeed"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

SAMPLE_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>  Page Title  </title>
  <meta name="description" content="Short">
  <meta property="og:description" content="A much longer description">
  <meta property="og:title" content="OG Title">
  <meta property="og:title" content="Longer OG Title">
  <meta name="author" content="Jane Doe">
</head>
<body><p>Hello</p></body>
</html>"""


class FakeFetcher:
    """Stands in for linkfeed.webpage.fetch and records the URLs it saw."""

    def __init__(self, page=None, error=None):
        self.page = page
        self.error = error
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        # A copy, since the server adjusts the title in place.
        return replace(self.page) if self.page else WebPage()


def make_entry(url, age, now=None, entry_id=None):
    now = now or datetime.now(timezone.utc)
    return Entry(
        id=entry_id or f"tag:example.com,2024:{abs(hash(url))}",
        title=url,
        updated=now - age,
        links=[Link(href=url)],
    )


def form_body(**fields):
    return urlencode(fields).encode("utf-8")


@pytest.fixture
def feed_path(tmp_path):
    """Provide a path holding a freshly generated, saved feed."""
    path = tmp_path / "feed.xml"
    Feed.generate_new(path).save()
    return path


@pytest.fixture
def old_feed_path(tmp_path):
    """A saved feed with 53 entries, the four oldest well past the trim age."""
    path = tmp_path / "feed.xml"
    feed = Feed.generate_new(path)
    now = datetime.now(timezone.utc)
    for index in range(53):
        feed.entries.append(
            make_entry(
                f"https://example.com/{index}",
                timedelta(days=60 - index) if index < 4 else timedelta(days=1, minutes=index),
                now=now,
                entry_id=f"tag:example.com,2024:entry{index}",
            )
        )
    feed.save()
    return path


@pytest.fixture
def config():
    return Config(private_token=PRIVATE_TOKEN, feed_token=FEED_TOKEN, addr="127.0.0.1", port=8003)


@pytest.fixture
def fetcher():
    return FakeFetcher(WebPage(title="Example Page", description="An example page"))


@pytest.fixture
def app(config, feed_path, fetcher):
    app = create_app(config, feed_path, fetcher=fetcher)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
