"""Tests for the command-line entry point."""

import pytest

from linkfeed import __main__ as cli
from linkfeed.feed import Feed
from linkfeed.ids import BASE62_ALPHABET
from linkfeed.models import WebPage
from linkfeed.webpage import HttpError

from conftest import FEED_TOKEN, PRIVATE_TOKEN


@pytest.fixture
def environ(monkeypatch):
    monkeypatch.setenv("LINKFEED_PRIVATE_TOKEN", PRIVATE_TOKEN)
    monkeypatch.setenv("LINKFEED_FEED_TOKEN", FEED_TOKEN)
    monkeypatch.setenv("LINKFEED_ADDRESS", "127.0.0.1")
    monkeypatch.delenv("LINKFEED_PORT", raising=False)
    monkeypatch.delenv("LINKFEED_LOG", raising=False)


class StubServer:
    port = 8001

    def __init__(self):
        self.served = False


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip() == "linkfeed version 0.3.0"


def test_command_is_required(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 2


def test_gen_token(capsys):
    assert cli.main(["gen-token"]) == 0
    token = capsys.readouterr().out.strip()
    assert len(token) == 32
    assert set(token) <= set(BASE62_ALPHABET)


def test_serve_without_tokens(monkeypatch, tmp_path, capsys):
    monkeypatch.delenv("LINKFEED_PRIVATE_TOKEN", raising=False)
    monkeypatch.delenv("LINKFEED_FEED_TOKEN", raising=False)

    assert cli.main(["serve", str(tmp_path / "feed.xml")]) == 1
    err = capsys.readouterr().err
    assert "LINKFEED_PRIVATE_TOKEN environment variable is not set" in err
    assert "gen-token" in err
    # Configuration is checked before anything is written.
    assert not (tmp_path / "feed.xml").exists()


def test_serve_creates_feed(environ, monkeypatch, tmp_path):
    server = StubServer()

    def fake_serve(srv):
        srv.served = True

    monkeypatch.setattr(cli, "make_server", lambda config, app: server)
    monkeypatch.setattr(cli, "serve", fake_serve)

    path = tmp_path / "feed.xml"
    assert cli.main(["serve", str(path)]) == 0
    assert server.served
    assert Feed.read(path).entries == []


def test_serve_with_unreadable_feed(environ, tmp_path, capsys):
    path = tmp_path / "feed.xml"
    path.write_text("not xml", encoding="utf-8")

    assert cli.main(["serve", str(path)]) == 1
    assert "Unable to read feed" in capsys.readouterr().err


def test_serve_when_port_unavailable(environ, monkeypatch, tmp_path, capsys):
    def refuse(config, app):
        raise OSError("Address already in use")

    monkeypatch.setattr(cli, "make_server", refuse)

    assert cli.main(["serve", str(tmp_path / "feed.xml")]) == 1
    assert "Unable to start http server on 127.0.0.1:8001" in capsys.readouterr().err


def test_fetch_command(monkeypatch, capsys):
    monkeypatch.setattr(cli, "fetch", lambda url: WebPage(title="Title", description="Desc"))

    assert cli.main(["fetch", "https://example.com/"]) == 0
    out = capsys.readouterr().out
    assert "title: 'Title'" in out
    assert "description: 'Desc'" in out
    assert "author: None" in out


def test_fetch_command_failure(monkeypatch, capsys):
    def fail(url):
        raise HttpError("HTTP error: connection refused")

    monkeypatch.setattr(cli, "fetch", fail)

    assert cli.main(["fetch", "https://example.com/"]) == 1
    assert "unable to fetch page: HTTP error: connection refused" in capsys.readouterr().out
