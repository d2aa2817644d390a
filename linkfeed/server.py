"""HTTP front door: accepts links to save and serves the resulting feed."""

from __future__ import annotations

import hmac
import html
import logging
import os
import re
import signal
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Union
from urllib.parse import urlsplit

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import InternalServerError, MethodNotAllowed, NotFound, RequestEntityTooLarge
from werkzeug.http import http_date, parse_options_header
from werkzeug.serving import BaseWSGIServer
from werkzeug.serving import make_server as make_wsgi_server
from werkzeug.wsgi import wrap_file

from . import webpage
from .config import NAME, VERSION, Config
from .feed import AddResult, Feed, FeedError
from .models import WebPage
from .rwlock import RWLock

LOGGER = logging.getLogger(__name__)

# The maximum size in bytes accepted in a POST body.
MAX_POST_BODY = 1024 * 1024

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
ATOM_CONTENT_TYPE = "application/atom+xml"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
CORS_HEADERS = MappingProxyType({"Access-Control-Allow-Origin": "*"})
UTF8_CHARSETS = frozenset({"utf-8", "utf8"})

ASSETS_DIR = Path(__file__).with_name("assets")
SHUTDOWN_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)

_URI_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")

Fetcher = Callable[[str], WebPage]


class NotModified(Response):
    """A 304 that keeps its ``Last-Modified`` header.

    Werkzeug strips entity headers from 304 responses, Last-Modified among
    them, so the value is put back after the WSGI headers are built.
    """

    def get_wsgi_headers(self, environ):
        headers = super().get_wsgi_headers(environ)
        if self.last_modified is not None:
            headers["Last-Modified"] = http_date(self.last_modified)
        return headers


class StatusError(Exception):
    """A request was rejected; ``message`` is safe to show to the client."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


@dataclass(frozen=True)
class Gateway:
    """State shared by every request, built once at startup."""

    config: Config
    feed_path: Path
    assets: Mapping[str, str]
    fetcher: Fetcher
    lock: RWLock = field(default_factory=RWLock, compare=False)


def load_assets(directory: Path = ASSETS_DIR) -> Mapping[str, str]:
    """Read the static pages into a name -> text table."""

    pages = {path.name: path.read_text(encoding="utf-8") for path in sorted(directory.glob("*.html"))}
    return MappingProxyType(pages)


bp = Blueprint("gateway", __name__)


def _gateway() -> Gateway:
    return current_app.extensions[NAME]


def _page(name: str, status: int = 200) -> Response:
    return Response(_gateway().assets[name], status=status, content_type=HTML_CONTENT_TYPE)


def _text(body: str, status: int) -> Response:
    return Response(body, status=status, content_type=TEXT_CONTENT_TYPE, headers=dict(CORS_HEADERS))


def _json(payload: dict, status: int = 200) -> Response:
    response = jsonify(payload)
    response.status_code = status
    response.headers.update(CORS_HEADERS)
    return response


def tokens_match(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def parse_url(value: Optional[str]) -> str:
    """Return ``value`` unchanged if it is an absolute URI, else raise a 400.

    The URL is the duplicate key, so surrounding whitespace is rejected
    rather than trimmed.
    """

    url = value or ""
    if not url or any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in url):
        raise StatusError(400, "Invalid URL")
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError for a malformed port
    except ValueError as exc:
        raise StatusError(400, "Invalid URL") from exc
    if not _URI_SCHEME.match(parts.scheme) or not (parts.netloc or parts.path):
        raise StatusError(400, "Invalid URL")
    return url


def _authorized_form(gateway: Gateway) -> MultiDict:
    content_type = request.headers.get("Content-Type")
    if content_type is None:
        raise StatusError(400, "Missing Content-Type")

    mimetype, options = parse_options_header(content_type)
    if mimetype.lower() != FORM_CONTENT_TYPE:
        raise StatusError(415, "Unsupported media type")
    charset = options.get("charset")
    if charset is not None and charset.lower() not in UTF8_CHARSETS:
        raise StatusError(415, "Unsupported character set")

    try:
        form = request.form
    except RequestEntityTooLarge as exc:
        LOGGER.error("POST body exceeded maximum size")
        raise StatusError(413, "POST body exceeded maximum size") from exc

    token = form.get("token")
    if token is None:
        raise StatusError(400, "Missing token")
    if not tokens_match(token, gateway.config.private_token):
        raise StatusError(401, "Invalid token")
    return form


def add_link(gateway: Gateway, url: str, title: Optional[str] = None) -> AddResult:
    """Fetch metadata for ``url`` and record it in the feed.

    The page fetch happens before the write lock is taken; only the
    read-modify-save of the feed file is serialized.
    """

    try:
        page = gateway.fetcher(url)
    except webpage.FetchError as exc:
        LOGGER.warning("Failed to fetch %s: %s", url, exc)
        page = WebPage()

    # Pages that answer bots with a challenge page have useless titles, so
    # a longer title supplied by the client wins.
    if title:
        page.title = webpage.set_if_longer(page.title, title.strip())

    with gateway.lock.write_locked():
        try:
            feed = Feed.read(gateway.feed_path)
        except FeedError as exc:
            LOGGER.error("Unable to read feed file: %s", exc)
            raise StatusError(500, "Unable to read feed file") from exc

        result = feed.add_if_new(url, page)
        trimmed = feed.trim()
        if result is AddResult.ADDED or trimmed:
            try:
                feed.save()
            except FeedError as exc:
                LOGGER.error("Unable to save feed: %s", exc)
                raise StatusError(500, "Error saving feed file") from exc
    return result


@bp.get("/")
def index() -> Response:
    gateway = _gateway()
    host = request.host or f"{gateway.config.addr}:{gateway.config.port}"
    feed_url = html.escape(f"http://{host}/feed/LINKFEED_FEED_TOKEN")
    body = gateway.assets["index.html"].replace("{{feed}}", feed_url)
    return Response(body, content_type=HTML_CONTENT_TYPE)


@bp.get("/feed/<token>")
def feed(token: str) -> Response:
    gateway = _gateway()
    # A wrong token looks exactly like any other unknown path.
    if not tokens_match(token, gateway.config.feed_token):
        raise NotFound()

    with gateway.lock.read_locked():
        try:
            handle = gateway.feed_path.open("rb")
        except OSError as exc:
            LOGGER.error("Unable to open feed file: %s", exc)
            return _page("500.html", 500)

        stat = os.fstat(handle.fileno())
        modified = int(stat.st_mtime)
        since = request.if_modified_since
        if since is not None and modified <= int(since.timestamp()):
            handle.close()
            response = NotModified(status=304)
            response.last_modified = modified
            return response

        # Saves replace the file by rename, so this handle keeps pointing at
        # a complete document after the lock is released.
        response = Response(
            wrap_file(request.environ, handle),
            content_type=ATOM_CONTENT_TYPE,
            direct_passthrough=True,
        )
        response.content_length = stat.st_size
        response.last_modified = modified
        return response


@bp.post("/add")
def add() -> Response:
    gateway = _gateway()
    try:
        form = _authorized_form(gateway)
        url = parse_url(form.get("url"))
        result = add_link(gateway, url, form.get("title"))
    except StatusError as exc:
        return _text(f"Failed: {exc.message}\n", exc.status)
    return _text(f"{result.value}\n", 201)


@bp.post("/info")
def info() -> Response:
    gateway = _gateway()
    try:
        _authorized_form(gateway)
    except StatusError as exc:
        return _json({"status": "error", "message": exc.message}, exc.status)
    return _json({"status": "ok", "version": VERSION})


@bp.app_errorhandler(NotFound)
@bp.app_errorhandler(MethodNotAllowed)
def not_found(error) -> Response:
    return _page("404.html", 404)


@bp.app_errorhandler(InternalServerError)
def internal_error(error) -> Response:
    LOGGER.error("Unhandled error serving %s %s: %s", request.method, request.path, error)
    return _page("500.html", 500)


@bp.after_app_request
def log_request(response: Response) -> Response:
    if LOGGER.isEnabledFor(logging.DEBUG):
        path = "/feed/<token>" if request.endpoint == "gateway.feed" else request.path
        LOGGER.debug(
            '%s "%s %s" %d "%s"',
            request.remote_addr or "-",
            request.method,
            path,
            response.status_code,
            request.user_agent.string or "-",
        )
    return response


def create_app(
    config: Config,
    feed_path: Union[str, Path],
    assets: Optional[Mapping[str, str]] = None,
    fetcher: Optional[Fetcher] = None,
) -> Flask:
    """Build the Flask application serving ``feed_path``."""

    app = Flask(__name__, static_folder=None)
    app.config["MAX_CONTENT_LENGTH"] = MAX_POST_BODY
    app.config["MAX_FORM_MEMORY_SIZE"] = MAX_POST_BODY
    app.extensions[NAME] = Gateway(
        config=config,
        feed_path=Path(feed_path),
        assets=assets if assets is not None else load_assets(),
        fetcher=fetcher or webpage.fetch,
    )
    app.register_blueprint(bp)
    return app


def make_server(config: Config, app: Flask) -> BaseWSGIServer:
    """Bind a thread-per-request server for ``app`` on the configured address."""

    server = make_wsgi_server(config.addr, config.port, app, threaded=True)
    # Request threads are joined on close so in-flight adds finish their save.
    server.daemon_threads = False
    return server


def serve(server: BaseWSGIServer) -> None:
    """Serve until SIGINT, SIGTERM or SIGHUP, then drain in-flight requests."""

    def request_shutdown(signum, frame) -> None:
        LOGGER.info("Received %s, shutting down", signal.Signals(signum).name)
        # shutdown() blocks until serve_forever returns, which cannot happen
        # while this handler is running on the serving thread.
        threading.Thread(target=server.shutdown, name="shutdown").start()

    for signum in SHUTDOWN_SIGNALS:
        signal.signal(signum, request_shutdown)

    try:
        server.serve_forever()
    finally:
        # Joins request threads still running, so in-flight adds finish their save.
        server.server_close()
    LOGGER.info("Server stopped")


__all__ = [
    "Gateway",
    "StatusError",
    "add_link",
    "create_app",
    "load_assets",
    "make_server",
    "parse_url",
    "serve",
]
