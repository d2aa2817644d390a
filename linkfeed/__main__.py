"""Command-line entry point for the linkfeed server."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import (
    DEFAULT_ADDR,
    DEFAULT_PORT,
    ENV_ADDRESS,
    ENV_FEED_TOKEN,
    ENV_LOG,
    ENV_PORT,
    ENV_PRIVATE_TOKEN,
    MIN_TOKEN_LENGTH,
    NAME,
    VERSION,
    ConfigError,
    load_config,
    parse_log_spec,
)
from .feed import Feed, FeedError
from .ids import base62
from .server import create_app, make_server, serve
from .webpage import FetchError, fetch

LOGGER = logging.getLogger(__name__)

EPILOG = f"""\
environment:
  {ENV_PRIVATE_TOKEN}  required, authenticates requests to add a link
  {ENV_FEED_TOKEN}     required, used in the path to the feed
  {ENV_ADDRESS}        address to serve on (default {DEFAULT_ADDR})
  {ENV_PORT}           port to serve on (default {DEFAULT_PORT})
  {ENV_LOG}            log filter, e.g. "debug" or "info,linkfeed.server=debug"
"""


def setup_logging(verbose: bool = False) -> None:
    level, overrides = parse_log_spec(os.getenv(ENV_LOG))
    if verbose:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # Quiet noisy loggers
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    for name, logger_level in overrides.items():
        logging.getLogger(name).setLevel(logger_level)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=NAME,
        description="Collect links to read or watch later in an Atom feed",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-V", "--version", action="version", version=f"{NAME} version {VERSION}")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    serve_parser = commands.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("feed_path", type=Path, help="Path to the Atom feed file")

    commands.add_parser("gen-token", help="Print a new random token")

    fetch_parser = commands.add_parser("fetch", help="Show the metadata extracted from a URL")
    fetch_parser.add_argument("url")

    return parser.parse_args(argv)


def run_server(feed_path: Path) -> int:
    try:
        config = load_config()
    except ConfigError as exc:
        print(f"Unable to read configuration: {exc}", file=sys.stderr)
        print(
            f"{ENV_PRIVATE_TOKEN} and {ENV_FEED_TOKEN} must both be set to a "
            f"{MIN_TOKEN_LENGTH} character string",
            file=sys.stderr,
        )
        print(f"Generate tokens with: {NAME} gen-token", file=sys.stderr)
        return 1

    if not feed_path.exists():
        LOGGER.info("Creating initial feed at %s", feed_path)
        try:
            Feed.generate_new(feed_path).save()
        except FeedError as exc:
            print(f"Unable to save initial feed: {exc}", file=sys.stderr)
            return 1
    else:
        # Ensure the existing feed can be read before starting the server
        try:
            Feed.read(feed_path)
        except FeedError as exc:
            print(f"Unable to read feed at {feed_path}: {exc}", file=sys.stderr)
            return 1

    app = create_app(config, feed_path)
    try:
        server = make_server(config, app)
    except OSError as exc:
        print(f"Unable to start http server on {config.addr}:{config.port}: {exc}", file=sys.stderr)
        return 1

    LOGGER.info("HTTP server running on: http://%s:%d", config.addr, server.port)
    serve(server)
    return 0


def fetch_webpage(url: str) -> int:
    try:
        page = fetch(url)
    except FetchError as exc:
        print(f"unable to fetch page: {exc}")
        return 1
    print(f"title: {page.title!r}\ndescription: {page.description!r}\nauthor: {page.author!r}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    if args.command == "gen-token":
        print(base62(MIN_TOKEN_LENGTH))
        return 0
    if args.command == "fetch":
        return fetch_webpage(args.url)
    return run_server(args.feed_path)


if __name__ == "__main__":
    sys.exit(main())
