"""Command-line entrypoint for running the cache proxy."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import structlog
import uvicorn

from ..cache_proxy.app import create_app
from ..common.observability import configure_logging
from ..common.settings import ProxySettings


LOGGER = structlog.get_logger("catproxy.cli")

MISSING_OPTION_MESSAGES = {
    "host": "Please specify host",
    "port": "Please specify port",
    "cache": "Please specify cache directory",
}


class UsageError(Exception):
    pass


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    # -h is taken by --host, so help is only available as --help.
    parser = _ArgumentParser(
        prog="http-cat-proxy",
        description="Caching proxy for the http.cat status code images",
        add_help=False,
    )
    parser.add_argument("--help", action="help", help="Show this message and exit")
    parser.add_argument("-h", "--host", help="Address to listen on")
    parser.add_argument("-p", "--port", help="Port to listen on")
    parser.add_argument("-c", "--cache", help="Path to the cache directory")
    return parser


def parse_args(argv: list[str]) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    for option, message in MISSING_OPTION_MESSAGES.items():
        if getattr(args, option) is None:
            raise UsageError(message)
    return args


def parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise UsageError("Invalid port") from exc
    if not 0 < port < 65536:
        raise UsageError("Invalid port")
    return port


def ensure_cache_root(path: Path) -> Path:
    """Create the cache directory, including parents, if it is missing."""

    if not path.exists():
        LOGGER.info("cache_root_created", cache_root=str(path))
        path.mkdir(parents=True, exist_ok=True)
    return path


def build_settings(args: argparse.Namespace) -> ProxySettings:
    return ProxySettings(host=args.host, port=parse_port(args.port), cache_root=Path(args.cache))


def main(argv: list[str] | None = None) -> int:
    try:
        args = parse_args(sys.argv[1:] if argv is None else argv)
        settings = build_settings(args)
    except UsageError as exc:
        print(exc, file=sys.stderr)
        return 1

    configure_logging("catproxy.cache_proxy", settings.log_level)
    try:
        ensure_cache_root(settings.cache_root)
    except OSError as exc:
        print(f"Cannot create cache directory: {exc.strerror or exc}", file=sys.stderr)
        return 1

    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
    )
    uvicorn.Server(config).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
