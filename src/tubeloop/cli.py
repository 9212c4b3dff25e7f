"""CLI entry points for tubeloop.

tubeloop-server: runs the supervisor and the Flask API on the kiosk
tubeloop: talks to a running server (status, set-url, retry, fullscreen)
"""

import argparse
import json
import logging
import sys

from tubeloop.__about__ import __version__

logger = logging.getLogger("tubeloop")


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def run_server(argv: list[str] | None = None):
    """Entry point for tubeloop-server command."""
    parser = argparse.ArgumentParser(
        description="tubeloop server - keeps one YouTube video looping on a kiosk display"
    )
    parser.add_argument(
        "--host", default=None, help="Host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port", type=int, default=None, help="Port to listen on (default: 5060)"
    )
    parser.add_argument(
        "--config", default=None, help="Path to tubeloop.toml config file"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable Flask debug mode"
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)"
    )
    parser.add_argument(
        "--no-player", action="store_true",
        help="Serve the API without starting playback (no mpv needed)"
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    from tubeloop.config import load_config
    from tubeloop.server.app import create_app

    config = load_config(args.config)

    # CLI args override config file
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    app = create_app(config, start_player=not args.no_player)
    if args.no_player:
        logger.info("Player disabled (--no-player)")

    logger.info("tubeloop %s starting on %s:%d", __version__,
                config.server.host, config.server.port)
    try:
        app.run(
            host=config.server.host,
            port=config.server.port,
            debug=args.debug,
            threaded=True,
            use_reloader=False,  # the supervisor runs on background threads
        )
    finally:
        app.supervisor.unmount()
        stop = getattr(app.scheduler, "stop", None)
        if stop:
            stop()
        logger.info("tubeloop stopped")


def _build_client_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="tubeloop client - control a tubeloop server"
    )
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=5060, help="Server port (default: 5060)")
    parser.add_argument("--version", action="version", version=f"tubeloop {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", help="Parse a URL locally and print the result")
    p.add_argument("url")
    sub.add_parser("status", help="Show playback status")
    p = sub.add_parser("set-url", help="Set the video URL (empty string clears it)")
    p.add_argument("url")
    sub.add_parser("retry", help="Retry after an error")
    sub.add_parser("fullscreen", help="Toggle fullscreen")
    return parser


def _print_json(data):
    print(json.dumps(data, indent=2))


def run_client(argv: list[str] | None = None) -> int:
    """Entry point for the tubeloop command. Returns the exit code."""
    args = _build_client_parser().parse_args(argv)

    if args.command == "parse":
        from tubeloop.player.source import parse
        source = parse(args.url)
        _print_json(source.to_dict())
        return 0 if source.is_valid else 1

    from tubeloop.client import TubeloopAPIError, TubeloopClient

    with TubeloopClient(args.host, args.port) as client:
        try:
            if args.command == "status":
                _print_json(client.get_status())
            elif args.command == "set-url":
                _print_json(client.set_source(args.url))
            elif args.command == "retry":
                _print_json(client.retry())
            elif args.command == "fullscreen":
                _print_json(client.toggle_fullscreen())
        except TubeloopAPIError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    return 0
