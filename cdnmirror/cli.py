# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""cdnmirror CLI: multi-command entry point.

Provides ``cdnmirror <command>`` with subcommands for initializing
configuration, checking it, running the HTTP service and running one
core operation from the shell.  Running ``cdnmirror`` with no arguments
prints usage information.

Subcommands:

* ``init``     : create a stub config file
* ``check``    : report which integrations are configured
* ``serve``    : run the HTTP service
* ``sync``     : mirror one asset and print the outcome
* ``metrics``  : query traffic analytics and print the rows
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from cdnmirror.config import (
    ConfigError,
    ServerConfig,
    get_config_path,
    get_dotenv_path,
)
from cdnmirror.errors import CdnMirrorError
from cdnmirror.logging import configure_logging
from cdnmirror.metrics import METRIC_NAMES, MetricsQuery
from cdnmirror.mirror import AssetCoordinate, sync_asset


logger = logging.getLogger(__name__)

# Known subcommand names.
_SUBCOMMANDS = frozenset({"init", "check", "serve", "sync", "metrics"})

_USAGE = """\
usage: cdnmirror <command> [args]

commands:
  init      Create a stub config file
  check     Report which integrations are configured
  serve     Run the HTTP service
  sync      Mirror one asset (NAME VERSION KEY)
  metrics   Query traffic analytics (request or flow)

Run 'cdnmirror <command> --help' for command-specific help.\
"""


# ── Terminal colors ─────────────────────────────────────────────────


def _use_color() -> bool:
    """Determine whether to use ANSI color codes in output.

    Returns True when stdout is a TTY and the ``NO_COLOR`` environment
    variable is not set.  ``TERM=dumb`` also disables color.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return sys.stdout.isatty()


class _Style:
    """ANSI escape helpers.  All methods return plain text when color is off."""

    def __init__(self, color: bool) -> None:
        self._on = color

    def _wrap(self, code: str, text: str) -> str:
        if not self._on:
            return text
        return f"\033[{code}m{text}\033[0m"

    def bold(self, text: str) -> str:
        return self._wrap("1", text)

    def green(self, text: str) -> str:
        return self._wrap("32", text)

    def red(self, text: str) -> str:
        return self._wrap("31", text)

    def dim(self, text: str) -> str:
        return self._wrap("2", text)

    def cyan(self, text: str) -> str:
        return self._wrap("36", text)


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: XDG config path or environment)",
    )


def _print_json(payload: object, *, file=None) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False), file=file)


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file.

    Creates ``~/.config/cdnmirror/cdnmirror.yaml`` with a template that
    reads every value from the environment, if the file does not exist.

    Args:
        argv: Extra arguments (currently unused).

    Returns:
        Exit code (always 0).
    """
    config_path = get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


# ── check subcommand ────────────────────────────────────────────────


def cmd_check(argv: list[str]) -> int:
    """Load the configuration and report what is usable.

    Args:
        argv: ``[--config PATH]``.

    Returns:
        0 if both the bucket and the cloud API are configured, 1 otherwise.
    """
    parser = argparse.ArgumentParser(
        prog="cdnmirror check",
        description="Report which integrations are configured",
    )
    _add_config_argument(parser)
    args = parser.parse_args(argv)

    s = _Style(_use_color())
    config_path = args.config or get_config_path()

    print(s.bold("Configuration"))
    if config_path.exists():
        print(f"  Config file: {s.dim(str(config_path))}")
    else:
        print(f"  Config file: {s.dim('not found, using environment')}")
        print(f"  Run {s.cyan('cdnmirror init')} to create a stub config.")

    dotenv_path = get_dotenv_path()
    if dotenv_path.exists():
        print(f"  Env file:    {s.dim(str(dotenv_path))}")

    try:
        config = ServerConfig.from_yaml(args.config)
    except ConfigError as e:
        print(f"  Status:      {s.red('error')}: {e}")
        print()
        print(s.red("Some checks failed."))
        return 1
    print(f"  Listen:      {config.host}:{config.port}")
    print()

    all_ok = True
    print(s.bold("Integrations"))
    if config.cos is not None:
        print(
            f"  {s.green('✓')} cos: {config.cos.bucket} "
            f"({config.cos.region}) via {config.cos.public_base_url}"
        )
    else:
        print(f"  {s.red('✗')} cos: missing {', '.join(config.cos_missing)}")
        all_ok = False

    if config.cloud is not None:
        try:
            domain = config.metrics_domain
        except ConfigError:
            print(f"  {s.red('✗')} metrics: missing metrics.domain")
            all_ok = False
        else:
            print(f"  {s.green('✓')} metrics: {domain}")
    else:
        missing = ", ".join(config.cloud_missing)
        print(f"  {s.red('✗')} metrics: missing cloud {missing}")
        all_ok = False
    print()

    if all_ok:
        print(s.green("All checks passed."))
    else:
        print(s.red("Some checks failed."))
    return 0 if all_ok else 1


# ── serve subcommand ────────────────────────────────────────────────


def cmd_serve(argv: list[str]) -> int:
    """Run the HTTP service in the foreground.

    Args:
        argv: ``[--host HOST] [--port PORT] [--debug] [--config PATH]``.

    Returns:
        0 on clean shutdown, 1 on configuration errors.
    """
    from cdnmirror.server import MirrorServer

    parser = argparse.ArgumentParser(
        prog="cdnmirror serve",
        description="Run the cdnmirror HTTP service",
    )
    parser.add_argument("--host", default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Bind port")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    _add_config_argument(parser)
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    try:
        config = ServerConfig.from_yaml(args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    server = MirrorServer(config, host=args.host, port=args.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


# ── sync subcommand ─────────────────────────────────────────────────


def cmd_sync(argv: list[str]) -> int:
    """Mirror one asset and print the outcome as JSON.

    Args:
        argv: ``NAME VERSION KEY [--config PATH]``.

    Returns:
        0 if the asset is mirrored, 1 otherwise.
    """
    parser = argparse.ArgumentParser(
        prog="cdnmirror sync",
        description="Mirror one cdnjs asset into the bucket",
    )
    parser.add_argument("name", help="Library name (e.g. jquery)")
    parser.add_argument("version", help="Library version (e.g. 3.6.0)")
    parser.add_argument("key", help="File within the version")
    _add_config_argument(parser)
    args = parser.parse_args(argv)

    configure_logging(level=logging.WARNING)

    try:
        config = ServerConfig.from_yaml(args.config)
        cos = config.require_cos()
        coordinate = AssetCoordinate(args.name, args.version, args.key)
        outcome = asyncio.run(
            sync_asset(cos, coordinate, cdnjs_base_url=config.cdnjs.base_url)
        )
    except CdnMirrorError as e:
        _print_json(e.to_dict(), file=sys.stderr)
        return 1

    _print_json(outcome.to_dict())
    return 0 if outcome.ok else 1


# ── metrics subcommand ──────────────────────────────────────────────


def cmd_metrics(argv: list[str]) -> int:
    """Query the top URLs of the last 30 days and print them as JSON.

    Args:
        argv: ``[KIND] [--config PATH]``.

    Returns:
        0 on success, 1 on failure.
    """
    parser = argparse.ArgumentParser(
        prog="cdnmirror metrics",
        description="Query traffic analytics for the mirror domain",
    )
    parser.add_argument(
        "kind",
        nargs="?",
        default="request",
        choices=sorted(METRIC_NAMES),
        help="Metric to rank URLs by (default: request)",
    )
    _add_config_argument(parser)
    args = parser.parse_args(argv)

    configure_logging(level=logging.WARNING)

    try:
        config = ServerConfig.from_yaml(args.config)
        query = MetricsQuery(
            config.require_cloud(), config.metrics, config.metrics_domain
        )
        data = asyncio.run(query.query(args.kind))
    except CdnMirrorError as e:
        _print_json(e.to_dict(), file=sys.stderr)
        return 1

    _print_json(data)
    return 0


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "init": "cmd_init",
    "check": "cmd_check",
    "serve": "cmd_serve",
    "sync": "cmd_sync",
    "metrics": "cmd_metrics",
}


def cli() -> None:
    """Entry point for ``cdnmirror``.

    When no arguments are given, prints usage information.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] == "--help":
        print(_USAGE)
        sys.exit(0)

    if argv[0] not in _SUBCOMMANDS:
        print(f"cdnmirror: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    command = argv[0]
    rest = argv[1:]

    # Look up handler by name so tests can mock individual commands.
    import cdnmirror.cli as _self

    handler = getattr(_self, _DISPATCH[command])
    sys.exit(handler(rest))


#: Stub configuration template written by ``cdnmirror init``.
_STUB_CONFIG = """\
# cdnmirror configuration
#
# Values tagged !env are read from environment variables (a .env file
# next to this one is loaded first).

server:
  host: 127.0.0.1
  port: !env PORT

cos:
  bucket: !env COS_BUCKET_NAME
  region: !env COS_REGION
  secret_id: !env COS_SECRET_ID
  secret_key: !env COS_SECRET_KEY
  custom_domain: !env COS_CUSTOM_DOMAIN
  lib_folder: !env COS_LIB_FOLDER
  # sign_ttl: 600

cloud:
  secret_id: !env TENCENTCLOUD_SECRET_ID
  secret_key: !env TENCENTCLOUD_SECRET_KEY

# metrics:
#   domain: cdn.example.com

# cdnjs:
#   base_url: https://cdnjs.cloudflare.com/ajax/libs
#   api_url: https://api.cdnjs.com/libraries
"""
