# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""sigclient CLI: issue signed requests from the command line.

Subcommands:

* ``init``: create a stub config file
* ``request``: execute one signed request and print the JSON result
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from sigclient.config import ClientConfig, ConfigError, get_config_path
from sigclient.logging import configure_logging


logger = logging.getLogger(__name__)

_USAGE = """\
usage: sigclient <command> [args]

commands:
  init      Create a stub config file
  request   Execute a signed request and print the result

Run 'sigclient <command> --help' for command-specific help.\
"""

#: Stub configuration template written by ``sigclient init``.
_STUB_CONFIG = """\
# sigclient configuration

base_url: https://abc123.execute-api.eu-west-1.amazonaws.com/prod/
identity_pool_id: !env SIGCLIENT_IDENTITY_POOL_ID

# Falls back to AWS_REGION / AWS_DEFAULT_REGION when unset.
# region: eu-west-1

# service: execute-api
# timeout_ms: 30000
# max_retries: 3
"""


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file.

    Args:
        argv: Extra arguments (currently unused).

    Returns:
        Exit code (always 0).
    """
    del argv
    config_path = get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


def _parse_header(value: str) -> tuple[str, str]:
    """Parse a ``Name: value`` header argument."""
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(
            f"Header must be 'Name: value', got {value!r}"
        )
    return name.strip(), header_value.strip()


def _parse_json(value: str) -> object:
    """Parse a JSON body argument."""
    try:
        return json.loads(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON body: {e}") from e


def _build_request_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sigclient request",
        description="Execute a SigV4-signed request.",
    )
    parser.add_argument("url", help="Absolute URL or path under base_url")
    parser.add_argument(
        "-X", "--method", default="GET", help="HTTP method (default: GET)"
    )
    parser.add_argument(
        "-d", "--data", type=_parse_json, default=None, help="JSON body"
    )
    parser.add_argument(
        "-H",
        "--header",
        action="append",
        type=_parse_header,
        default=[],
        help="Extra header 'Name: value' (repeatable)",
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="Config file path"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    return parser


def cmd_request(argv: list[str]) -> int:
    """Execute one signed request.

    Prints the decoded response body on success (exit 0) and the error
    result on stderr otherwise (exit 1).  Configuration errors exit 2.
    """
    from sigclient.client import SignedApiClient

    args = _build_request_parser().parse_args(argv)
    configure_logging(level=logging.DEBUG if args.debug else logging.WARNING)

    try:
        config = ClientConfig.from_yaml(args.config)
    except ConfigError as e:
        print(f"sigclient: {e}", file=sys.stderr)
        return 2

    with SignedApiClient(config) as client:
        result = client.request(
            args.url,
            method=args.method,
            body=args.data,
            headers=dict(args.header),
        )

    if result.ok:
        print(json.dumps(result.data, indent=2))
        return 0

    error = {
        "status": result.status,
        "data": result.data,
        "message": result.message,
    }
    print(json.dumps(error, indent=2, default=str), file=sys.stderr)
    return 1


_DISPATCH = {
    "init": cmd_init,
    "request": cmd_request,
}


def cli() -> None:
    """Entry point for ``sigclient``."""
    argv = sys.argv[1:]

    if not argv or argv[0] in ("-h", "--help"):
        print(_USAGE)
        sys.exit(0)

    handler = _DISPATCH.get(argv[0])
    if handler is None:
        print(f"sigclient: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    sys.exit(handler(argv[1:]))
