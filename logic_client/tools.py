#!/usr/bin/env python3
"""
Logic Client Command-Line Tools

Each subcommand opens one connection, runs one request, prints the result
and disconnects.

Usage:
    python -m logic_client.tools info [HOST]             # Graph information
    python -m logic_client.tools exports [HOST] [--kvp]  # Exported parameters
    python -m logic_client.tools set HOST 1,0,5 2,3,0.5  # Set several values
    python -m logic_client.tools --debug info            # Enable debug logging

Environment Variables:
    LOGIC_CLIENT_HOST   - Default host
    LOGIC_CLIENT_PORT   - Server port
    LOGIC_CLIENT_DEBUG  - Enable debug mode (true/false)

Exit status is 0 on success and 7 on failure.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Tuple

from .config.settings import settings
from .network.registry import ConnectionRegistry
from .protocol.errors import LogicClientError

EXIT_FAILURE = 7

logger = logging.getLogger(__name__)


def parse_assignment(text: str) -> Tuple[int, int, str]:
    """Parse an OBJID,INDEX,VALUE argument."""
    parts = text.split(",", 2)
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected OBJID,INDEX,VALUE, got {text!r}")
    try:
        return int(parts[0]), int(parts[1]), parts[2]
    except ValueError:
        raise argparse.ArgumentTypeError(f"object ID and index must be integers in {text!r}")


def parse_args(argv: List[str] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Logic Client: query and control a running logic graph",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help="Server port number",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="tool", required=True)

    info = subparsers.add_parser("info", help="Show information about the running graph")
    info.add_argument("host", nargs="?", default=settings.HOST, help="Server host")

    exports = subparsers.add_parser("exports", help="List exported parameters")
    exports.add_argument("host", nargs="?", default=settings.HOST, help="Server host")
    exports.add_argument("--kvp", action="store_true", help="Print key-value lines")

    set_multi = subparsers.add_parser("set", help="Set one or more parameters")
    set_multi.add_argument("host", help="Server host")
    set_multi.add_argument(
        "assignments",
        nargs="+",
        type=parse_assignment,
        metavar="OBJID,INDEX,VALUE",
        help="Parameter assignments",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )


async def show_info(client) -> None:
    info = await client.get_info()
    for key, value in info.items():
        if isinstance(value, tuple):
            value = ".".join(str(part) for part in value)
        print(f"{key}={value}")


async def list_exports(client, kvp: bool = False) -> None:
    exports = await client.get_exports()
    for export in exports:
        print(export.to_kvp() if kvp else export)


async def set_values(client, assignments) -> bool:
    loop = asyncio.get_running_loop()
    done = loop.create_future()
    client.set_multi(assignments, lambda count, entries: done.set_result((count, entries)))
    count, entries = await done

    print(f"{count} of {len(entries)}")
    for entry in entries:
        status = "ok" if entry.result else f"failed ({entry.command.message})"
        print(f"  {entry.objid},{entry.index}={entry.value}: {status}")
    return count == len(entries)


async def run(args: argparse.Namespace) -> bool:
    """Connect, run the selected tool, and say goodbye."""
    registry = ConnectionRegistry(port=args.port)

    try:
        client = await registry.connect(args.host)
    except LogicClientError as exc:
        print(f"Error connecting to server: {exc}", file=sys.stderr)
        return False

    try:
        if args.tool == "info":
            await show_info(client)
            succeeded = True
        elif args.tool == "exports":
            await list_exports(client, kvp=args.kvp)
            succeeded = True
        else:
            succeeded = await set_values(client, args.assignments)
    except LogicClientError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        succeeded = False
    finally:
        await client.close()

    return succeeded


def main(argv: List[str] = None) -> None:
    """Main entry point for the command-line tools."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    try:
        succeeded = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        succeeded = False

    sys.exit(0 if succeeded else EXIT_FAILURE)


if __name__ == "__main__":
    main()
