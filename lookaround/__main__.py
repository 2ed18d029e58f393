"""
Lookaround — find MAC addresses and nicknames on the LAN.  CLI entry point.

Usage:
    python -m lookaround client [--bind-addr A ...] [--timeout S] [--plain]
    python -m lookaround server [--bind-addr A ...] [--nickname N]
    python -m lookaround find-nick <nickname> [--timeout S]
    python -m lookaround my-ips
    python -m lookaround config
    python -m lookaround debug-avalanche
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .client import find_nickname, run_client
from .config import (
    VERSION,
    ConfigError,
    Params,
    check_nickname,
    config_dir,
    load_server_config,
    parse_bind_addrs,
)
from .display import NullStatus, ScanStatus, render_report
from .ip import IpError, list_local_ipv4_addrs
from .nicknames import load_nickname_overrides
from .protocol import MacAddress
from .server import ServerError, run_server


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool, default: int = logging.WARNING) -> None:
    level = logging.DEBUG if verbose else default
    logging.basicConfig(
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        level=level,
    )


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------

def cmd_client(args: argparse.Namespace) -> int:
    """Broadcast one request and list everyone who answered."""
    bind_addrs = parse_bind_addrs(args.bind_addr) or None
    overrides = load_nickname_overrides()
    params = Params()
    timeout = params.timeout if args.timeout is None else args.timeout

    status: ScanStatus | NullStatus
    status = NullStatus() if args.plain else ScanStatus("Looking around", timeout)
    status.start()
    try:
        reports = asyncio.run(run_client(
            bind_addrs, timeout, params=params, overrides=overrides))
    finally:
        status.stop()

    render_report(reports, plain=args.plain)
    return 0


def cmd_server(args: argparse.Namespace) -> int:
    """Answer requests until interrupted."""
    conf = load_server_config()
    bind_addrs = parse_bind_addrs(args.bind_addr) or conf.bind_addrs
    nickname = check_nickname(conf.nickname if args.nickname is None else args.nickname)

    print(f"[lookaround] Serving as {nickname!r}. Press Ctrl-C to stop.", file=sys.stderr)
    try:
        asyncio.run(run_server(bind_addrs, nickname))
    except KeyboardInterrupt:
        pass
    return 0


def cmd_find_nick(args: argparse.Namespace) -> int:
    """Print the IP of the peer called <nickname>."""
    overrides = load_nickname_overrides()
    ip = asyncio.run(find_nickname(args.nickname, args.timeout, overrides=overrides))
    if ip is None:
        print(f"No peer called {args.nickname!r} found.", file=sys.stderr)
        return 1
    print(ip)
    return 0


def cmd_my_ips(args: argparse.Namespace) -> int:
    """List this host's IPv4 addresses."""
    for addr in list_local_ipv4_addrs():
        print(addr)
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Show where config files are read from."""
    print(f"Using config dir {config_dir()}")
    return 0


def cmd_debug_avalanche(args: argparse.Namespace) -> int:
    """Self-check the MAC mixing shuffle."""
    for raw in (
        b"\x00\x00\x00\x00\x00\x00",
        b"\x00\x00\x00\x00\x00\x01",
        b"\x01\x00\x00\x00\x00\x00",
        b"\x01\x00\x00\x00\x00\x01",
    ):
        mac = MacAddress(raw)
        mixed = mac.mix()
        if mixed.unmix() != mac:
            print(f"FAILED: {mac} → {mixed} → {mixed.unmix()}", file=sys.stderr)
            return 1
        print(f"{mac} → {mixed}")
    print("Passed")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lookaround",
        description="Lookaround — find MAC addresses and nicknames on the LAN via multicast")
    parser.add_argument("--version", action="version",
                        version=f"lookaround v{VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    # --- client ---
    p_client = sub.add_parser("client", help="List peers on the local network")
    p_client.add_argument("--bind-addr", action="append", default=[],
                          help="Local IPv4 address to join the group on (repeatable; "
                               "default: all)")
    p_client.add_argument("--timeout", type=float, default=None,
                          help="Seconds to collect replies (default 2)")
    p_client.add_argument("--plain", action="store_true",
                          help="One line per peer, no table or spinner")

    # --- server ---
    p_server = sub.add_parser("server", help="Answer lookaround requests")
    p_server.add_argument("--bind-addr", action="append", default=[],
                          help="Local IPv4 address to listen on (repeatable; "
                               "default: from server.ini, else all)")
    p_server.add_argument("--nickname", default=None,
                          help="Name to announce (default: from server.ini, else empty)")

    # --- find-nick ---
    p_find = sub.add_parser("find-nick", help="Print the IP of a peer by nickname")
    p_find.add_argument("nickname", help="Nickname to look for")
    p_find.add_argument("--timeout", type=float, default=None,
                        help="Give up after this many seconds (default 2)")

    sub.add_parser("my-ips", help="List this host's IPv4 addresses")
    sub.add_parser("config", help="Show the config directory")
    sub.add_parser("debug-avalanche", help="Self-check MAC mixing")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    _setup_logging(args.verbose,
                   default=logging.INFO if args.command == "server" else logging.WARNING)

    handlers = {
        "client":          cmd_client,
        "server":          cmd_server,
        "find-nick":       cmd_find_nick,
        "my-ips":          cmd_my_ips,
        "config":          cmd_config,
        "debug-avalanche": cmd_debug_avalanche,
    }
    try:
        code = handlers[args.command](args)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        code = 1
    except (IpError, ServerError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
