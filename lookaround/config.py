"""
Runtime parameters and on-disk configuration.

Config directory (first match wins):
  $LOOKAROUND_CONFIG_DIR
  %APPDATA%\\lookaround          (Windows)
  $XDG_CONFIG_HOME/lookaround
  ~/.config/lookaround

Files:
  client.ini   [nicknames]  aa:bb:cc:dd:ee:ff = some-name
  server.ini   [server]     nickname = ...   bind_addrs = 192.168.1.5 10.0.0.2
"""

from __future__ import annotations

import configparser
import ipaddress
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from pathlib import Path
from typing import Iterable, Optional

from .protocol import MAX_NICKNAME_BYTES, MULTICAST_GROUP, SERVER_PORT

log = logging.getLogger("lookaround.config")

VERSION: str = "0.1.0"

CLIENT_CONFIG_NAME: str = "client.ini"
SERVER_CONFIG_NAME: str = "server.ini"

DEFAULT_TIMEOUT: float = 2.0
RETRANSMIT_COUNT: int = 10
RETRANSMIT_INTERVAL: float = 0.1


class ConfigError(ValueError):
    pass


@dataclass
class Params:
    # Servers bind this port; clients send to it
    server_port: int = SERVER_PORT
    # Clients and servers all join this group
    multicast_addr: IPv4Address = field(
        default_factory=lambda: IPv4Address(MULTICAST_GROUP))
    timeout: float = DEFAULT_TIMEOUT
    retransmit_count: int = RETRANSMIT_COUNT
    retransmit_interval: float = RETRANSMIT_INTERVAL


@dataclass
class ServerConfig:
    nickname: str = ""
    bind_addrs: list[IPv4Address] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def config_dir() -> Path:
    """Return the directory lookaround reads its .ini files from."""
    override = os.environ.get("LOOKAROUND_CONFIG_DIR")
    if override:
        return Path(override)
    if sys.platform == "win32" and os.environ.get("APPDATA"):
        return Path(os.environ["APPDATA"]) / "lookaround"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "lookaround"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_bind_addrs(values: Iterable[str]) -> list[IPv4Address]:
    """Parse IPv4 bind addresses. Raises ConfigError on the first bad one."""
    addrs: list[IPv4Address] = []
    for value in values:
        try:
            addrs.append(IPv4Address(value.strip()))
        except ipaddress.AddressValueError as exc:
            raise ConfigError(f"Bad bind address {value!r}: {exc}") from exc
    return addrs


def check_nickname(nickname: str) -> str:
    """Reject nicknames that wouldn't fit in a RESPONSE_NICKNAME message."""
    size = len(nickname.encode("utf-8"))
    if size > MAX_NICKNAME_BYTES:
        raise ConfigError(
            f"Nickname is {size} bytes of UTF-8, limit is {MAX_NICKNAME_BYTES}")
    return nickname


def read_ini(path: Path) -> Optional[configparser.ConfigParser]:
    """Read *path*; return None if it doesn't exist."""
    if not path.is_file():
        log.debug("No config file at %s", path)
        return None
    # MAC keys contain ':' so only '=' may separate key from value
    parser = configparser.ConfigParser(delimiters=("=",), interpolation=None)
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as exc:
        raise ConfigError(f"Can't parse {path}: {exc}") from exc
    return parser


def load_server_config(path: Path | None = None) -> ServerConfig:
    path = path or config_dir() / SERVER_CONFIG_NAME
    parser = read_ini(path)
    if parser is None or not parser.has_section("server"):
        return ServerConfig()
    section = parser["server"]
    raw_addrs = re.split(r"[\s,]+", section.get("bind_addrs", "").strip())
    return ServerConfig(
        nickname=check_nickname(section.get("nickname", "")),
        bind_addrs=parse_bind_addrs(a for a in raw_addrs if a),
    )
