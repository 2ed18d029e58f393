"""
Nickname resolution.

A peer's self-announced nickname always wins.  The local override table
(``[nicknames]`` in client.ini, keyed by MAC) only fills in peers that
announce nothing or an empty string.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional

from .config import CLIENT_CONFIG_NAME, ConfigError, config_dir, read_ini
from .protocol import MacAddress

log = logging.getLogger("lookaround.nicknames")


def resolve(
    overrides: Mapping[MacAddress, str],
    mac: Optional[MacAddress],
    announced: Optional[str],
) -> Optional[str]:
    """Pick the nickname to show for a peer."""
    if announced:
        return announced
    if mac is None:
        return None
    return overrides.get(mac)


def load_nickname_overrides(path: Path | None = None) -> dict[MacAddress, str]:
    """Load the MAC → nickname table. A missing file is an empty table."""
    path = path or config_dir() / CLIENT_CONFIG_NAME
    parser = read_ini(path)
    if parser is None or not parser.has_section("nicknames"):
        return {}

    overrides: dict[MacAddress, str] = {}
    for key, nickname in parser.items("nicknames"):
        try:
            mac = MacAddress.parse(key)
        except ValueError as exc:
            raise ConfigError(f"{path}: {exc}") from exc
        overrides[mac] = nickname
    log.debug("Loaded %d nickname override(s) from %s", len(overrides), path)
    return overrides
