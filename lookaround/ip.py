"""
Local host facts: our own MAC address and IPv4 addresses.

IPv4 addresses are scraped from ``ip addr`` (Linux) or ``ipconfig``
(Windows).  Self-IP detection isn't implemented on macOS.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import uuid
from ipaddress import AddressValueError, IPv4Address
from typing import Optional

from .protocol import MacAddress

log = logging.getLogger("lookaround.ip")


class IpError(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# MAC
# ---------------------------------------------------------------------------

def get_local_mac() -> Optional[MacAddress]:
    """Return this host's MAC, or None if Python could only make one up."""
    node = uuid.getnode()
    # getnode() falls back to a random number with the multicast bit set
    if (node >> 40) & 0x01:
        return None
    return MacAddress(node.to_bytes(6, "big"))


# ---------------------------------------------------------------------------
# IPv4 addresses
# ---------------------------------------------------------------------------

def parse_ip_addr_output(output: str) -> list[IPv4Address]:
    """Pull addresses out of ``inet 192.168.1.5/24 ...`` lines."""
    addrs: list[IPv4Address] = []
    for line in output.splitlines():
        line = line.lstrip()
        if not line.startswith("inet "):
            continue
        cidr = line[len("inet "):].split("/", 1)
        if len(cidr) != 2:
            continue
        try:
            addrs.append(IPv4Address(cidr[0]))
        except AddressValueError:
            continue
    return addrs


def parse_ipconfig_output(output: str) -> list[IPv4Address]:
    """Pull addresses out of ``IPv4 Address. . . : 192.168.1.5`` lines."""
    addrs: list[IPv4Address] = []
    for line in output.splitlines():
        line = line.lstrip()
        # English locales only
        if not line.startswith("IPv4 Address"):
            continue
        _, sep, value = line.partition(":")
        if not sep:
            continue
        # Windows may tag the address, e.g. "192.168.1.5(Preferred)"
        value = value.strip().split("(", 1)[0]
        try:
            addrs.append(IPv4Address(value))
        except AddressValueError:
            continue
    return addrs


def _run(cmd: list[str]) -> str:
    try:
        proc = subprocess.run(cmd, capture_output=True, check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise IpError(f"Can't run {cmd[0]}: {exc}") from exc
    return proc.stdout.decode("utf-8", errors="replace")


def list_local_ipv4_addrs() -> list[IPv4Address]:
    """Return every IPv4 address configured on this host."""
    if sys.platform.startswith("linux"):
        return parse_ip_addr_output(_run(["ip", "addr"]))
    if sys.platform == "win32":
        return parse_ipconfig_output(_run(["ipconfig"]))
    raise IpError(f"Self-IP detection is not implemented on {sys.platform}")
