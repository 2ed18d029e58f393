"""
Lookaround client: ask the LAN who is there.

A discovery round:
  1. bind an ephemeral UDP port, join the group on each local interface
  2. send one REQUEST to the group 10 times, 100 ms apart (background task)
  3. meanwhile collect replies until the timeout, one record per sender
  4. fill in nicknames from the local override table
  5. report peers sorted by MAC

Timing out is how a round normally ends; whatever was collected is reported.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import AsyncIterator, Callable, Iterable, Mapping, Optional

from .config import Params
from .ip import IpError, list_local_ipv4_addrs
from .nicknames import load_nickname_overrides, resolve
from .protocol import (
    IDEM_ID_LEN,
    MacAddress,
    Message,
    MessageError,
    Request,
    ResponseMac,
    ResponseNickname,
    encode_one,
)
from .sockets import Address, open_client_socket, recv_messages

log = logging.getLogger("lookaround.client")

RECV_ERROR_BACKOFF: float = 0.1


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class PeerRecord:
    """What one sender address has told us so far this round."""

    mac: Optional[MacAddress] = None
    nickname: Optional[str] = None

    def update(self, msgs: Iterable[Message]) -> None:
        for msg in msgs:
            if isinstance(msg, ResponseMac):
                self.mac = msg.mac
            elif isinstance(msg, ResponseNickname):
                self.nickname = msg.nickname


@dataclass(frozen=True)
class PeerReport:
    addr: Address
    mac: Optional[MacAddress]
    nickname: Optional[str]

    @property
    def ip(self) -> IPv4Address:
        return IPv4Address(self.addr[0])

    def __str__(self) -> str:
        if self.mac is None:
            return f"<Unknown> = {self.addr[0]}:{self.addr[1]}"
        if self.nickname is None:
            return f"{self.mac} = {self.addr[0]}"
        return f"{self.mac} = {self.addr[0]} `{self.nickname}`"


def _report_key(report: PeerReport) -> tuple[bool, bytes]:
    # Peers without a MAC sort before every known MAC
    if report.mac is None:
        return (False, b"")
    return (True, report.mac.octets)


def build_report(
    peers: Mapping[Address, PeerRecord],
    overrides: Mapping[MacAddress, str],
) -> list[PeerReport]:
    """Resolve nicknames and sort peers by MAC."""
    reports = [
        PeerReport(addr=addr, mac=rec.mac,
                   nickname=resolve(overrides, rec.mac, rec.nickname))
        for addr, rec in peers.items()
    ]
    reports.sort(key=_report_key)
    return reports


# ---------------------------------------------------------------------------
# Round phases
# ---------------------------------------------------------------------------

def _detect_ifaces() -> list[IPv4Address]:
    try:
        return list_local_ipv4_addrs()
    except IpError as exc:
        log.warning("Can't detect local IPs (%s); letting the OS pick an interface", exc)
        return [IPv4Address("0.0.0.0")]


async def _broadcast(sock: socket.socket, request: bytes, dest: Address, params: Params) -> None:
    loop = asyncio.get_running_loop()
    for i in range(params.retransmit_count):
        try:
            await loop.sock_sendto(sock, request, dest)
        except OSError as exc:
            log.warning("Send %d/%d to %s failed: %s",
                        i + 1, params.retransmit_count, dest, exc)
        await asyncio.sleep(params.retransmit_interval)
    log.debug("Broadcast done (%d sends)", params.retransmit_count)


async def _collect(
    sock: socket.socket,
    peers: dict[Address, PeerRecord],
    done: Callable[[Address, PeerRecord], bool] | None = None,
) -> Optional[Address]:
    """
    Fold incoming replies into *peers* until cancelled.

    If *done* is given, stop as soon as it returns True for an updated peer
    and return that peer's address.
    """
    while True:
        try:
            msgs, addr = await recv_messages(sock)
        except MessageError as exc:
            log.debug("Ignoring undecodable datagram: %s", exc)
            continue
        except OSError as exc:
            log.warning("Receive error: %s", exc)
            await asyncio.sleep(RECV_ERROR_BACKOFF)
            continue

        record = peers.setdefault(addr, PeerRecord())
        record.update(msgs)
        log.debug("Reply from %s: %s", addr, record)
        if done is not None and done(addr, record):
            return addr


@asynccontextmanager
async def _discovery_round(
    bind_addrs: Optional[Iterable[IPv4Address]],
    params: Params,
    dest: Optional[Address],
) -> AsyncIterator[socket.socket]:
    """Open the socket and keep re-sending the request while the body runs."""
    ifaces = _detect_ifaces() if bind_addrs is None else list(bind_addrs)
    sock = open_client_socket(params.multicast_addr, ifaces)
    dest = dest or (str(params.multicast_addr), params.server_port)

    idem_id = secrets.token_bytes(IDEM_ID_LEN)
    request = encode_one(Request(idem_id=idem_id, mac=None))
    log.debug("Round %s → %s", idem_id.hex(), dest)

    sender = asyncio.create_task(_broadcast(sock, request, dest, params))
    try:
        yield sock
    finally:
        sender.cancel()
        try:
            # wait() never re-raises the sender's CancelledError
            await asyncio.wait([sender])
        finally:
            sock.close()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def run_client(
    bind_addrs: Optional[Iterable[IPv4Address]] = None,
    timeout: float | None = None,
    *,
    params: Params | None = None,
    overrides: Mapping[MacAddress, str] | None = None,
    dest: Optional[Address] = None,
) -> list[PeerReport]:
    """
    Run one discovery round and return every peer heard from.

    *bind_addrs* are the interfaces to join the group on; None means all
    local IPv4 addresses.  *dest* overrides the group address the request
    is sent to.
    """
    params = params or Params()
    timeout = params.timeout if timeout is None else timeout
    if overrides is None:
        overrides = load_nickname_overrides()

    peers: dict[Address, PeerRecord] = {}
    async with _discovery_round(bind_addrs, params, dest) as sock:
        try:
            await asyncio.wait_for(_collect(sock, peers), timeout)
        except asyncio.TimeoutError:
            pass

    log.info("Found %d peer(s)", len(peers))
    return build_report(peers, overrides)


async def find_nickname(
    target: str,
    timeout: float | None = None,
    *,
    bind_addrs: Optional[Iterable[IPv4Address]] = None,
    params: Params | None = None,
    overrides: Mapping[MacAddress, str] | None = None,
    dest: Optional[Address] = None,
) -> Optional[IPv4Address]:
    """Return the IP of the first peer whose nickname is *target*, or None."""
    params = params or Params()
    timeout = params.timeout if timeout is None else timeout
    if overrides is None:
        overrides = load_nickname_overrides()

    def matches(addr: Address, rec: PeerRecord) -> bool:
        return resolve(overrides, rec.mac, rec.nickname) == target

    peers: dict[Address, PeerRecord] = {}
    async with _discovery_round(bind_addrs, params, dest) as sock:
        try:
            found = await asyncio.wait_for(_collect(sock, peers, matches), timeout)
        except asyncio.TimeoutError:
            log.info("No peer called %r within %.1fs", target, timeout)
            return None

    return IPv4Address(found[0])
