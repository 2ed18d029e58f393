"""
Lookaround server: answer discovery requests on every local interface.

One InterfaceServer per local IPv4 address.  Each binds the well-known port,
joins the multicast group on its interface, and for every fresh broadcast
REQUEST replies with RESPONSE_MAC + RESPONSE_NICKNAME in one datagram.

Clients repeat each request several times, so every listener remembers the
last few idem_ids it answered and stays quiet for repeats.  Listeners share
nothing; one failing doesn't affect the others.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from ipaddress import IPv4Address
from typing import Iterable, Iterator, Optional

from .config import Params, check_nickname
from .ip import get_local_mac, list_local_ipv4_addrs
from .protocol import (
    MAX_DATAGRAM,
    MacAddress,
    MessageError,
    Request,
    ResponseMac,
    ResponseNickname,
    decode_many,
    encode_many,
)
from .sockets import Address, open_server_socket

log = logging.getLogger("lookaround.server")

RECENT_IDEM_CAPACITY: int = 30
RECV_ERROR_BACKOFF: float = 0.1


class ServerError(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# Duplicate suppression
# ---------------------------------------------------------------------------

class RecentIdemSet:
    """Most-recent-first list of idem_ids, oldest dropped past *capacity*."""

    def __init__(self, capacity: int = RECENT_IDEM_CAPACITY) -> None:
        self.capacity = capacity
        self._ids: list[bytes] = []

    def __contains__(self, idem_id: object) -> bool:
        return idem_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._ids)

    def add(self, idem_id: bytes) -> None:
        self._ids.insert(0, idem_id)
        del self._ids[self.capacity:]


# ---------------------------------------------------------------------------
# Per-interface listener
# ---------------------------------------------------------------------------

class InterfaceServer:
    """Answers requests arriving on one socket."""

    def __init__(
        self,
        sock: socket.socket,
        nickname: str,
        mac: Optional[MacAddress],
        name: str = "",
    ) -> None:
        self._sock = sock
        self.nickname = check_nickname(nickname)
        self.mac = mac
        self.name = name or str(sock.getsockname())
        self.recent = RecentIdemSet()

    def handle_datagram(self, data: bytes, addr: Address) -> Optional[bytes]:
        """Return the reply for *data*, or None if it deserves no answer."""
        try:
            msgs = decode_many(data)
        except MessageError as exc:
            log.warning("[%s] bad datagram from %s: %s", self.name, addr, exc)
            return None

        if not msgs:
            log.debug("[%s] empty datagram from %s", self.name, addr)
            return None

        req = msgs[0]
        if not isinstance(req, Request) or req.mac is not None:
            # MAC-targeted requests are reserved and deliberately unanswered
            log.debug("[%s] ignoring %r from %s", self.name, req, addr)
            return None

        if req.idem_id in self.recent:
            log.debug("[%s] duplicate request %s from %s",
                      self.name, req.idem_id.hex(), addr)
            return None

        self.recent.add(req.idem_id)
        log.info("[%s] answering %s (request %s)", self.name, addr, req.idem_id.hex())
        return encode_many([
            ResponseMac(self.mac),
            ResponseNickname(idem_id=req.idem_id, nickname=self.nickname),
        ])

    async def serve(self) -> None:
        """Receive and answer forever. Socket errors are logged, never fatal."""
        loop = asyncio.get_running_loop()
        log.info("[%s] listening", self.name)
        while True:
            try:
                data, addr = await loop.sock_recvfrom(self._sock, MAX_DATAGRAM)
            except OSError as exc:
                log.warning("[%s] receive error: %s", self.name, exc)
                await asyncio.sleep(RECV_ERROR_BACKOFF)
                continue

            reply = self.handle_datagram(data, addr)
            if reply is None:
                continue
            try:
                await loop.sock_sendto(self._sock, reply, addr)
            except OSError as exc:
                log.warning("[%s] send error to %s: %s", self.name, addr, exc)

    def close(self) -> None:
        try:
            self._sock.close()
        except OSError:
            pass


async def _supervise(server: InterfaceServer) -> None:
    try:
        await server.serve()
    except asyncio.CancelledError:
        raise
    except Exception:
        log.exception("[%s] listener crashed", server.name)
    finally:
        server.close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def run_server(
    bind_addrs: Optional[Iterable[IPv4Address]],
    nickname: str,
    params: Params | None = None,
) -> None:
    """
    Serve on every address in *bind_addrs* (all local IPv4 addresses if
    empty or None) until cancelled.

    Raises ConfigError for a bad nickname and ServerError if no interface
    could be bound at all.
    """
    params = params or Params()
    check_nickname(nickname)

    addrs = list(bind_addrs or [])
    if not addrs:
        log.info("No bind addresses given, auto-detecting all local IPs")
        addrs = list_local_ipv4_addrs()

    mac = get_local_mac()
    if mac is None:
        log.warning("Can't find our own MAC address; responses will carry none")

    servers: list[InterfaceServer] = []
    for addr in addrs:
        try:
            sock = open_server_socket(addr, params.multicast_addr, params.server_port)
        except OSError as exc:
            log.warning("Can't listen on %s: %s", addr, exc)
            continue
        servers.append(InterfaceServer(sock, nickname, mac, name=str(addr)))

    if not servers:
        raise ServerError(f"Couldn't listen on any of {len(addrs)} address(es)")

    try:
        await asyncio.gather(*(_supervise(s) for s in servers))
    finally:
        for s in servers:
            s.close()
