"""
UDP socket setup shared by the client and server.

Sockets are non-blocking and meant to be driven with
``loop.sock_recvfrom`` / ``loop.sock_sendto``.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import struct
from ipaddress import IPv4Address

from .protocol import MAX_DATAGRAM, Message, decode_many

log = logging.getLogger("lookaround.sockets")

Address = tuple[str, int]


def join_group(sock: socket.socket, group: IPv4Address, iface: IPv4Address) -> None:
    """Join multicast *group* on the interface that owns address *iface*."""
    mreq = struct.pack("4s4s", group.packed, iface.packed)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)


def _reuse_port(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
    except (AttributeError, OSError):
        pass  # Windows doesn't have SO_REUSEPORT


def open_server_socket(
    iface: IPv4Address, group: IPv4Address, port: int,
) -> socket.socket:
    """
    Bind the well-known port and join *group* on *iface*.

    Several of these share the port, one per interface, so address reuse is
    switched on.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        _reuse_port(sock)
        sock.bind(("", port))
        join_group(sock, group, iface)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


def open_client_socket(
    group: IPv4Address,
    ifaces: list[IPv4Address],
) -> socket.socket:
    """
    Bind an ephemeral port and join *group* on each of *ifaces*.

    A failed bind is fatal; a failed join only loses that interface.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.bind(("0.0.0.0", 0))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise

    for iface in ifaces:
        try:
            join_group(sock, group, iface)
        except OSError as exc:
            log.warning("Can't join %s on %s: %s", group, iface, exc)
        else:
            log.debug("Joined %s on %s", group, iface)
    return sock


async def recv_messages(sock: socket.socket) -> tuple[list[Message], Address]:
    """Receive one datagram and decode it. Raises OSError or MessageError."""
    loop = asyncio.get_running_loop()
    data, addr = await loop.sock_recvfrom(sock, MAX_DATAGRAM)
    return decode_many(data), addr
