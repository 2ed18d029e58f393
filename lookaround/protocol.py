"""
Lookaround protocol — wire format encode/decode.

Datagram layout (UDP):
  [magic: 4B][tag: 1B][body]...[tag: 1B][body]

Magic = 9A 4A 43 81.  One datagram carries one magic followed by any number
of messages packed back-to-back.  All integers little-endian.

Bodies:
  REQUEST            [idem_id: 8B][mac_opt]
  RESPONSE_MAC       [mac_opt]
  RESPONSE_NICKNAME  [body_len: 4B][idem_id: 8B][nick_len: 4B][nick: UTF-8]

  mac_opt = [0]  |  [1][mac: 6B]

Unknown tags are a hard error for the whole datagram.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Iterable, Optional, Union

from .framing import (
    DataTooBig,
    FramingError,
    MagicMismatch,
    TruncatedInput,
    Writer,
    expect_bytes,
    read_exact,
    read_length,
    read_length_prefixed,
    read_u8,
    write_length,
    write_length_prefixed,
    write_u8,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAGIC: bytes = b"\x9a\x4a\x43\x81"
MAX_DATAGRAM: int = 1024
MAX_NICKNAME_BYTES: int = 64
IDEM_ID_LEN: int = 8
MAC_LEN: int = 6

SERVER_PORT: int = 9040
MULTICAST_GROUP: str = "225.100.99.98"


# ---------------------------------------------------------------------------
# Message type enum
# ---------------------------------------------------------------------------

class MsgType(IntEnum):
    REQUEST           = 1
    RESPONSE_MAC      = 2
    RESPONSE_NICKNAME = 3


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class MessageError(ValueError):
    """Base class for datagrams that can't be encoded or decoded."""


class BadMagic(MessageError):
    pass


class UnknownTag(MessageError):
    def __init__(self, tag: int) -> None:
        super().__init__(f"Unknown message tag {tag}")
        self.tag = tag


class Truncated(MessageError):
    pass


class InvalidUtf8(MessageError):
    pass


class FieldTooLarge(MessageError):
    pass


class BodyLengthMismatch(MessageError):
    pass


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class MacAddress:
    octets: bytes

    def __post_init__(self) -> None:
        if len(self.octets) != MAC_LEN:
            raise ValueError(f"MAC address must be {MAC_LEN} bytes, got {len(self.octets)}")

    def __str__(self) -> str:
        return ":".join(f"{b:02x}" for b in self.octets)

    @classmethod
    def parse(cls, text: str) -> "MacAddress":
        """Parse ``aa:bb:cc:dd:ee:ff`` (or dash-separated) into a MacAddress."""
        parts = text.strip().replace("-", ":").split(":")
        if len(parts) != MAC_LEN or any(len(p) != 2 for p in parts):
            raise ValueError(f"Not a MAC address: {text!r}")
        try:
            return cls(bytes(int(p, 16) for p in parts))
        except ValueError:
            raise ValueError(f"Not a MAC address: {text!r}") from None

    def mix(self) -> "MacAddress":
        """
        Fold the trailing bytes into the leading ones so MACs that differ only
        in their last octets look different at a glance.  Trivially
        reversible; not a hash.
        """
        o = self.octets
        return MacAddress(bytes([o[0] ^ o[5], o[1] ^ o[4], o[2] ^ o[3], o[3], o[4], o[5]]))

    # The XOR shuffle is its own inverse.
    unmix = mix


@dataclass(frozen=True)
class Request:
    idem_id: bytes
    mac: Optional[MacAddress] = None   # targeted lookups; always None today


@dataclass(frozen=True)
class ResponseMac:
    mac: Optional[MacAddress]


@dataclass(frozen=True)
class ResponseNickname:
    idem_id: bytes
    nickname: str


Message = Union[Request, ResponseMac, ResponseNickname]


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

class _CountingSink:
    """Writer that only counts bytes; used to size a body before writing it."""

    def __init__(self) -> None:
        self.count = 0

    def write(self, data: bytes) -> int:
        self.count += len(data)
        return len(data)


def _check_idem_id(idem_id: bytes) -> bytes:
    if len(idem_id) != IDEM_ID_LEN:
        raise FieldTooLarge(f"idem_id must be {IDEM_ID_LEN} bytes, got {len(idem_id)}")
    return idem_id


def _write_mac_opt(w: Writer, mac: Optional[MacAddress]) -> None:
    if mac is None:
        write_u8(w, 0)
    else:
        write_u8(w, 1)
        w.write(mac.octets)


def _write_nickname_body(w: Writer, msg: ResponseNickname) -> None:
    raw = msg.nickname.encode("utf-8")
    if len(raw) > MAX_NICKNAME_BYTES:
        raise FieldTooLarge(
            f"Nickname is {len(raw)} bytes, limit is {MAX_NICKNAME_BYTES}")
    w.write(_check_idem_id(msg.idem_id))
    write_length_prefixed(w, raw)


def _write_message(w: Writer, msg: Message) -> None:
    if isinstance(msg, Request):
        write_u8(w, MsgType.REQUEST)
        w.write(_check_idem_id(msg.idem_id))
        _write_mac_opt(w, msg.mac)
    elif isinstance(msg, ResponseMac):
        write_u8(w, MsgType.RESPONSE_MAC)
        _write_mac_opt(w, msg.mac)
    elif isinstance(msg, ResponseNickname):
        write_u8(w, MsgType.RESPONSE_NICKNAME)
        sink = _CountingSink()
        _write_nickname_body(sink, msg)
        write_length(w, sink.count)
        _write_nickname_body(w, msg)
    else:
        raise TypeError(f"Not a message: {msg!r}")


def encode_one(msg: Message) -> bytes:
    """Encode a single message as a complete datagram."""
    return encode_many([msg])


def encode_many(msgs: Iterable[Message]) -> bytes:
    """Encode *msgs* behind one magic number, packed back-to-back."""
    buf = io.BytesIO()
    buf.write(MAGIC)
    for msg in msgs:
        _write_message(buf, msg)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------

def _read_mac_opt(r: BinaryIO) -> Optional[MacAddress]:
    if read_u8(r) == 1:
        return MacAddress(read_exact(r, MAC_LEN))
    return None


def _read_nickname_body(r: BinaryIO) -> ResponseNickname:
    body_len = read_length(r)
    body = read_exact(r, body_len)
    sub = io.BytesIO(body)
    idem_id = read_exact(sub, IDEM_ID_LEN)
    raw = read_length_prefixed(sub, MAX_NICKNAME_BYTES)
    if sub.tell() != body_len:
        raise BodyLengthMismatch(
            f"Nickname body declared {body_len} bytes, used {sub.tell()}")
    try:
        nickname = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidUtf8(f"Nickname is not valid UTF-8: {exc}") from exc
    return ResponseNickname(idem_id=idem_id, nickname=nickname)


def _read_message(r: BinaryIO) -> Message:
    tag = read_u8(r)
    if tag == MsgType.REQUEST:
        idem_id = read_exact(r, IDEM_ID_LEN)
        return Request(idem_id=idem_id, mac=_read_mac_opt(r))
    if tag == MsgType.RESPONSE_MAC:
        return ResponseMac(_read_mac_opt(r))
    if tag == MsgType.RESPONSE_NICKNAME:
        return _read_nickname_body(r)
    raise UnknownTag(tag)


def decode_many(data: bytes) -> list[Message]:
    """Decode every message in one datagram. Raises MessageError on bad input."""
    r = io.BytesIO(data)
    msgs: list[Message] = []
    try:
        expect_bytes(r, MAGIC)
        while r.tell() < len(data):
            msgs.append(_read_message(r))
    except MagicMismatch as exc:
        raise BadMagic(str(exc)) from exc
    except TruncatedInput as exc:
        raise Truncated(str(exc)) from exc
    except DataTooBig as exc:
        raise FieldTooLarge(str(exc)) from exc
    except FramingError as exc:
        raise MessageError(str(exc)) from exc
    return msgs

