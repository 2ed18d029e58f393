"""Tests for the lookaround wire format."""

import struct

import pytest

from lookaround.protocol import (
    MAGIC,
    MAX_NICKNAME_BYTES,
    BadMagic,
    BodyLengthMismatch,
    FieldTooLarge,
    InvalidUtf8,
    MacAddress,
    MessageError,
    MsgType,
    Request,
    ResponseMac,
    ResponseNickname,
    Truncated,
    UnknownTag,
    decode_many,
    encode_many,
    encode_one,
)

IDEM = bytes(range(1, 9))
MAC = MacAddress(b"\x01\x02\x03\x04\x05\x06")


def _nickname_frame(idem: bytes, raw_nick: bytes, body_len: int | None = None) -> bytes:
    body = idem + struct.pack("<I", len(raw_nick)) + raw_nick
    if body_len is None:
        body_len = len(body)
    return bytes([MsgType.RESPONSE_NICKNAME]) + struct.pack("<I", body_len) + body


# ---------------------------------------------------------------------------
# MacAddress
# ---------------------------------------------------------------------------

class TestMacAddress:

    def test_str(self):
        assert str(MacAddress(b"\x0a\x1b\x2c\x3d\x4e\xff")) == "0a:1b:2c:3d:4e:ff"

    @pytest.mark.parametrize("text", ["01:02:03:04:05:06", "01-02-03-04-05-06", " 01:02:03:04:05:06\n"])
    def test_parse(self, text):
        assert MacAddress.parse(text) == MAC

    def test_parse_upper_case(self):
        assert MacAddress.parse("AA:BB:CC:DD:EE:FF").octets == b"\xaa\xbb\xcc\xdd\xee\xff"

    @pytest.mark.parametrize("text", ["", "01:02:03:04:05", "01:02:03:04:05:06:07", "zz:02:03:04:05:06", "1:2:3:4:5:6"])
    def test_parse_rejects(self, text):
        with pytest.raises(ValueError):
            MacAddress.parse(text)

    def test_wrong_length(self):
        with pytest.raises(ValueError):
            MacAddress(b"\x00" * 5)

    def test_ordering(self):
        macs = [MacAddress(b"\x02" + b"\x00" * 5), MacAddress(b"\x00" * 6), MacAddress(b"\x01" + b"\xff" * 5)]
        assert [m.octets[0] for m in sorted(macs)] == [0, 1, 2]

    def test_hashable(self):
        assert {MAC: "x"}[MacAddress.parse("01:02:03:04:05:06")] == "x"

    def test_mix_is_reversible(self):
        for raw in (b"\x00" * 6, b"\x00" * 5 + b"\x01", b"\x01" + b"\x00" * 5, b"\x01\x00\x00\x00\x00\x01"):
            mac = MacAddress(raw)
            assert mac.mix().unmix() == mac

    def test_mix_spreads_trailing_bytes(self):
        a = MacAddress(b"\x00\x00\x00\x00\x00\x01").mix()
        assert a.octets[0] == 0x01


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

class TestEncode:

    def test_request_layout(self):
        raw = encode_one(Request(idem_id=IDEM, mac=None))
        assert raw == MAGIC + b"\x01" + IDEM + b"\x00"

    def test_request_with_mac_layout(self):
        raw = encode_one(Request(idem_id=IDEM, mac=MAC))
        assert raw == MAGIC + b"\x01" + IDEM + b"\x01" + MAC.octets

    def test_response_mac_layout(self):
        assert encode_one(ResponseMac(MAC)) == MAGIC + b"\x02\x01" + MAC.octets
        assert encode_one(ResponseMac(None)) == MAGIC + b"\x02\x00"

    def test_response_nickname_layout(self):
        raw = encode_one(ResponseNickname(idem_id=IDEM, nickname="snow"))
        assert raw == (
            MAGIC
            + b"\x03"
            + struct.pack("<I", 8 + 4 + 4)
            + IDEM
            + b"\x04\x00\x00\x00snow"
        )

    def test_encode_many_has_one_magic(self):
        raw = encode_many([ResponseMac(MAC), ResponseNickname(idem_id=IDEM, nickname="x")])
        assert raw.startswith(MAGIC)
        assert raw.count(MAGIC) == 1
        assert raw[4] == MsgType.RESPONSE_MAC
        assert raw[4 + 1 + 1 + 6] == MsgType.RESPONSE_NICKNAME

    def test_encode_many_empty(self):
        assert encode_many([]) == MAGIC

    def test_nickname_over_cap(self):
        with pytest.raises(FieldTooLarge):
            encode_one(ResponseNickname(idem_id=IDEM, nickname="x" * (MAX_NICKNAME_BYTES + 1)))

    def test_nickname_cap_counts_utf8_bytes(self):
        # 32 two-byte characters fit exactly; 33 don't
        encode_one(ResponseNickname(idem_id=IDEM, nickname="é" * 32))
        with pytest.raises(FieldTooLarge):
            encode_one(ResponseNickname(idem_id=IDEM, nickname="é" * 33))

    def test_bad_idem_id(self):
        with pytest.raises(FieldTooLarge):
            encode_one(Request(idem_id=b"short"))

    def test_not_a_message(self):
        with pytest.raises(TypeError):
            encode_one("hello")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

class TestDecode:

    @pytest.mark.parametrize("msgs", [
        [],
        [Request(idem_id=IDEM, mac=None)],
        [Request(idem_id=IDEM, mac=MAC)],
        [ResponseMac(None)],
        [ResponseMac(MAC), ResponseNickname(idem_id=IDEM, nickname="snowflake")],
        [ResponseNickname(idem_id=IDEM, nickname="")],
        [ResponseNickname(idem_id=IDEM, nickname="雪花 ❄")],
        [ResponseMac(MAC), ResponseMac(None), Request(idem_id=b"\xff" * 8)],
    ])
    def test_roundtrip(self, msgs):
        assert decode_many(encode_many(msgs)) == msgs

    @pytest.mark.parametrize("data", [
        b"\x00\x00\x00\x00",
        b"\x9a\x4a\x43\x80\x01" + IDEM + b"\x00",
        b"\x81\x43\x4a\x9a" + encode_one(ResponseMac(None))[4:],
        b"GET / HTTP/1.1\r\n\r\n",
        b"\x00",
    ])
    def test_bad_magic(self, data):
        with pytest.raises(BadMagic):
            decode_many(data)

    def test_empty_buffer_is_truncated(self):
        with pytest.raises(Truncated):
            decode_many(b"")

    def test_unknown_tag(self):
        with pytest.raises(UnknownTag) as info:
            decode_many(MAGIC + b"\x07")
        assert info.value.tag == 7

    def test_unknown_tag_after_good_message(self):
        with pytest.raises(UnknownTag):
            decode_many(encode_one(ResponseMac(MAC)) + b"\x00")

    @pytest.mark.parametrize("cut", [1, 3, 8, 9])
    def test_truncated_request(self, cut):
        raw = encode_one(Request(idem_id=IDEM, mac=MAC))
        with pytest.raises(Truncated):
            decode_many(raw[:len(MAGIC) + cut])

    def test_truncated_nickname_body(self):
        raw = encode_one(ResponseNickname(idem_id=IDEM, nickname="snowflake"))
        with pytest.raises(Truncated):
            decode_many(raw[:-2])

    def test_nickname_length_over_cap(self):
        raw = MAGIC + _nickname_frame(IDEM, b"x" * (MAX_NICKNAME_BYTES + 1))
        with pytest.raises(FieldTooLarge):
            decode_many(raw)

    def test_nickname_huge_declared_length(self):
        body = IDEM + b"\xff\xff\xff\x7f"
        raw = MAGIC + b"\x03" + struct.pack("<I", len(body)) + body
        with pytest.raises(FieldTooLarge):
            decode_many(raw)

    def test_nickname_at_cap(self):
        raw = MAGIC + _nickname_frame(IDEM, b"x" * MAX_NICKNAME_BYTES)
        assert decode_many(raw) == [ResponseNickname(idem_id=IDEM, nickname="x" * MAX_NICKNAME_BYTES)]

    def test_invalid_utf8(self):
        with pytest.raises(InvalidUtf8):
            decode_many(MAGIC + _nickname_frame(IDEM, b"\xff\xfe"))

    def test_body_length_too_long(self):
        frame = _nickname_frame(IDEM, b"abc", body_len=8 + 4 + 3 + 1)
        with pytest.raises(BodyLengthMismatch):
            decode_many(MAGIC + frame + b"\x00")

    def test_body_length_too_short(self):
        frame = _nickname_frame(IDEM, b"abc", body_len=8 + 4 + 1)
        with pytest.raises(Truncated):
            decode_many(MAGIC + frame)

    def test_errors_are_message_errors(self):
        for cls in (BadMagic, UnknownTag, Truncated, InvalidUtf8, FieldTooLarge, BodyLengthMismatch):
            assert issubclass(cls, MessageError)
        assert issubclass(MessageError, ValueError)

