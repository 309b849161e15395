"""Unit tests for copiepate.framing (bytes codec and asyncio stream helpers)."""
from __future__ import annotations

import asyncio
import struct

import pytest

from copiepate.crypto import CryptoSession
from copiepate.errors import FormatError, FormatReason, ProtocolError
from copiepate.framing import (
    HEADER_STRUCT,
    decode_message,
    encode_message,
    expect_eof,
    read_message,
    read_status,
)
from copiepate.messages import PROTOCOL_VERSION, Message, MessageKind, StatusReply, seal_message


def _reader(data: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


def _header(length: int, version: int = PROTOCOL_VERSION, kind: int = 0) -> bytes:
    return HEADER_STRUCT.pack(version, kind, b"\x00" * 12, length)


@pytest.fixture()
def message(session: CryptoSession) -> Message:
    return seal_message(session, MessageKind.COPY, b"hello")


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


class TestLayout:
    def test_header_is_21_bytes(self) -> None:
        assert HEADER_STRUCT.size == 21

    def test_encoded_layout(self, message: Message) -> None:
        data = encode_message(message)
        version, kind, nonce, length = HEADER_STRUCT.unpack(data[:21])
        assert version == PROTOCOL_VERSION
        assert kind == MessageKind.COPY
        assert nonce == message.nonce
        assert length == len(message.ciphertext) + 16
        assert data[21:] == message.ciphertext + message.tag

    def test_length_prefix_is_little_endian(self, message: Message) -> None:
        data = encode_message(message)
        assert struct.unpack("<I", data[17:21])[0] == len(data) - 21

    def test_decode_inverts_encode(self, message: Message) -> None:
        assert decode_message(encode_message(message)) == message

    def test_encode_rejects_bad_nonce(self) -> None:
        with pytest.raises(ValueError):
            encode_message(Message(MessageKind.COPY, b"\x00" * 5, b"", b"\x00" * 16))


# ---------------------------------------------------------------------------
# decode_message guards
# ---------------------------------------------------------------------------


class TestDecodeGuards:
    def test_short_header_is_truncated(self, message: Message) -> None:
        with pytest.raises(FormatError) as info:
            decode_message(encode_message(message)[:10])
        assert info.value.reason is FormatReason.TRUNCATED

    def test_short_body_is_truncated(self, message: Message) -> None:
        with pytest.raises(FormatError) as info:
            decode_message(encode_message(message)[:-1])
        assert info.value.reason is FormatReason.TRUNCATED

    def test_trailing_bytes_are_rejected(self, message: Message) -> None:
        with pytest.raises(FormatError) as info:
            decode_message(encode_message(message) + b"\x00")
        assert info.value.reason is FormatReason.TRAILING_DATA

    def test_oversized_declared_length(self) -> None:
        with pytest.raises(FormatError) as info:
            decode_message(_header(1000) + b"\x00" * 1000, max_payload=100)
        assert info.value.reason is FormatReason.OVERSIZED

    def test_body_shorter_than_tag(self) -> None:
        with pytest.raises(FormatError) as info:
            decode_message(_header(8) + b"\x00" * 8)
        assert info.value.reason is FormatReason.TRUNCATED

    def test_wrong_version(self) -> None:
        with pytest.raises(FormatError) as info:
            decode_message(_header(16, version=99) + b"\x00" * 16)
        assert info.value.reason is FormatReason.UNSUPPORTED_VERSION

    def test_unknown_kind(self) -> None:
        with pytest.raises(FormatError) as info:
            decode_message(_header(16, kind=7) + b"\x00" * 16)
        assert info.value.reason is FormatReason.UNKNOWN_KIND

    def test_limit_is_plaintext_size_plus_tag(self, session: CryptoSession) -> None:
        msg = seal_message(session, MessageKind.COPY, b"x" * 100)
        assert decode_message(encode_message(msg), max_payload=100) == msg
        with pytest.raises(FormatError):
            decode_message(encode_message(msg), max_payload=99)


# ---------------------------------------------------------------------------
# Stream helpers
# ---------------------------------------------------------------------------


class TestStreamHelpers:
    @pytest.mark.asyncio
    async def test_read_message(self, message: Message) -> None:
        assert await read_message(_reader(encode_message(message))) == message

    @pytest.mark.asyncio
    async def test_eof_mid_body_is_truncated(self, message: Message) -> None:
        with pytest.raises(FormatError) as info:
            await read_message(_reader(encode_message(message)[:30]))
        assert info.value.reason is FormatReason.TRUNCATED

    @pytest.mark.asyncio
    async def test_eof_mid_header_is_truncated(self) -> None:
        with pytest.raises(FormatError) as info:
            await read_message(_reader(b"\x01\x00"))
        assert info.value.reason is FormatReason.TRUNCATED

    @pytest.mark.asyncio
    async def test_oversized_rejected_before_body_is_read(self) -> None:
        # Only the header is available and the stream stays open: if the
        # reader tried to pull the body it would block and hit the timeout.
        reader = _reader(_header(10 * 1024 * 1024), eof=False)
        with pytest.raises(FormatError) as info:
            await asyncio.wait_for(read_message(reader, max_payload=1024), timeout=1.0)
        assert info.value.reason is FormatReason.OVERSIZED

    @pytest.mark.asyncio
    async def test_expect_eof_accepts_clean_close(self) -> None:
        await expect_eof(_reader(b""))

    @pytest.mark.asyncio
    async def test_expect_eof_rejects_second_frame(self) -> None:
        with pytest.raises(FormatError) as info:
            await expect_eof(_reader(b"\x01"))
        assert info.value.reason is FormatReason.TRAILING_DATA

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", list(StatusReply))
    async def test_read_status(self, status: StatusReply) -> None:
        assert await read_status(_reader(bytes([status]))) is status

    @pytest.mark.asyncio
    async def test_read_status_on_eof(self) -> None:
        with pytest.raises(ProtocolError):
            await read_status(_reader(b""))

    @pytest.mark.asyncio
    async def test_read_status_unknown_byte(self) -> None:
        with pytest.raises(ProtocolError):
            await read_status(_reader(b"\x09"))
