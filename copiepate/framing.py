import asyncio
import struct

from .crypto import NONCE_SIZE, TAG_SIZE
from .errors import FormatError, FormatReason, ProtocolError
from .messages import PROTOCOL_VERSION, Message, MessageKind, StatusReply

"""
framing.py — fixed header + length-prefixed body for asyncio streams.

Protocol (one message per connection, then one status byte back):
- Header: version (u32) | kind (u8) | nonce (12 bytes) | body length N (u32),
  all little-endian.
- Body: N bytes of ciphertext || 16-byte Poly1305 tag.
- Reply: a single StatusReply byte.

The length is checked against the cap BEFORE the body is read, so a peer
announcing a huge frame costs us 21 bytes of memory, not N.
"""

# 4 MiB of plaintext by default; the body may carry one tag on top of that.
MAX_PAYLOAD_SIZE = 4 * 1024 * 1024
HEADER_STRUCT = struct.Struct(f"<IB{NONCE_SIZE}sI")
STATUS_STRUCT = struct.Struct("<B")


def max_body_size(max_payload: int) -> int:
    return max_payload + TAG_SIZE


# -------------------------
# Header / body checks (shared by the bytes and stream paths)
# -------------------------

def _parse_header(header: bytes, max_payload: int):
    version, kind, nonce, length = HEADER_STRUCT.unpack(header)
    if version != PROTOCOL_VERSION:
        raise FormatError(
            FormatReason.UNSUPPORTED_VERSION,
            f"received {version}, expected {PROTOCOL_VERSION}",
        )
    try:
        kind = MessageKind(kind)
    except ValueError:
        raise FormatError(FormatReason.UNKNOWN_KIND, str(kind)) from None
    if length > max_body_size(max_payload):
        raise FormatError(
            FormatReason.OVERSIZED,
            f"{length} > {max_body_size(max_payload)}",
        )
    if length < TAG_SIZE:
        raise FormatError(FormatReason.TRUNCATED, f"body of {length} bytes has no room for a tag")
    return kind, nonce, length


def _split_body(kind: MessageKind, nonce: bytes, body: bytes) -> Message:
    return Message(kind=kind, nonce=nonce, ciphertext=body[:-TAG_SIZE], tag=body[-TAG_SIZE:])


# -------------------------
# Bytes API
# -------------------------

def encode_message(message: Message) -> bytes:
    """Message -> header + body bytes."""
    if len(message.nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes")
    if len(message.tag) != TAG_SIZE:
        raise ValueError(f"Tag must be {TAG_SIZE} bytes")
    body = message.ciphertext + message.tag
    header = HEADER_STRUCT.pack(PROTOCOL_VERSION, int(message.kind), message.nonce, len(body))
    return header + body


def decode_message(data: bytes, max_payload: int = MAX_PAYLOAD_SIZE) -> Message:
    """
    Bytes -> Message. The buffer must hold exactly one frame.

    Raises:
        FormatError: truncated, oversized, wrong version/kind, or trailing bytes.
    """
    if len(data) < HEADER_STRUCT.size:
        raise FormatError(FormatReason.TRUNCATED, f"{len(data)} < {HEADER_STRUCT.size} header bytes")
    kind, nonce, length = _parse_header(data[:HEADER_STRUCT.size], max_payload)

    body = data[HEADER_STRUCT.size:]
    if len(body) < length:
        raise FormatError(FormatReason.TRUNCATED, f"{len(body)} < {length} body bytes")
    if len(body) > length:
        raise FormatError(FormatReason.TRAILING_DATA, f"{len(body) - length} extra bytes")
    return _split_body(kind, nonce, body)


# -------------------------
# Stream API
# -------------------------

async def read_message(reader: asyncio.StreamReader, max_payload: int = MAX_PAYLOAD_SIZE) -> Message:
    """
    Read one framed Message.

    Raises:
        FormatError: on any violation, including EOF mid-frame (TRUNCATED).
    """
    # 1) Fixed-size header.
    try:
        header = await reader.readexactly(HEADER_STRUCT.size)
    except asyncio.IncompleteReadError as exc:
        raise FormatError(FormatReason.TRUNCATED, f"EOF after {len(exc.partial)} header bytes") from exc

    # 2) Sanity checks before allocating/reading the body.
    kind, nonce, length = _parse_header(header, max_payload)

    # 3) Exactly `length` body bytes.
    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        raise FormatError(FormatReason.TRUNCATED, f"EOF after {len(exc.partial)} of {length} body bytes") from exc
    return _split_body(kind, nonce, body)


async def expect_eof(reader: asyncio.StreamReader) -> None:
    """The client half-closes after its frame; anything else is a second frame."""
    extra = await reader.read(1)
    if extra:
        raise FormatError(FormatReason.TRAILING_DATA, "peer kept sending after the frame")


async def write_message(writer: asyncio.StreamWriter, message: Message) -> None:
    writer.write(encode_message(message))
    await writer.drain()  # Let the transport flush; important under backpressure.


async def read_status(reader: asyncio.StreamReader) -> StatusReply:
    """Read the single reply byte. Missing or unknown byte is a ProtocolError."""
    try:
        raw = await reader.readexactly(STATUS_STRUCT.size)
    except asyncio.IncompleteReadError as exc:
        raise ProtocolError("Server closed the connection without a status reply") from exc
    (value,) = STATUS_STRUCT.unpack(raw)
    try:
        return StatusReply(value)
    except ValueError:
        raise ProtocolError(f"Unknown status byte: {value}") from None


async def write_status(writer: asyncio.StreamWriter, status: StatusReply) -> None:
    writer.write(STATUS_STRUCT.pack(int(status)))
    await writer.drain()
