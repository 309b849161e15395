import struct
from dataclasses import dataclass
from enum import IntEnum

from .crypto import CryptoSession

"""
messages.py — what travels on the wire, and how it gets sealed/opened.

What this module does:
- Defines the one Message a client sends per connection, and the one-byte
  StatusReply the server answers with.
- Builds the associated data that ties each ciphertext to the protocol
  version and the message kind, so a COPY can't be replayed as an EXEC
  (or across an incompatible protocol version).
- Wraps CryptoSession.seal/open into whole-message helpers.
"""

# Bump on any breaking change to framing or associated data.
PROTOCOL_VERSION = 1

AAD_PREFIX = b"copiepate"
AAD_STRUCT = struct.Struct("<IB")  # version (u32) + kind (u8)


class MessageKind(IntEnum):
    COPY = 0  # clipboard, then the optional exec command
    EXEC = 1  # exec command only, clipboard untouched


class StatusReply(IntEnum):
    OK = 0
    AUTH_FAILED = 1
    INTERNAL_ERROR = 2


@dataclass(frozen=True)
class Message:
    kind: MessageKind
    nonce: bytes
    ciphertext: bytes
    tag: bytes


def associated_data(kind: MessageKind, version: int = PROTOCOL_VERSION) -> bytes:
    """Authenticated-but-not-encrypted bytes bound into every tag."""
    return AAD_PREFIX + AAD_STRUCT.pack(version, int(kind))


def seal_message(session: CryptoSession, kind: MessageKind, plaintext: bytes) -> Message:
    """Encrypt `plaintext` with a fresh nonce and package it as a Message."""
    nonce, ciphertext, tag = session.seal(plaintext, associated_data(kind))
    return Message(kind=kind, nonce=nonce, ciphertext=ciphertext, tag=tag)


def open_message(session: CryptoSession, message: Message) -> bytes:
    """
    Verify + decrypt a received Message.

    Raises AuthError on any mismatch; callers must not act on the message
    in that case (there is nothing to act on anyway).
    """
    return session.open(
        message.nonce,
        message.ciphertext,
        message.tag,
        associated_data(message.kind),
    )
