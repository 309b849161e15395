"""
crypto.py — pre-shared-secret AEAD helpers (ChaCha20-Poly1305).

Why this exists:
- Keep all cipher bits in one place so the rest of the code can call
  `seal/open` without worrying about nonces, tags or key sizes.
- Secrets travel through config files and env vars as standard Base64.
- Fail closed: anything odd on the decrypt side is an AuthError, full stop.

Notes:
- ChaCha20-Poly1305 (RFC 8439): 256-bit key, 96-bit nonce, 128-bit tag.
- Tag comparison happens inside `cryptography` (OpenSSL CRYPTO_memcmp),
  which is constant-time; we never compare tags ourselves.
- A 32-byte secret IS the key. Other lengths go through HKDF-SHA256.
"""

import base64
import binascii
import os
from typing import Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import AuthError, NonceReuseError, SecretError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

KDF_INFO = b"copiepate v1 key"

# Public on purpose: --insecure mode uses it, so anyone can read the traffic.
INSECURE_KEY = b"_WARNING_UNSECURE_KEY_PLAINTEXT_"

# Explicit nonces remembered per session for reuse detection.
NONCE_CACHE_LIMIT = 16384


# -----------------------------
# Secret helpers (Base64)
# -----------------------------

def decode_secret(text: str) -> bytes:
    """Strict Base64 -> bytes. Empty or malformed input is a SecretError."""
    if not text or not text.strip():
        raise SecretError("No secret provided.")
    try:
        secret = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        # Don't echo the value back; it may be a real secret with a typo.
        raise SecretError(f"Secret is not valid Base64: {exc}") from exc
    if not secret:
        raise SecretError("Secret decodes to zero bytes.")
    return secret


def generate_secret() -> str:
    """Fresh 256-bit secret, Base64-encoded, ready to paste into config.toml."""
    return base64.b64encode(os.urandom(KEY_SIZE)).decode("ascii")


def derive_key(secret: bytes) -> bytes:
    """
    Turn the configured secret into a cipher key.

    A KEY_SIZE secret is used as-is, so keys made by `generate_secret()` work
    unchanged. Anything shorter or longer is stretched/compressed with
    HKDF-SHA256. Same secret in, same key out, on every peer.
    """
    if not secret:
        raise SecretError("Secret must not be empty.")
    if len(secret) == KEY_SIZE:
        return bytes(secret)
    hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=None, info=KDF_INFO)
    return hkdf.derive(secret)


# ---------------------------
# Session
# ---------------------------

class CryptoSession:
    """
    Holds the derived key and the AEAD object. One instance per process.

    `open()` keeps no state, so a single server-side session can be shared
    by every connection handler. `seal()` remembers explicit nonces to catch
    reuse; it is used by the single-shot client only.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise SecretError(f"Key must be {KEY_SIZE} bytes.")
        self._aead = ChaCha20Poly1305(key)
        # Insertion-ordered, so the oldest nonce is evicted first.
        self._used_nonces: Dict[bytes, None] = {}

    @classmethod
    def from_secret(cls, secret: bytes) -> "CryptoSession":
        return cls(derive_key(secret))

    def __repr__(self) -> str:
        return "CryptoSession(key=<redacted>)"

    def seal(
        self,
        plaintext: bytes,
        associated_data: Optional[bytes] = None,
        nonce: Optional[bytes] = None,
    ) -> Tuple[bytes, bytes, bytes]:
        """
        Encrypt + authenticate. Returns (nonce, ciphertext, tag).

        Leave `nonce` alone in real code: a fresh random one is drawn per call.
        Passing one is for tests/interop; handing the same one in twice raises
        NonceReuseError instead of silently breaking the cipher.
        """
        if nonce is None:
            nonce = os.urandom(NONCE_SIZE)
        else:
            if len(nonce) != NONCE_SIZE:
                raise ValueError(f"Nonce must be {NONCE_SIZE} bytes.")
            if nonce in self._used_nonces:
                raise NonceReuseError("Nonce already used with this key.")
            self._used_nonces[nonce] = None
            if len(self._used_nonces) > NONCE_CACHE_LIMIT:
                del self._used_nonces[next(iter(self._used_nonces))]

        sealed = self._aead.encrypt(nonce, plaintext, associated_data)
        return nonce, sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

    def open(
        self,
        nonce: bytes,
        ciphertext: bytes,
        tag: bytes,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """
        Verify + decrypt. Returns the plaintext or raises AuthError.

        There is no partial result: the library checks the tag before it
        hands back a single byte.
        """
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise AuthError()
        try:
            return self._aead.decrypt(nonce, ciphertext + tag, associated_data)
        except InvalidTag:
            raise AuthError() from None
