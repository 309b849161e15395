from enum import Enum

"""
Every exception copiepate raises, in one place.

Scope of each error:
- ConfigError / SecretError: startup only; the process exits before binding.
- FormatError / AuthError / ClipboardError / ExecError: one server connection;
  they turn into a StatusReply and never reach the accept loop.
- ConnectError / TransportError / ProtocolError / PayloadTooLarge: one client
  invocation; they turn into an exit code.
"""


class CopiepateError(Exception):
    """Base class so callers can catch anything this package raises."""


# -------------
# Startup
# -------------

class ConfigError(CopiepateError):
    """Configuration file missing, unreadable or carrying unknown keys."""


class SecretError(ConfigError):
    """No secret configured, or it is not valid base64."""


# -------------
# Wire / crypto
# -------------

class FormatReason(Enum):
    TRUNCATED = "truncated"
    OVERSIZED = "oversized"
    UNSUPPORTED_VERSION = "unsupported protocol version"
    UNKNOWN_KIND = "unknown message kind"
    TRAILING_DATA = "trailing data after frame"


class FormatError(CopiepateError):
    """A frame that cannot be decoded. Carries the reason for tests and logs."""

    def __init__(self, reason: FormatReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        msg = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(msg)


class AuthError(CopiepateError):
    """Authenticated decryption failed. Never paired with any plaintext."""

    def __init__(self, detail: str = "verification failed") -> None:
        super().__init__(detail)


class NonceReuseError(CopiepateError):
    """An explicit nonce was handed to seal() twice for the same key."""


# -------------
# Sinks
# -------------

class ClipboardError(CopiepateError):
    """The desktop clipboard refused the write."""


class ExecError(CopiepateError):
    """The exec command could not start, exited non-zero, or timed out."""


# -------------
# Client side
# -------------

class ConnectError(CopiepateError):
    """Server unreachable (refused, unresolvable, timed out)."""


class TransportError(CopiepateError):
    """Read/write failure on an established connection."""


class ProtocolError(CopiepateError):
    """Peer closed or answered with something that is not a status byte."""


class PayloadTooLarge(CopiepateError):
    """Input larger than the configured maximum payload size."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Payload too large: {size} > {limit}")
