"""Shared fixtures: secrets, sessions, recording sinks and a loopback server."""
from __future__ import annotations

import os
import threading
from typing import List

import pytest
import pytest_asyncio

from copiepate.crypto import CryptoSession
from copiepate.errors import ClipboardError
from copiepate.node import CopyServer


class RecordingClipboard:
    """Clipboard double: remembers every text it was given."""

    def __init__(self) -> None:
        self.contents: List[str] = []
        self._lock = threading.Lock()

    def set_clipboard(self, text: str) -> None:
        with self._lock:
            self.contents.append(text)


class FailingClipboard:
    def __init__(self) -> None:
        self.calls = 0

    def set_clipboard(self, text: str) -> None:
        self.calls += 1
        raise ClipboardError("no display")


@pytest.fixture()
def secret() -> bytes:
    return os.urandom(32)


@pytest.fixture()
def session(secret: bytes) -> CryptoSession:
    return CryptoSession.from_secret(secret)


@pytest.fixture()
def clipboard() -> RecordingClipboard:
    return RecordingClipboard()


@pytest_asyncio.fixture()
async def server(session: CryptoSession, clipboard: RecordingClipboard):
    srv = CopyServer("127.0.0.1", 0, session, clipboard, timeout=2.0)
    await srv.start()
    yield srv
    await srv.close()
