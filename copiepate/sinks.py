import asyncio
import logging
import os
import signal
from typing import Optional, Protocol

import pyperclip

from .errors import ClipboardError, ExecError

"""
Where decrypted text ends up on the server.

Two capabilities, both injected into the connection handler:
- ClipboardSink: the primary contract. Default is pyperclip (xclip/xsel/
  wl-clipboard on Linux, pbcopy on macOS, win32 on Windows).
- ExecSink: optional shell command that gets the text on stdin. Best-effort,
  bounded in time, output only logged.
"""

logger = logging.getLogger(__name__)

DEFAULT_EXEC_TIMEOUT = 10.0


class ClipboardSink(Protocol):
    def set_clipboard(self, text: str) -> None:
        """Replace the clipboard contents. Raise ClipboardError on failure."""
        ...


class PyperclipClipboard:
    """Desktop clipboard through pyperclip."""

    def set_clipboard(self, text: str) -> None:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as exc:
            raise ClipboardError(str(exc)) from exc


class ExecSink:
    """
    Runs `command` through the shell with the received text on stdin.

    The wait is bounded by `timeout`; a command that outlives it is killed
    and reported as an ExecError. Non-zero exit is an ExecError too.
    """

    def __init__(self, command: str, timeout: float = DEFAULT_EXEC_TIMEOUT) -> None:
        self.command = command
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"ExecSink({self.command!r}, timeout={self.timeout})"

    async def run(self, text: str) -> None:
        logger.debug("Executing command: %s", self.command)
        try:
            proc = await asyncio.create_subprocess_shell(
                self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # Own process group, so a timeout kills the whole pipeline.
                start_new_session=True,
            )
        except OSError as exc:
            raise ExecError(f"Failed to start {self.command!r}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(text.encode("utf-8")), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await _kill(proc)
            raise ExecError(f"{self.command!r} did not finish within {self.timeout}s") from None
        except (BrokenPipeError, ConnectionResetError):
            # Command exited without reading stdin; its exit status decides.
            stdout, stderr = b"", b""
            await proc.wait()

        if stdout:
            logger.debug("exec stdout: %s", stdout.decode("utf-8", errors="replace").rstrip())
        if stderr:
            logger.debug("exec stderr: %s", stderr.decode("utf-8", errors="replace").rstrip())
        if proc.returncode != 0:
            raise ExecError(f"{self.command!r} exited with status {proc.returncode}")


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the shell and everything it spawned, then reap it."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


def build_exec_sink(command: Optional[str], timeout: float = DEFAULT_EXEC_TIMEOUT) -> Optional[ExecSink]:
    """None/empty command means no exec sink at all."""
    if not command:
        return None
    return ExecSink(command, timeout)
