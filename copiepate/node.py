import asyncio
import logging
from enum import Enum
from typing import BinaryIO, List, Optional

from .crypto import CryptoSession
from .errors import (
    AuthError,
    ClipboardError,
    ConnectError,
    ExecError,
    FormatError,
    PayloadTooLarge,
    ProtocolError,
    TransportError,
)
from .framing import MAX_PAYLOAD_SIZE, expect_eof, read_message, read_status, write_message, write_status
from .messages import Message, MessageKind, StatusReply, open_message, seal_message
from .sinks import DEFAULT_EXEC_TIMEOUT, ClipboardSink, ExecSink

"""
node.py — server and client roles for copiepate.

Server side:
- CopyServer binds once and hands every accepted connection to its own
  ServerConnectionHandler. Handlers share nothing mutable; the CryptoSession
  they all use only ever decrypts.
- A handler reads one frame, opens it, dispatches it to the sinks, answers
  with one status byte and closes. Nothing it hits escapes to the listener.

Client side:
- ClientSession connects, sends one sealed frame, half-closes, waits for the
  status byte. No retries: it is an interactive tool behind an SSH tunnel.
"""

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
READ_CHUNK_SIZE = 64 * 1024


def _peer_label(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


# -------------------------
# Server
# -------------------------

class HandlerState(Enum):
    ACCEPTED = "accepted"
    READING = "reading"
    DECRYPTING = "decrypting"
    DISPATCHING = "dispatching"
    REPLYING = "replying"
    CLOSED = "closed"


class ServerConnectionHandler:
    """
    Processes exactly one connection:
    ACCEPTED -> READING -> DECRYPTING -> DISPATCHING -> REPLYING -> CLOSED.

    Every failure path jumps straight to REPLYING with the matching status;
    `outcome` holds the reply that was (or would have been) sent.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        session: CryptoSession,
        clipboard: ClipboardSink,
        exec_sink: Optional[ExecSink] = None,
        max_payload: int = MAX_PAYLOAD_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.session = session
        self.clipboard = clipboard
        self.exec_sink = exec_sink
        self.max_payload = max_payload
        self.timeout = timeout
        self.peer = _peer_label(writer)
        self.state = HandlerState.ACCEPTED
        self.history: List[HandlerState] = [HandlerState.ACCEPTED]
        self.outcome: Optional[StatusReply] = None

    def _enter(self, state: HandlerState) -> None:
        self.state = state
        self.history.append(state)

    async def handle(self) -> StatusReply:
        """Run the whole pipeline. Never raises; always ends CLOSED."""
        try:
            self.outcome = await self._process()
            self._enter(HandlerState.REPLYING)
            await self._reply(self.outcome)
        except Exception:
            # Last line of defence: the listener must keep accepting.
            logger.exception("[%s] Unexpected error while handling connection", self.peer)
            if self.state is not HandlerState.REPLYING:
                # Nothing was sent yet; the peer still gets its one status byte.
                self.outcome = StatusReply.INTERNAL_ERROR
                self._enter(HandlerState.REPLYING)
                await self._reply(self.outcome)
        finally:
            await self._close()
        return self.outcome

    async def _process(self) -> StatusReply:
        # === READING
        self._enter(HandlerState.READING)
        try:
            message = await asyncio.wait_for(self._read(), timeout=self.timeout)
        except FormatError as exc:
            logger.error("[%s] Rejected frame: %s", self.peer, exc)
            return StatusReply.INTERNAL_ERROR
        except asyncio.TimeoutError:
            logger.error("[%s] Timed out waiting for a complete frame", self.peer)
            return StatusReply.INTERNAL_ERROR
        except OSError as exc:
            logger.error("[%s] Connection lost while reading: %s", self.peer, exc)
            return StatusReply.INTERNAL_ERROR

        # === DECRYPTING
        self._enter(HandlerState.DECRYPTING)
        try:
            plaintext = open_message(self.session, message)
        except AuthError:
            logger.warning(
                "[%s] Message failed authentication; wrong secret or tampered data. Discarding.",
                self.peer,
            )
            return StatusReply.AUTH_FAILED

        # === DISPATCHING
        self._enter(HandlerState.DISPATCHING)
        # Lossy on purpose: the other side's clipboard may not be UTF-8.
        text = plaintext.decode("utf-8", errors="replace")
        logger.debug("[%s] Received message (%d bytes): %r", self.peer, len(plaintext), text)
        if message.kind is MessageKind.COPY:
            return await self._dispatch_copy(text)
        return await self._dispatch_exec(text)

    async def _read(self) -> Message:
        message = await read_message(self.reader, self.max_payload)
        await expect_eof(self.reader)
        return message

    async def _dispatch_copy(self, text: str) -> StatusReply:
        try:
            # Clipboard backends block (they shell out); keep the loop free.
            await asyncio.to_thread(self.clipboard.set_clipboard, text)
        except ClipboardError as exc:
            logger.error("[%s] Failed to write to clipboard: %s", self.peer, exc)
            return StatusReply.INTERNAL_ERROR
        logger.info("[%s] New message saved to clipboard", self.peer)

        if self.exec_sink is not None:
            try:
                await self.exec_sink.run(text)
            except ExecError as exc:
                # Clipboard already holds the text; the reply stays OK.
                logger.error("[%s] Failed to execute custom command: %s", self.peer, exc)
            except Exception:
                logger.exception("[%s] Custom command crashed", self.peer)
        return StatusReply.OK

    async def _dispatch_exec(self, text: str) -> StatusReply:
        if self.exec_sink is None:
            logger.error("[%s] Received an exec message but no exec command is configured", self.peer)
            return StatusReply.INTERNAL_ERROR
        try:
            await self.exec_sink.run(text)
        except ExecError as exc:
            logger.error("[%s] Failed to execute custom command: %s", self.peer, exc)
            return StatusReply.INTERNAL_ERROR
        logger.info("[%s] Message passed to exec command", self.peer)
        return StatusReply.OK

    async def _reply(self, status: StatusReply) -> None:
        try:
            await asyncio.wait_for(write_status(self.writer, status), timeout=self.timeout)
        except (asyncio.TimeoutError, OSError) as exc:
            # Peer hung up; nothing left to tell it.
            logger.debug("[%s] Could not send %s: %r", self.peer, status.name, exc)

    async def _close(self) -> None:
        self._enter(HandlerState.CLOSED)
        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=self.timeout)
        except (asyncio.TimeoutError, OSError):
            pass


class CopyServer:
    """
    Listener: bind once, accept forever, one handler per connection.

    asyncio's accept loop already logs and survives transient accept()
    failures; a bind failure surfaces from start() as OSError.
    """

    def __init__(
        self,
        host: str,
        port: int,
        session: CryptoSession,
        clipboard: ClipboardSink,
        exec_sink: Optional[ExecSink] = None,
        max_payload: int = MAX_PAYLOAD_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.session = session
        self.clipboard = clipboard
        self.exec_sink = exec_sink
        self.max_payload = max_payload
        self.timeout = timeout
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> asyncio.AbstractServer:
        """Bind the socket. Raises OSError if the address is unavailable."""
        self._server = await asyncio.start_server(self.handle_conn, self.host, self.port)
        addrs = ", ".join(str(sock.getsockname()) for sock in self._server.sockets or [])
        logger.info("Listening on %s", addrs)
        return self._server

    @property
    def bound_port(self) -> int:
        """Actual port (differs from `port` when binding port 0)."""
        if self._server is None or not self._server.sockets:
            raise RuntimeError("Server is not started")
        return self._server.sockets[0].getsockname()[1]

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        handler = ServerConnectionHandler(
            reader,
            writer,
            self.session,
            self.clipboard,
            self.exec_sink,
            max_payload=self.max_payload,
            timeout=self.timeout,
        )
        logger.debug("[%s] Connection accepted", handler.peer)
        status = await handler.handle()
        logger.debug("[%s] Connection closed with %s", handler.peer, status.name)


# -------------------------
# Client
# -------------------------

class ClientState(Enum):
    CONNECTING = "connecting"
    SENDING = "sending"
    AWAITING_REPLY = "awaiting_reply"
    DONE = "done"
    FAILED = "failed"


class ClientSession:
    """
    One connection, one message, one reply:
    CONNECTING -> SENDING -> AWAITING_REPLY -> DONE, or FAILED from any step.

    The server may run its exec command before answering, so the reply wait
    is `timeout + exec_timeout` rather than plain `timeout`.
    """

    def __init__(
        self,
        host: str,
        port: int,
        session: CryptoSession,
        max_payload: int = MAX_PAYLOAD_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        exec_timeout: float = DEFAULT_EXEC_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.session = session
        self.max_payload = max_payload
        self.timeout = timeout
        self.exec_timeout = exec_timeout
        self.state: Optional[ClientState] = None
        self.history: List[ClientState] = []
        self.status: Optional[StatusReply] = None

    @property
    def reply_timeout(self) -> float:
        return self.timeout + self.exec_timeout

    def _enter(self, state: ClientState) -> None:
        self.state = state
        self.history.append(state)

    async def send(self, plaintext: bytes, kind: MessageKind = MessageKind.COPY) -> StatusReply:
        """
        Deliver `plaintext` and return the server's StatusReply.

        Raises:
            PayloadTooLarge, ConnectError, TransportError, ProtocolError
        """
        if len(plaintext) > self.max_payload:
            self._enter(ClientState.FAILED)
            raise PayloadTooLarge(len(plaintext), self.max_payload)

        # === CONNECTING
        self._enter(ClientState.CONNECTING)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self._enter(ClientState.FAILED)
            raise ConnectError(f"Timed out connecting to {self.host}:{self.port}") from None
        except OSError as exc:
            self._enter(ClientState.FAILED)
            raise ConnectError(f"Could not connect to {self.host}:{self.port}: {exc}") from exc

        try:
            # === SENDING
            self._enter(ClientState.SENDING)
            message = seal_message(self.session, kind, plaintext)
            try:
                await asyncio.wait_for(write_message(writer, message), timeout=self.timeout)
                if writer.can_write_eof():
                    writer.write_eof()  # tells the server this was the only frame
            except asyncio.TimeoutError:
                raise TransportError("Timed out sending message") from None
            except OSError as exc:
                raise TransportError(f"Failed to send message: {exc}") from exc

            # === AWAITING_REPLY
            self._enter(ClientState.AWAITING_REPLY)
            try:
                status = await asyncio.wait_for(read_status(reader), timeout=self.reply_timeout)
            except asyncio.TimeoutError:
                raise TransportError("Timed out waiting for the server reply") from None
            except OSError as exc:
                raise TransportError(f"Failed to read server reply: {exc}") from exc
        except (TransportError, ProtocolError):
            self._enter(ClientState.FAILED)
            raise
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

        # === DONE
        self._enter(ClientState.DONE)
        self.status = status
        return status


def read_payload(stream: BinaryIO, limit: int = MAX_PAYLOAD_SIZE, tee: Optional[BinaryIO] = None) -> bytes:
    """
    Read all of `stream`, keeping at most `limit` bytes in memory.

    With `tee`, every chunk is copied there unmodified as it is read, before
    any size check or network activity, so a pipeline behind us still sees
    the full input. Oversized input is drained (for the tee) and then
    rejected with PayloadTooLarge.
    """
    kept = bytearray()
    total = 0
    while True:
        chunk = stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if tee is not None:
            tee.write(chunk)
        if len(kept) <= limit:
            kept.extend(chunk[: limit + 1 - len(kept)])
    if tee is not None:
        tee.flush()
    if total > limit:
        raise PayloadTooLarge(total, limit)
    return bytes(kept)
