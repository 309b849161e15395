import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import BinaryIO, List, Optional

from .config import Config, load_config
from .crypto import CryptoSession, generate_secret
from .errors import (
    ConfigError,
    ConnectError,
    PayloadTooLarge,
    ProtocolError,
    TransportError,
)
from .messages import MessageKind, StatusReply
from .node import ClientSession, CopyServer, read_payload
from .sinks import ClipboardSink, PyperclipClipboard, build_exec_sink

"""
run_node.py — single entry point for both roles.

What you can do here:
- Server:  copiepate --server             listen and paste into the clipboard
- Client:  echo hi | copiepate            send stdin to the server
- Tee:     some-cmd | copiepate --tee | less
- Secret:  copiepate --generate-secret    print a fresh Base64 secret

Exit codes (client): 0 sent, 3 wrong secret, 1 anything else.
"""

logger = logging.getLogger("copiepate")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTH_FAILED = 3

STATUS_EXIT_CODES = {
    StatusReply.OK: EXIT_OK,
    StatusReply.AUTH_FAILED: EXIT_AUTH_FAILED,
    StatusReply.INTERNAL_ERROR: EXIT_FAILURE,
}


# -------------------------
# Logging
# -------------------------

def setup_logging(verbosity: int) -> None:
    """Service messages go to stderr; stdout stays clean for --tee."""
    level = logging.INFO if verbosity == 0 else logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
    )


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(config: Config, clipboard: Optional[ClipboardSink] = None) -> None:
    """Bind and serve forever. Bind failures propagate as OSError."""
    server = CopyServer(
        config.address,
        config.port,
        CryptoSession.from_secret(config.secret),
        clipboard if clipboard is not None else PyperclipClipboard(),
        build_exec_sink(config.exec_command, config.exec_timeout),
        max_payload=config.max_payload,
        timeout=config.timeout,
    )
    await server.start()
    await server.serve_forever()


async def run_client(config: Config, payload: bytes, kind: MessageKind = MessageKind.COPY) -> StatusReply:
    client = ClientSession(
        config.address,
        config.port,
        CryptoSession.from_secret(config.secret),
        max_payload=config.max_payload,
        timeout=config.timeout,
        exec_timeout=config.exec_timeout,
    )
    return await client.send(payload, kind)


def client_main(
    config: Config,
    kind: MessageKind = MessageKind.COPY,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
) -> int:
    """Read stdin (tee-ing it if asked), send it, turn the outcome into an exit code."""
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout.buffer

    try:
        payload = read_payload(stdin, config.max_payload, tee=stdout if config.tee else None)
    except PayloadTooLarge as exc:
        logger.error("Failed to send message: %s", exc)
        return EXIT_FAILURE

    try:
        status = asyncio.run(run_client(config, payload, kind))
    except ConnectError as exc:
        logger.error("Failed to reach server: %s", exc)
        return EXIT_FAILURE
    except (TransportError, ProtocolError) as exc:
        logger.error("Failed to send message: %s", exc)
        return EXIT_FAILURE

    if status is StatusReply.OK:
        logger.info("Message sent successfully")
    elif status is StatusReply.AUTH_FAILED:
        logger.error(
            "Server rejected the message: authentication failed. "
            "Check that client and server use the same secret."
        )
    else:
        logger.error("Server failed to process the message.")
    return STATUS_EXIT_CODES[status]


def server_main(config: Config) -> int:
    try:
        asyncio.run(run_server(config))
    except OSError as exc:
        logger.error("Failed to start server on %s:%s: %s", config.address, config.port, exc)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return EXIT_OK


# -------------------------
# Argument parsing
# -------------------------

def build_parser() -> argparse.ArgumentParser:
    """
    Quick examples:
      Server:  copiepate --server --address 0.0.0.0 --exec 'notify-send copied'
      Client:  ssh -R 2323:127.0.0.1:2323 host; then on host: echo hi | copiepate
    """
    p = argparse.ArgumentParser(
        prog="copiepate",
        description="Send a paste event from a client over the network to a server.",
    )
    # store_true with default=None so an absent flag doesn't mask config.toml.
    p.add_argument("--config", dest="config_file", type=Path,
                   help="Configuration file (default: ~/.config/copiepate/config.toml).")
    p.add_argument("-s", "--server", dest="server", action="store_true", default=None,
                   help="Start the server that listens for copy events.")
    p.add_argument("-a", "--address",
                   help="Server address in client mode, bind address in server mode.")
    p.add_argument("-p", "--port", type=int, help="Server port.")
    p.add_argument("--secret", help="Base64 secret shared by client and server.")
    p.add_argument("-k", "--insecure", action="store_true", default=None,
                   help="Use a public key instead of a secret. Anybody can read the messages.")
    p.add_argument("--tee", action="store_true", default=None,
                   help="[Client] Also copy stdin to stdout, like tee.")
    p.add_argument("--exec", dest="exec",
                   help="[Server] Shell command run on each message, fed the message on stdin.")
    p.add_argument("--exec-only", action="store_true",
                   help="[Client] Only run the server's exec command; leave its clipboard alone.")
    p.add_argument("--timeout", type=float, help="Connect/read/write timeout in seconds.")
    p.add_argument("--exec-timeout", dest="exec_timeout", type=float,
                   help="[Server] Seconds the exec command may run before it is killed. "
                        "[Client] Added to the reply wait.")
    p.add_argument("-v", "--verbose", dest="verbosity", action="count", default=0,
                   help="More log output on stderr.")
    p.add_argument("--generate-secret", action="store_true",
                   help="Print a new random secret and exit.")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    """Dispatch into the chosen mode; keep top-level code very small."""
    args = build_parser().parse_args(argv)

    if args.generate_secret:
        print(generate_secret())
        return EXIT_OK

    setup_logging(args.verbosity)

    overrides = {
        "server": args.server,
        "address": args.address,
        "port": args.port,
        "secret": args.secret,
        "insecure": args.insecure,
        "tee": args.tee,
        "exec": args.exec,
        "timeout": args.timeout,
        "exec_timeout": args.exec_timeout,
    }
    try:
        config = load_config(args.config_file, overrides)
    except ConfigError as exc:
        logger.error("Failed to load configuration: %s", exc)
        return EXIT_FAILURE
    logger.debug("Configuration: %r", config)

    if config.server_mode:
        return server_main(config)
    kind = MessageKind.EXEC if args.exec_only else MessageKind.COPY
    return client_main(config, kind)


if __name__ == "__main__":
    sys.exit(main())
