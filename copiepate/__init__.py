"""
copiepate — paste from a remote shell into your desktop clipboard.

A client reads stdin, seals it with ChaCha20-Poly1305 under a pre-shared
secret, and sends it over one TCP connection (usually an SSH reverse tunnel).
The server checks the tag, writes the text to the clipboard, optionally feeds
it to a shell command, and answers with a single status byte.

SECURITY NOTES:
- The shared secret is the only authentication factor. Keep it out of shell
  history; prefer config.toml or COPIEPATE_SECRET over --secret.
- Anything that fails authentication is dropped before it touches the
  clipboard or the exec command.
- --insecure uses a publicly known key; only use it on a trusted loopback.
"""
__all__ = ["config", "crypto", "errors", "framing", "messages", "node", "run_node", "sinks"]

__version__ = "0.3.0"
