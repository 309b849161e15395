import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .crypto import INSECURE_KEY, decode_secret
from .errors import ConfigError, SecretError
from .framing import MAX_PAYLOAD_SIZE
from .node import DEFAULT_TIMEOUT
from .sinks import DEFAULT_EXEC_TIMEOUT

"""
One immutable Config, merged from four layers.

Precedence (later wins):
  1. built-in defaults
  2. config.toml (~/.config/copiepate/config.toml, or --config / COPIEPATE_CONFIG)
  3. environment (COPIEPATE_SECRET)
  4. command-line options

Example config.toml:

    address = "127.0.0.1"
    port = 2323
    secret = "<output of generate_secret.py>"
    exec = "notify-send copiepate"
"""

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "127.0.0.1"
DEFAULT_PORT = 2323
DEFAULT_CONFIG_DIR = "copiepate"
DEFAULT_CONFIG_FILENAME = "config.toml"

ENV_SECRET = "COPIEPATE_SECRET"
ENV_CONFIG = "COPIEPATE_CONFIG"

DEFAULTS: Dict[str, Any] = {
    "address": DEFAULT_ADDRESS,
    "port": DEFAULT_PORT,
    "secret": None,
    "exec": None,
    "tee": False,
    "server": False,
    "insecure": False,
    "timeout": DEFAULT_TIMEOUT,
    "exec_timeout": DEFAULT_EXEC_TIMEOUT,
    "max_payload": MAX_PAYLOAD_SIZE,
}

# Expected type per key (bool is checked before int, since bool is an int).
_TYPES: Dict[str, tuple] = {
    "address": (str,),
    "port": (int,),
    "secret": (str,),
    "exec": (str,),
    "tee": (bool,),
    "server": (bool,),
    "insecure": (bool,),
    "timeout": (int, float),
    "exec_timeout": (int, float),
    "max_payload": (int,),
}


@dataclass(frozen=True)
class Config:
    address: str
    port: int
    secret: bytes = field(repr=False)
    exec_command: Optional[str] = None
    tee: bool = False
    server_mode: bool = False
    insecure: bool = False
    timeout: float = DEFAULT_TIMEOUT
    exec_timeout: float = DEFAULT_EXEC_TIMEOUT
    max_payload: int = MAX_PAYLOAD_SIZE


def default_config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    """XDG location: $XDG_CONFIG_HOME/copiepate/config.toml, else ~/.config/..."""
    env = os.environ if env is None else env
    base = env.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILENAME


def read_config_file(path: Path) -> Dict[str, Any]:
    """Parse and validate one TOML file. Unknown keys/wrong types are errors."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    _validate(data, source=str(path))
    return data


def _validate(data: Mapping[str, Any], source: str) -> None:
    unknown = sorted(set(data) - set(DEFAULTS))
    if unknown:
        raise ConfigError(f"Unknown option(s) in {source}: {', '.join(unknown)}")
    for key, value in data.items():
        expected = _TYPES[key]
        if isinstance(value, bool) and bool not in expected:
            raise ConfigError(f"{source}: '{key}' must be {expected[0].__name__}")
        if not isinstance(value, expected):
            raise ConfigError(f"{source}: '{key}' must be {expected[0].__name__}")


def load_config(
    config_file: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Config:
    """
    Merge all layers into a Config.

    Args:
        config_file: explicit path; must exist. None means COPIEPATE_CONFIG,
                     then the XDG default (missing default is just a warning).
        overrides:   command-line values; None entries are ignored.
        env:         environment mapping (defaults to os.environ).

    Raises:
        ConfigError / SecretError: anything that should stop the process.
    """
    env = os.environ if env is None else env
    settings: Dict[str, Any] = dict(DEFAULTS)

    explicit = config_file if config_file is not None else env.get(ENV_CONFIG)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise ConfigError(f"Configuration file {path} does not exist.")
    else:
        path = default_config_path(env)

    logger.info("Loading configuration file: %s", path)
    if path.exists():
        settings.update(read_config_file(path))
    else:
        logger.warning("No configuration file. Using default values.")

    if env.get(ENV_SECRET):
        settings["secret"] = env[ENV_SECRET]

    cli = {k: v for k, v in (overrides or {}).items() if v is not None}
    _validate(cli, source="command line")
    settings.update(cli)

    return _build(settings)


def _build(settings: Mapping[str, Any]) -> Config:
    if not 0 < settings["port"] < 65536:
        raise ConfigError(f"Port must be within 1-65535, got {settings['port']}")
    if settings["max_payload"] <= 0:
        raise ConfigError("max_payload must be positive")
    if settings["timeout"] <= 0 or settings["exec_timeout"] <= 0:
        raise ConfigError("Timeouts must be positive")

    if settings["insecure"]:
        logger.warning(
            "Insecure mode: messages are encrypted with a public key. "
            "Anybody on the path can read them."
        )
        secret = INSECURE_KEY
    elif settings["secret"] is None:
        raise SecretError(
            "No secret provided. Set 'secret' in the configuration file, "
            f"export {ENV_SECRET}, or pass --secret."
        )
    else:
        secret = decode_secret(settings["secret"])

    return Config(
        address=settings["address"],
        port=settings["port"],
        secret=secret,
        exec_command=settings["exec"] or None,
        tee=settings["tee"],
        server_mode=settings["server"],
        insecure=settings["insecure"],
        timeout=float(settings["timeout"]),
        exec_timeout=float(settings["exec_timeout"]),
        max_payload=settings["max_payload"],
    )
