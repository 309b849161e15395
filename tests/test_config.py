"""Unit tests for copiepate.config layering and validation."""
from __future__ import annotations

import base64
import os
from pathlib import Path

import pytest

from copiepate.config import (
    DEFAULT_ADDRESS,
    DEFAULT_PORT,
    ENV_CONFIG,
    ENV_SECRET,
    default_config_path,
    load_config,
)
from copiepate.crypto import INSECURE_KEY
from copiepate.errors import ConfigError, SecretError
from copiepate.framing import MAX_PAYLOAD_SIZE


@pytest.fixture()
def raw_secret() -> bytes:
    return os.urandom(32)


@pytest.fixture()
def b64_secret(raw_secret: bytes) -> str:
    return base64.b64encode(raw_secret).decode()


@pytest.fixture()
def env(tmp_path: Path) -> dict:
    """Isolated environment: XDG points into tmp_path, no secret set."""
    return {"XDG_CONFIG_HOME": str(tmp_path / "xdg")}


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Defaults / file discovery
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_default_path_follows_xdg(self, env: dict, tmp_path: Path) -> None:
        assert default_config_path(env) == tmp_path / "xdg" / "copiepate" / "config.toml"

    def test_default_path_without_xdg(self) -> None:
        assert default_config_path({}) == Path.home() / ".config" / "copiepate" / "config.toml"

    def test_defaults_with_cli_secret(self, env: dict, b64_secret: str, raw_secret: bytes) -> None:
        config = load_config(overrides={"secret": b64_secret}, env=env)
        assert config.address == DEFAULT_ADDRESS
        assert config.port == DEFAULT_PORT
        assert config.secret == raw_secret
        assert config.exec_command is None
        assert config.tee is False
        assert config.server_mode is False
        assert config.max_payload == MAX_PAYLOAD_SIZE

    def test_missing_secret_is_fatal(self, env: dict) -> None:
        with pytest.raises(SecretError):
            load_config(env=env)

    def test_invalid_secret_is_fatal(self, env: dict) -> None:
        with pytest.raises(SecretError):
            load_config(overrides={"secret": "%%%"}, env=env)

    def test_secret_is_not_in_repr(self, env: dict, b64_secret: str, raw_secret: bytes) -> None:
        config = load_config(overrides={"secret": b64_secret}, env=env)
        assert repr(raw_secret) not in repr(config)
        assert "secret" not in repr(config)


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


class TestLayering:
    def test_xdg_file_is_read(self, env: dict, tmp_path: Path, b64_secret: str) -> None:
        _write(
            tmp_path / "xdg" / "copiepate" / "config.toml",
            f'secret = "{b64_secret}"\nport = 4000\nexec = "notify-send hi"\nserver = true\n',
        )
        config = load_config(env=env)
        assert config.port == 4000
        assert config.exec_command == "notify-send hi"
        assert config.server_mode is True

    def test_explicit_file_must_exist(self, env: dict, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="does not exist"):
            load_config(tmp_path / "nope.toml", env=env)

    def test_config_path_from_environment(self, env: dict, tmp_path: Path, b64_secret: str) -> None:
        path = _write(tmp_path / "custom.toml", f'secret = "{b64_secret}"\naddress = "10.0.0.1"\n')
        env[ENV_CONFIG] = str(path)
        assert load_config(env=env).address == "10.0.0.1"

    def test_env_secret_beats_file(self, env: dict, tmp_path: Path, b64_secret: str, raw_secret: bytes) -> None:
        other = base64.b64encode(b"y" * 32).decode()
        path = _write(tmp_path / "c.toml", f'secret = "{other}"\n')
        env[ENV_SECRET] = b64_secret
        assert load_config(path, env=env).secret == raw_secret

    def test_cli_beats_file(self, env: dict, tmp_path: Path, b64_secret: str) -> None:
        path = _write(tmp_path / "c.toml", f'secret = "{b64_secret}"\nport = 4000\ntee = true\n')
        config = load_config(path, overrides={"port": 5000, "tee": None}, env=env)
        assert config.port == 5000
        assert config.tee is True  # None means "flag not given"

    def test_insecure_mode_uses_public_key(self, env: dict) -> None:
        config = load_config(overrides={"insecure": True}, env=env)
        assert config.secret == INSECURE_KEY


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_unknown_key(self, env: dict, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.toml", 'colour = "blue"\n')
        with pytest.raises(ConfigError, match="colour"):
            load_config(path, env=env)

    def test_wrong_type(self, env: dict, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.toml", 'port = "2323"\n')
        with pytest.raises(ConfigError, match="port"):
            load_config(path, env=env)

    def test_bool_is_not_an_int(self, env: dict, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.toml", "port = true\n")
        with pytest.raises(ConfigError):
            load_config(path, env=env)

    def test_broken_toml(self, env: dict, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.toml", "port = = 1\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path, env=env)

    @pytest.mark.parametrize("port", [0, 70000])
    def test_port_range(self, env: dict, b64_secret: str, port: int) -> None:
        with pytest.raises(ConfigError):
            load_config(overrides={"secret": b64_secret, "port": port}, env=env)

    def test_non_positive_timeout(self, env: dict, b64_secret: str) -> None:
        with pytest.raises(ConfigError):
            load_config(overrides={"secret": b64_secret, "timeout": 0}, env=env)
