"""Configuration management for sshpair."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from sshpair.errors import ConfigError


DEFAULT_TOKEN_TTL = 15 * 60  # seconds


@dataclass
class SudoConfig:
    """Sudo grant configuration."""

    enabled: bool = True
    sudoers_dir: str = "/etc/sudoers.d"
    visudo_path: str = "visudo"


@dataclass
class RateLimitConfig:
    """Per-client request limits for the HTTP API."""

    requests_per_minute: int = 120
    resolve_per_minute: int = 10  # code space is small, keep guessing slow


@dataclass
class Config:
    """Offerer service configuration."""

    port: int = 4321
    bind_address: str = "0.0.0.0"
    token_ttl: int = DEFAULT_TOKEN_TTL
    ssh_dir: str = "~/.ssh"
    log_level: str = "INFO"
    log_file: str | None = None
    sudo: SudoConfig = field(default_factory=SudoConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @property
    def ssh_path(self) -> Path:
        """Expanded SSH directory."""
        return Path(self.ssh_dir).expanduser()


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "sshpair" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{key} must be a positive integer, got {value!r}")
    return value


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping, got {value!r}")
    return value


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.

    Raises:
        ConfigError: If a numeric value is not a positive integer, or the
            sudo or rate_limit section is not a mapping.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    sudo_data = _section(data, "sudo")
    sudo_config = SudoConfig(
        enabled=sudo_data.get("enabled", SudoConfig.enabled),
        sudoers_dir=sudo_data.get("sudoers_dir", SudoConfig.sudoers_dir),
        visudo_path=sudo_data.get("visudo_path", SudoConfig.visudo_path),
    )

    rate_data = _section(data, "rate_limit")
    rate_config = RateLimitConfig(
        requests_per_minute=_positive_int(
            rate_data, "requests_per_minute", RateLimitConfig.requests_per_minute
        ),
        resolve_per_minute=_positive_int(
            rate_data, "resolve_per_minute", RateLimitConfig.resolve_per_minute
        ),
    )

    return Config(
        port=_positive_int(data, "port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        token_ttl=_positive_int(data, "token_ttl", Config.token_ttl),
        ssh_dir=data.get("ssh_dir", Config.ssh_dir),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        sudo=sudo_config,
        rate_limit=rate_config,
    )
