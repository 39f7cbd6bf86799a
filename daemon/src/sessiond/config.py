"""Configuration management for sessiond."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "sessiond"


@dataclass
class StorageConfig:
    """Local storage configuration."""

    sessions_dir: str = str(DEFAULT_DATA_DIR / "sessions")
    registry_file: str = str(DEFAULT_DATA_DIR / "registry.json")
    session_prefix: str = "sila_"


@dataclass
class PairingConfig:
    """Pairing handshake configuration."""

    pairing_code_attempts: int = 3
    pairing_code_delay: float = 1.0  # seconds, before each attempt
    response_timeout: float = 30.0  # seconds until caller gets "waiting"
    handshake_timeout: float = 300.0  # seconds until an unfinished handshake is abandoned
    min_subject_digits: int = 7
    reference_prefix: str = "SID~"
    notify_on_pair: bool = True


@dataclass
class ArchiveConfig:
    """Remote credential archive configuration."""

    upload_url: str | None = None
    request_timeout: float = 30.0  # seconds


@dataclass
class Config:
    """Daemon configuration."""

    port: int = 3000
    bind_address: str = "0.0.0.0"
    log_level: str = "INFO"
    log_file: str | None = None
    transport: str | None = None  # "package.module:factory"
    storage: StorageConfig = field(default_factory=StorageConfig)
    pairing: PairingConfig = field(default_factory=PairingConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "sessiond" / "config.yaml"


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
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    storage_data = data.get("storage") or {}
    storage_config = StorageConfig(
        sessions_dir=storage_data.get("sessions_dir", StorageConfig.sessions_dir),
        registry_file=storage_data.get("registry_file", StorageConfig.registry_file),
        session_prefix=storage_data.get(
            "session_prefix", StorageConfig.session_prefix
        ),
    )

    pairing_data = data.get("pairing") or {}
    pairing_config = PairingConfig(
        pairing_code_attempts=pairing_data.get(
            "pairing_code_attempts", PairingConfig.pairing_code_attempts
        ),
        pairing_code_delay=pairing_data.get(
            "pairing_code_delay", PairingConfig.pairing_code_delay
        ),
        response_timeout=pairing_data.get(
            "response_timeout", PairingConfig.response_timeout
        ),
        handshake_timeout=pairing_data.get(
            "handshake_timeout", PairingConfig.handshake_timeout
        ),
        min_subject_digits=pairing_data.get(
            "min_subject_digits", PairingConfig.min_subject_digits
        ),
        reference_prefix=pairing_data.get(
            "reference_prefix", PairingConfig.reference_prefix
        ),
        notify_on_pair=pairing_data.get("notify_on_pair", PairingConfig.notify_on_pair),
    )

    archive_data = data.get("archive") or {}
    archive_config = ArchiveConfig(
        upload_url=archive_data.get("upload_url", ArchiveConfig.upload_url),
        request_timeout=archive_data.get(
            "request_timeout", ArchiveConfig.request_timeout
        ),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        transport=data.get("transport", Config.transport),
        storage=storage_config,
        pairing=pairing_config,
        archive=archive_config,
    )
