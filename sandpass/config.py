"""
Configuration management for sandpass.

The configuration is stored as a TOML file in the config directory
(``$SANDPASS_HOME`` or ``~/.sandpass/``). It names the remote store, the
machine whose records are synchronized, and the sync/notes parameters.
Environment variables override the [remote] section.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "sandpass.toml"
CONFIG_VERSION = 1

DEFAULT_API_URL = "https://app.viam.com"

# Environment variable -> RemoteConfig attribute
_ENV_OVERRIDES = {
    "SANDPASS_API_URL": "api_url",
    "SANDPASS_API_KEY_ID": "api_key_id",
    "SANDPASS_API_KEY": "api_key",
    "SANDPASS_ORG_ID": "org_id",
    "SANDPASS_LOCATION_ID": "location_id",
    "SANDPASS_MACHINE_ID": "machine_id",
    "SANDPASS_PART_ID": "part_id",
}


@dataclass
class RemoteConfig:
    """Connection to the remote record store."""
    api_url: str = DEFAULT_API_URL
    api_key_id: str = ""
    api_key: str = ""
    org_id: str = ""
    location_id: str = ""
    machine_id: str = ""
    part_id: str = ""  # overrides the part id found in pass summaries


@dataclass
class SyncConfig:
    """Backfill and polling parameters."""
    page_size: int = 50
    poll_limit: int = 100
    poll_interval: float = 5.0
    max_pages: Optional[int] = None


@dataclass
class NotesConfig:
    """Notes store parameters."""
    fetch_limit: int = 100
    fetch_many_limit: int = 500
    author: str = "web-app"
    concurrency: int = 1


@dataclass
class SandpassConfig:
    """Complete sandpass configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    notes: NotesConfig = field(default_factory=NotesConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_config_dir() -> Path:
    """Resolve the config directory, respecting SANDPASS_HOME."""
    home = os.environ.get("SANDPASS_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".sandpass"


def apply_env_overrides(config: SandpassConfig) -> SandpassConfig:
    """Overlay SANDPASS_* environment variables on the [remote] section."""
    for env_name, attr in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            setattr(config.remote, attr, value)
    return config


def _positive_int(section: dict, key: str, default: int) -> int:
    value = section.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


def load_config(config_dir: Path) -> SandpassConfig:
    """
    Load configuration from a config directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("config", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    remote = data.get("remote", {})
    sync = data.get("sync", {})
    notes = data.get("notes", {})

    poll_interval = sync.get("poll_interval", 5.0)
    if not isinstance(poll_interval, (int, float)) or poll_interval <= 0:
        raise ValueError(f"poll_interval must be positive, got {poll_interval!r}")
    max_pages = sync.get("max_pages")
    if max_pages is not None:
        max_pages = _positive_int(sync, "max_pages", 1)

    config = SandpassConfig(
        path=config_dir,
        version=version,
        created=data.get("config", {}).get("created", ""),
        remote=RemoteConfig(
            **{k: str(v) for k, v in remote.items() if k in RemoteConfig.__dataclass_fields__}
        ),
        sync=SyncConfig(
            page_size=_positive_int(sync, "page_size", 50),
            poll_limit=_positive_int(sync, "poll_limit", 100),
            poll_interval=float(poll_interval),
            max_pages=max_pages,
        ),
        notes=NotesConfig(
            fetch_limit=_positive_int(notes, "fetch_limit", 100),
            fetch_many_limit=_positive_int(notes, "fetch_many_limit", 500),
            author=str(notes.get("author", "web-app")),
            concurrency=_positive_int(notes, "concurrency", 1),
        ),
    )
    return apply_env_overrides(config)


def save_config(config: SandpassConfig) -> None:
    """
    Save configuration to the config directory.

    Creates the directory if it doesn't exist. The API key is not
    written when it came from the environment.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    remote: dict[str, Any] = {
        k: v for k, v in vars(config.remote).items()
        if v and os.environ.get(f"SANDPASS_{k.upper()}") != v
    }
    sync: dict[str, Any] = {
        "page_size": config.sync.page_size,
        "poll_limit": config.sync.poll_limit,
        "poll_interval": config.sync.poll_interval,
    }
    if config.sync.max_pages is not None:
        sync["max_pages"] = config.sync.max_pages

    data = {
        "config": {
            "version": config.version,
            "created": config.created,
        },
        "remote": remote,
        "sync": sync,
        "notes": vars(config.notes).copy(),
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(config_dir: Optional[Path] = None) -> SandpassConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_dir = config_dir if config_dir is not None else get_config_dir()
    if (config_dir / CONFIG_FILENAME).exists():
        return load_config(config_dir)
    config = SandpassConfig(path=config_dir)
    save_config(config)
    return apply_env_overrides(config)
