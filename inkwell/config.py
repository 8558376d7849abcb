"""
Configuration management for an inkwell journal.

The configuration is stored as a TOML file in the data directory.
It names the user, the time zone, the remote store and the analysis
provider, and tunes cache staleness and generation limits.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore

from .cache import DEFAULT_STALENESS
from .types import generate_id


CONFIG_FILENAME = "inkwell.toml"
CONFIG_VERSION = 1

DEFAULT_DATA_DIR = Path.home() / ".inkwell"


def default_data_dir() -> Path:
    """Data directory, respecting INKWELL_DATA_DIR."""
    data_dir = os.environ.get("INKWELL_DATA_DIR")
    return Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR


@dataclass
class ProviderConfig:
    """Configuration for the analysis provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class RemoteConfig:
    """Where the remote document store lives."""
    api_url: str = ""
    api_key: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.api_url)


@dataclass
class JournalConfig:
    """Complete journal configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    user_id: str = field(default_factory=generate_id)
    timezone: str = ""  # IANA name; empty means system local

    # Minutes before a cached snapshot needs a refresh, per collection
    staleness_minutes: dict[str, int] = field(
        default_factory=lambda: {
            name: int(delta.total_seconds() // 60) for name, delta in DEFAULT_STALENESS.items()
        }
    )

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    analysis: ProviderConfig = field(default_factory=lambda: ProviderConfig("none"))

    timeout_seconds: float = 45.0
    pending_batch: int = 3

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    @property
    def staleness(self) -> dict[str, timedelta]:
        return {name: timedelta(minutes=m) for name, m in self.staleness_minutes.items()}

    @property
    def api_key(self) -> str:
        """Remote API key; INKWELL_API_KEY overrides the file."""
        return os.environ.get("INKWELL_API_KEY") or self.remote.api_key


def detect_default_provider() -> ProviderConfig:
    """
    Pick an analysis provider from the API keys in the environment.

    Priority:
    1. Anthropic (ANTHROPIC_API_KEY)
    2. OpenAI (INKWELL_OPENAI_API_KEY or OPENAI_API_KEY)
    3. none: entries are stored without AI insight
    """
    if os.environ.get("ANTHROPIC_API_KEY"):
        return ProviderConfig("anthropic")
    if os.environ.get("INKWELL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY"):
        return ProviderConfig("openai")
    return ProviderConfig("none")


def create_default_config(data_dir: Path) -> JournalConfig:
    """Create a new config with auto-detected defaults."""
    return JournalConfig(path=data_dir, analysis=detect_default_provider())


def load_config(data_dir: Path) -> JournalConfig:
    """
    Load configuration from a data directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = data_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    journal = data.get("journal", {})
    version = journal.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")
    if not journal.get("user_id"):
        raise ValueError(f"Config {config_path} has no [journal] user_id")

    defaults = JournalConfig(path=data_dir)
    staleness = dict(defaults.staleness_minutes)
    for name, minutes in data.get("cache", {}).items():
        if name not in staleness:
            raise ValueError(f"Unknown cache collection in config: {name!r}")
        staleness[name] = int(minutes)

    remote = data.get("remote", {})
    analysis = data.get("analysis", {"name": "none"})
    generation = data.get("generation", {})

    return JournalConfig(
        path=data_dir,
        version=version,
        created=journal.get("created", ""),
        user_id=journal["user_id"],
        timezone=journal.get("timezone", ""),
        staleness_minutes=staleness,
        remote=RemoteConfig(
            api_url=remote.get("api_url", ""),
            api_key=remote.get("api_key", ""),
        ),
        analysis=ProviderConfig(
            name=analysis.get("name", "none"),
            params={k: v for k, v in analysis.items() if k != "name"},
        ),
        timeout_seconds=float(generation.get("timeout_seconds", defaults.timeout_seconds)),
        pending_batch=int(generation.get("pending_batch", defaults.pending_batch)),
    )


def save_config(config: JournalConfig) -> None:
    """
    Save configuration to the data directory.

    Creates the directory if it doesn't exist.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    remote: dict[str, Any] = {"api_url": config.remote.api_url}
    if config.remote.api_key:
        remote["api_key"] = config.remote.api_key

    analysis = {"name": config.analysis.name}
    analysis.update(config.analysis.params)

    data = {
        "journal": {
            "version": config.version,
            "created": config.created,
            "user_id": config.user_id,
            "timezone": config.timezone,
        },
        "cache": dict(config.staleness_minutes),
        "remote": remote,
        "analysis": analysis,
        "generation": {
            "timeout_seconds": config.timeout_seconds,
            "pending_batch": config.pending_batch,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(data_dir: Optional[Path] = None) -> JournalConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    data_dir = data_dir or default_data_dir()
    config_path = data_dir / CONFIG_FILENAME

    if config_path.exists():
        return load_config(data_dir)
    else:
        config = create_default_config(data_dir)
        save_config(config)
        return config
