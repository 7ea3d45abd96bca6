"""Configuration management for switchboard.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
sensible defaults for every subsystem: bot identity, command loading,
watcher, cooldowns, store, gateway bridge and logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import List, Optional

import structlog
import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = structlog.get_logger("switchboard.bot")

DEFAULT_PREFIX = "+"
MAX_PREFIX_LENGTH = 5
DEFAULT_ERROR_MESSAGE = (
    "Something went wrong while running that command. "
    "The error has been logged."
)
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_SWEEP_INTERVAL = 60.0


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_number(value) -> bool:
    return _is_number(value) and value > 0


class Config:
    """Central configuration manager for switchboard.

    Loads settings.yaml and .env from the config directory. Read-only
    after __init__.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = config_dir

        env_file = config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file.

        Raises:
            ConfigurationError: the file is not valid YAML or its top
                level is not a mapping.
        """
        filepath = self.config_dir / filename
        if not filepath.exists():
            return {}
        try:
            with open(filepath, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Cannot parse {filename}: {e}", setting_name=filename
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"{filename} must contain a mapping", setting_name=filename
            )
        return data

    def _section(self, name: str) -> dict:
        section = self.settings.get(name, {})
        if not isinstance(section, dict):
            logger.error("config_section_invalid_type", section=name,
                         type=type(section).__name__)
            return {}
        return section

    def _id_list(self, key: str) -> List[str]:
        values = self.settings.get(key, [])
        if not isinstance(values, list):
            logger.error("config_list_invalid_type", key=key, type=type(values).__name__)
            return []
        return [str(v) for v in values]

    def validate(self):
        """Validate critical settings at startup.

        Logs warnings/errors but does not raise -- the bot starts in
        degraded mode.
        """
        if not self.developers:
            logger.warning("no_developers_configured",
                           msg="developer-only commands will be unreachable")

        prefix = self.default_prefix
        if not prefix or len(prefix) > MAX_PREFIX_LENGTH:
            logger.error(
                "config_invalid_value",
                key="bot.default_prefix",
                value=prefix,
                valid=f"1-{MAX_PREFIX_LENGTH} characters",
            )

        interval = self._section("watcher").get("poll_interval", DEFAULT_POLL_INTERVAL)
        if not _is_positive_number(interval):
            logger.error(
                "config_invalid_value",
                key="watcher.poll_interval",
                value=interval,
                valid="> 0",
            )

        sweep = self._section("cooldowns").get("sweep_interval", DEFAULT_SWEEP_INTERVAL)
        if not _is_number(sweep) or sweep < 0:
            logger.error(
                "config_invalid_value",
                key="cooldowns.sweep_interval",
                value=sweep,
                valid=">= 0",
            )

    # --- Bot identity ---

    @property
    def bot_name(self) -> str:
        return self._section("bot").get("name", "switchboard")

    @property
    def default_prefix(self) -> str:
        """Prefix used when a guild has none stored, and in direct messages."""
        return str(self._section("bot").get("default_prefix", DEFAULT_PREFIX))

    @property
    def developers(self) -> List[str]:
        """Developer user ids. Developers bypass every permission check."""
        return self._id_list("developers")

    @property
    def owners(self) -> List[str]:
        """Owner ids used to seed the store on first run."""
        return self._id_list("owners")

    @property
    def error_message(self) -> str:
        """Generic reply sent when a command handler fails."""
        return self._section("messages").get("error", DEFAULT_ERROR_MESSAGE)

    # --- Paths ---

    @property
    def commands_dir(self) -> Path:
        configured = self.settings.get("commands_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "commands"

    @property
    def data_dir(self) -> Path:
        configured = self.settings.get("data_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "data"

    @property
    def store_path(self) -> Path:
        return self.data_dir / "switchboard.db"

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    # --- Watcher / cooldowns ---

    @property
    def watcher_enabled(self) -> bool:
        return self._section("watcher").get("enabled", True)

    @property
    def watcher_poll_interval(self) -> float:
        """Seconds between directory scans.

        Falls back to the default when the setting is not a positive number.
        """
        interval = self._section("watcher").get("poll_interval", DEFAULT_POLL_INTERVAL)
        if not _is_positive_number(interval):
            return DEFAULT_POLL_INTERVAL
        return float(interval)

    @property
    def cooldown_sweep_interval(self) -> float:
        """Seconds between proactive cooldown sweeps. 0 disables the sweep."""
        interval = self._section("cooldowns").get("sweep_interval", DEFAULT_SWEEP_INTERVAL)
        if not _is_number(interval) or interval < 0:
            return DEFAULT_SWEEP_INTERVAL
        return float(interval)

    # --- Gateway bridge ---

    @property
    def bridge_url(self) -> str:
        """Bridge URL. Env var SWITCHBOARD_BRIDGE_URL takes precedence."""
        return (
            os.environ.get("SWITCHBOARD_BRIDGE_URL")
            or self.settings.get("bridge_url", "http://127.0.0.1:8090")
        )

    @property
    def bridge_token(self) -> str:
        """Bridge auth token. Only read from the environment."""
        return os.environ.get("SWITCHBOARD_BRIDGE_TOKEN", "")

    # --- Logging ---

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        return self._section("logging").get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"loader": "DEBUG"}."""
        return self._section("logging").get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        return self._section("logging").get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        return self._section("logging").get("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
