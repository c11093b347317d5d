"""
Per-store settings file.

Each store directory holds a ryana.toml. It names the database file and
the defaults that seed the settings record when a store is created.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w

from .types import THEMES


CONFIG_FILENAME = "ryana.toml"
CONFIG_VERSION = 1
DEFAULT_DATABASE = "ryana.db"


def get_default_store_path() -> Path:
    """Store directory: RYANA_STORE_PATH if set, else ~/.ryana."""
    env_path = os.environ.get("RYANA_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".ryana"


@dataclass
class SettingsDefaults:
    """Initial values for the settings record of a new store."""
    theme: str = "light"
    default_language: str = "javascript"
    auto_save: bool = True
    keyboard_shortcuts: bool = True

    def to_record(self) -> dict[str, Any]:
        """Settings fields in export-format keys."""
        return {
            "theme": self.theme,
            "defaultLanguage": self.default_language,
            "autoSave": self.auto_save,
            "keyboardShortcuts": self.keyboard_shortcuts,
        }


@dataclass
class StoreConfig:
    """Contents of ryana.toml, plus the directory it lives in."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    database: str = DEFAULT_DATABASE
    defaults: SettingsDefaults = field(default_factory=SettingsDefaults)

    @property
    def config_path(self) -> Path:
        """Location of ryana.toml."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the SQLite database file."""
        return self.path / self.database

    def exists(self) -> bool:
        """True once the store has been initialized."""
        return self.config_path.exists()


def load_config(store_path: Path) -> StoreConfig:
    """
    Read ryana.toml from a store directory.

    Raises:
        FileNotFoundError: the store has no ryana.toml
        ValueError: the file was written by a newer version, or names an
            unknown theme
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"No {CONFIG_FILENAME} in {store_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(
            f"{config_path} was written by a newer ryana "
            f"(config version {version}, this release reads up to {CONFIG_VERSION})"
        )

    section = data.get("defaults", {})
    theme = section.get("theme", "light")
    if theme not in THEMES:
        raise ValueError(f"Invalid theme in {config_path}: {theme!r}")

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        database=store.get("database", DEFAULT_DATABASE),
        defaults=SettingsDefaults(
            theme=theme,
            default_language=section.get("default_language", "javascript"),
            auto_save=bool(section.get("auto_save", True)),
            keyboard_shortcuts=bool(section.get("keyboard_shortcuts", True)),
        ),
    )


def save_config(config: StoreConfig) -> None:
    """
    Write ryana.toml, creating the store directory if needed.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "database": config.database,
        },
        "defaults": {
            "theme": config.defaults.theme,
            "default_language": config.defaults.default_language,
            "auto_save": config.defaults.auto_save,
            "keyboard_shortcuts": config.defaults.keyboard_shortcuts,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """Open a store directory, writing a default ryana.toml on first use."""
    config = StoreConfig(path=store_path)
    if config.exists():
        return load_config(store_path)
    save_config(config)
    return config
