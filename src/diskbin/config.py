"""Configuration loading for diskbin."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from diskbin.scanner import (
    DEEP_SCAN_DEPTH,
    DEFAULT_DEPTH,
    MAX_RECURSION_DEPTH,
    SMALL_FILE_BYTES,
    SMALL_FOLDER_BYTES,
)
from diskbin.system_trash import default_system_trash_dir

logger = logging.getLogger(__name__)

# Directories folded into "Other Folders" without expansion when ignore mode is on
DEFAULT_IGNORE_DIRS = (
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    ".cache",
    "Library",
)


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


def config_dir() -> Path:
    """Directory holding config.json and the default trash root."""
    return expand_path(os.environ.get("DISKBIN_HOME", "~/.diskbin"))


def config_file() -> Path:
    return config_dir() / "config.json"


def _default_trash_root() -> str:
    return str(config_dir() / "trash")


def _default_system_trash() -> Optional[str]:
    found = default_system_trash_dir()
    return str(found) if found else None


class Settings(BaseModel):
    """Effective diskbin settings."""

    trash_root: str = Field(
        default_factory=_default_trash_root,
        description="App-owned trash root (holds files/ and manifest.json)",
    )
    system_trash_dir: Optional[str] = Field(
        default_factory=_default_system_trash,
        description="OS-native trash directory merged into listings",
    )
    merge_system_trash: bool = Field(True, description="Include OS trash items in listings")
    default_depth: int = Field(DEFAULT_DEPTH, ge=0, description="Scan depth when none is given")
    deep_depth: int = Field(DEEP_SCAN_DEPTH, ge=0, description="Scan depth for --deep")
    small_file_bytes: int = Field(SMALL_FILE_BYTES, ge=0)
    small_folder_bytes: int = Field(SMALL_FOLDER_BYTES, ge=0)
    max_recursion_depth: int = Field(MAX_RECURSION_DEPTH, ge=1, description="Hard ceiling for any recursion")
    ignore_dirs: list[str] = Field(default_factory=list)
    log_level: str = Field("WARNING")

    @property
    def trash_root_path(self) -> Path:
        return expand_path(self.trash_root)

    @property
    def system_trash_path(self) -> Optional[Path]:
        if not self.merge_system_trash or not self.system_trash_dir:
            return None
        return expand_path(self.system_trash_dir)

    def scan_options(self) -> dict:
        """Keyword arguments forwarded to the tree builder."""
        return {
            "small_file_bytes": self.small_file_bytes,
            "small_folder_bytes": self.small_folder_bytes,
            "max_recursion_depth": self.max_recursion_depth,
            "ignore_dirs": tuple(self.ignore_dirs),
        }


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings from disk.

    Args:
        path: Config file to read (defaults to ~/.diskbin/config.json)

    Returns:
        Settings; defaults when the file is missing or unusable
    """
    path = path or config_file()
    if not path.exists():
        return Settings()

    try:
        with open(path) as f:
            data = json.load(f)
        return Settings.model_validate(data)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Could not read config %s: %s", path, e)
    except ValidationError as e:
        logger.warning("Invalid config %s, using defaults: %s", path, e.error_count())
    return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> bool:
    """Save settings to disk."""
    path = path or config_file()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(settings.model_dump(), f, indent=2)
        return True
    except OSError as e:
        logger.warning("Could not write config %s: %s", path, e)
        return False
