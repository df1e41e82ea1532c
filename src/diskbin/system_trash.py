"""Read-only access to the operating system's own trash directory.

Items found here are never journaled. They are enumerated live when the
trash is listed and addressed by an id that encodes their absolute path.
"""

import base64
import binascii
import configparser
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

from diskbin.models import TrashItem, TrashSource
from diskbin.scanner import get_path_size

logger = logging.getLogger(__name__)

SYSTEM_ID_PREFIX = "system:"
TRASHINFO_SUFFIX = ".trashinfo"
SKIP_NAMES = frozenset({".DS_Store", ".localized"})


def default_system_trash_dir() -> Optional[Path]:
    """
    Locate the current user's OS trash.

    Returns:
        ~/.Trash on macOS, the freedesktop trash on other POSIX systems,
        None where no supported trash exists (e.g. Windows)
    """
    if sys.platform == "darwin":
        return Path.home() / ".Trash"
    if os.name == "posix":
        data_home = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
        return Path(data_home) / "Trash"
    return None


def is_freedesktop_layout(root: Path) -> bool:
    """
    Whether root uses the freedesktop ``files/`` + ``info/`` layout.

    The macOS trash is flat, so trashed folders named files or info there
    never switch it over.
    """
    if sys.platform == "darwin" and os.path.realpath(root) == os.path.realpath(Path.home() / ".Trash"):
        return False
    return (root / "files").is_dir() and (root / "info").is_dir()


def payload_dir(root: Path) -> Path:
    """Directory holding the trashed payloads themselves."""
    return root / "files" if is_freedesktop_layout(root) else root


def info_file_for(root: Path, name: str) -> Path:
    return root / "info" / f"{name}{TRASHINFO_SUFFIX}"


def encode_system_id(path: Path) -> str:
    """Reversible id for a system trash item."""
    raw = os.fsencode(str(path))
    return SYSTEM_ID_PREFIX + base64.urlsafe_b64encode(raw).decode("ascii")


def decode_system_id(item_id: str) -> Optional[Path]:
    """Absolute path encoded in a system id, or None if the id is malformed."""
    if not is_system_id(item_id):
        return None
    encoded = item_id[len(SYSTEM_ID_PREFIX):]
    try:
        raw = base64.urlsafe_b64decode(encoded.encode("ascii"))
        path = Path(os.fsdecode(raw))
    except (binascii.Error, ValueError, UnicodeError):
        return None
    return path if path.is_absolute() else None


def is_system_id(item_id: str) -> bool:
    return item_id.startswith(SYSTEM_ID_PREFIX)


def is_strictly_inside(path: Path, root: Path) -> bool:
    """
    Whether path lies below root (root itself does not count).

    The final path component is not resolved, so a symlink sitting in the
    trash is judged by where it lives, not by where it points.
    """
    absolute = os.path.abspath(path)
    name = os.path.basename(absolute)
    if not name:
        return False
    candidate = Path(os.path.realpath(os.path.dirname(absolute))) / name
    real_root = Path(os.path.realpath(root))
    return candidate != real_root and real_root in candidate.parents


def _read_trashinfo(info_path: Path) -> tuple[Optional[str], Optional[int]]:
    """Original path and deletion time (epoch ms) from a .trashinfo file."""
    parser = configparser.ConfigParser(interpolation=None)
    try:
        with open(info_path, encoding="utf-8") as f:
            parser.read_file(f)
        section = parser["Trash Info"]
    except (OSError, configparser.Error, KeyError, UnicodeDecodeError):
        return None, None

    original = section.get("Path")
    original = unquote(original) if original else None

    deleted_at = None
    raw_date = section.get("DeletionDate")
    if raw_date:
        try:
            deleted_at = int(datetime.fromisoformat(raw_date).timestamp() * 1000)
        except ValueError:
            deleted_at = None

    return original, deleted_at


def list_system_trash(root: Optional[Path], size_fn=get_path_size) -> list[TrashItem]:
    """
    Enumerate the OS trash.

    Entries that vanish or cannot be read while enumerating are skipped.

    Args:
        root: OS trash directory (None means unsupported)
        size_fn: Callable(path) -> bytes used for item sizes

    Returns:
        TrashItems with source SYSTEM, in directory order
    """
    if root is None:
        return []
    files_dir = payload_dir(root)
    freedesktop = files_dir != root

    items: list[TrashItem] = []
    try:
        with os.scandir(files_dir) as entries:
            for entry in entries:
                if entry.name in SKIP_NAMES:
                    continue
                try:
                    st = entry.stat(follow_symlinks=False)
                    is_dir = entry.is_dir(follow_symlinks=False)
                except OSError:
                    continue

                original, deleted_at = None, None
                if freedesktop:
                    original, deleted_at = _read_trashinfo(info_file_for(root, entry.name))

                items.append(
                    TrashItem(
                        id=encode_system_id(Path(entry.path)),
                        name=entry.name,
                        original_path=original or entry.path,
                        trashed_at=deleted_at if deleted_at is not None else int(st.st_mtime * 1000),
                        size=size_fn(entry.path) if is_dir else st.st_size,
                        is_directory=is_dir,
                        source=TrashSource.SYSTEM,
                    )
                )
    except OSError as e:
        logger.debug("Cannot list system trash %s: %s", files_dir, e)
        return []

    return items
