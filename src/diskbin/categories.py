"""File extension to node category table for diskbin."""

import os

from diskbin.models import NodeCategory

# Lowercase extensions without the leading dot
EXTENSION_CATEGORIES: dict[str, NodeCategory] = {
    # Code
    "js": NodeCategory.CODE,
    "ts": NodeCategory.CODE,
    "tsx": NodeCategory.CODE,
    "jsx": NodeCategory.CODE,
    "py": NodeCategory.CODE,
    "html": NodeCategory.CODE,
    "css": NodeCategory.CODE,
    "json": NodeCategory.CODE,
    # Media
    "jpg": NodeCategory.MEDIA,
    "jpeg": NodeCategory.MEDIA,
    "png": NodeCategory.MEDIA,
    "gif": NodeCategory.MEDIA,
    "webp": NodeCategory.MEDIA,
    "svg": NodeCategory.MEDIA,
    "mp4": NodeCategory.MEDIA,
    "mov": NodeCategory.MEDIA,
    "webm": NodeCategory.MEDIA,
    "avi": NodeCategory.MEDIA,
    # Documents
    "pdf": NodeCategory.DOCS,
    "doc": NodeCategory.DOCS,
    "docx": NodeCategory.DOCS,
    "txt": NodeCategory.DOCS,
    "md": NodeCategory.DOCS,
    # System binaries and images
    "dll": NodeCategory.SYSTEM,
    "exe": NodeCategory.SYSTEM,
    "dmg": NodeCategory.SYSTEM,
}


def get_extension(name: str) -> str:
    """Lowercase extension of a file name, without the dot ('' if none)."""
    return os.path.splitext(name)[1][1:].lower()


def category_for_name(name: str) -> NodeCategory:
    """
    Look up the category of a file by its name.

    Args:
        name: File name (only the extension is used)

    Returns:
        Category from the table, or OTHER for unlisted extensions
    """
    return EXTENSION_CATEGORIES.get(get_extension(name), NodeCategory.OTHER)
