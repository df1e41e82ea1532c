"""Size probing and size-aggregation tree building for diskbin."""

import logging
import os
import stat
from pathlib import Path
from typing import Iterable, Union

from diskbin.categories import category_for_name
from diskbin.models import FOLDERS_BUCKET_ID, MISC_BUCKET_ID, DiskNode, NodeCategory

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

SMALL_FILE_BYTES = 5 * 1024 * 1024  # Files below this go into "Misc / Other"
SMALL_FOLDER_BYTES = 1024 * 1024  # Folders below this go into "Other Folders"
DEFAULT_DEPTH = 2
DEEP_SCAN_DEPTH = 4
MAX_RECURSION_DEPTH = 64  # Independent of the visualization depth


def get_path_size(path: PathLike, max_recursion_depth: int = MAX_RECURSION_DEPTH) -> int:
    """
    Exact recursive size of a file or directory.

    Never raises: anything that cannot be stat'ed or listed counts as zero.
    Symlinks are not followed below the starting path. Walks with an explicit
    stack, so deep trees do not hit Python's recursion limit.

    Args:
        path: File or directory to measure
        max_recursion_depth: Directories nested deeper than this are not entered

    Returns:
        Total size in bytes
    """
    try:
        st = os.stat(path)
    except OSError:
        return 0
    if not stat.S_ISDIR(st.st_mode):
        return st.st_size

    total = 0
    visited = {(st.st_dev, st.st_ino)}
    stack = [(os.fspath(path), 0)]

    while stack:
        current, depth = stack.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            if depth >= max_recursion_depth:
                                continue
                            entry_stat = entry.stat(follow_symlinks=False)
                            key = (entry_stat.st_dev, entry_stat.st_ino)
                            if key in visited:
                                continue
                            visited.add(key)
                            stack.append((entry.path, depth + 1))
                        else:
                            total += entry.stat(follow_symlinks=False).st_size
                    except OSError:
                        continue
        except OSError:
            continue

    return total


def build_tree(
    path: PathLike,
    max_depth: int = DEFAULT_DEPTH,
    *,
    small_file_bytes: int = SMALL_FILE_BYTES,
    small_folder_bytes: int = SMALL_FOLDER_BYTES,
    ignore_dirs: Iterable[str] = (),
    max_recursion_depth: int = MAX_RECURSION_DEPTH,
) -> DiskNode:
    """
    Build a size-aggregation tree for visualization.

    Small files are folded into one "Misc / Other" bucket per directory and
    small or too-deep subdirectories into one "Other Folders" bucket, so the
    node count stays bounded no matter how many entries a directory holds.

    Args:
        path: File or directory to scan
        max_depth: How many directory levels below the root may be expanded
        small_file_bytes: Files below this size are bucketed
        small_folder_bytes: Directories below this size are bucketed
        ignore_dirs: Directory names that are always bucketed
        max_recursion_depth: Hard ceiling on expansion and probing depth

    Returns:
        Root DiskNode
    """
    root = os.path.abspath(os.fspath(path))
    root_name = os.path.basename(root.rstrip(os.sep)) or "Root"
    ignored = frozenset(ignore_dirs)
    visited: set[tuple[int, int]] = set()

    def _build(current: str, name: str, remaining_depth: int) -> DiskNode:
        try:
            st = os.stat(current)
        except OSError as e:
            logger.debug("Cannot stat %s: %s", current, e)
            return DiskNode(id=name, value=0, path=current, category=NodeCategory.OTHER)

        if not stat.S_ISDIR(st.st_mode):
            return DiskNode(
                id=name,
                value=st.st_size,
                path=current,
                category=category_for_name(name),
            )

        key = (st.st_dev, st.st_ino)
        if key in visited:
            return DiskNode(id=name, value=0, path=current, category=NodeCategory.FOLDER)
        visited.add(key)

        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as e:
            logger.debug("Cannot list %s: %s", current, e)
            return DiskNode(id=name, value=0, path=current, category=NodeCategory.FOLDER)

        children: list[DiskNode] = []
        misc_file_size = 0
        other_folder_size = 0

        for entry in entries:
            entry_name = entry.name or "unnamed"
            try:
                if entry.is_dir(follow_symlinks=False):
                    entry_stat = entry.stat(follow_symlinks=False)
                    if (entry_stat.st_dev, entry_stat.st_ino) in visited:
                        # Already counted where it was first reached, as get_path_size does
                        logger.debug("Skipping already visited %s", entry.path)
                        continue
                    child_size = get_path_size(entry.path, max_recursion_depth)
                    if (
                        entry_name in ignored
                        or remaining_depth <= 0
                        or child_size < small_folder_bytes
                    ):
                        other_folder_size += child_size
                    else:
                        children.append(_build(entry.path, entry_name, remaining_depth - 1))
                else:
                    size = entry.stat(follow_symlinks=False).st_size
                    if size < small_file_bytes:
                        misc_file_size += size
                    else:
                        children.append(
                            DiskNode(
                                id=entry_name,
                                value=size,
                                path=entry.path,
                                category=category_for_name(entry_name),
                            )
                        )
            except OSError as e:
                # Vanished or unreadable entries contribute nothing
                logger.debug("Skipping %s: %s", entry.path, e)
                continue

        if misc_file_size > 0:
            children.append(
                DiskNode(
                    id=MISC_BUCKET_ID,
                    value=misc_file_size,
                    path=current,
                    category=NodeCategory.OTHER,
                )
            )

        if other_folder_size > 0:
            children.append(
                DiskNode(
                    id=FOLDERS_BUCKET_ID,
                    value=other_folder_size,
                    path=current,
                    category=NodeCategory.OTHER,
                )
            )

        return DiskNode(
            id=name,
            value=sum(c.value for c in children),
            path=current,
            category=NodeCategory.FOLDER,
            children=children or None,
        )

    return _build(root, root_name, min(max_depth, max_recursion_depth))


def scan_directory_for_viz(path: PathLike, depth: int = DEFAULT_DEPTH, **options) -> DiskNode:
    """Resolve a path and build its visualization tree."""
    return build_tree(Path(path).resolve(), depth, **options)
