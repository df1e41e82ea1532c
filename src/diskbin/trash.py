"""Journaled, recoverable delete for diskbin.

Items move through three states: live, trashed (payload under
``<trash_root>/files`` plus a manifest entry) and gone. The manifest at
``<trash_root>/manifest.json`` is the only record of app-owned items.

The payload is moved before the manifest is written. A crash between the
two leaves a payload without an entry; ``orphaned_payloads()`` finds those
and ``empty_trash()`` sweeps them.
"""

import fcntl
import json
import logging
import os
import shutil
import stat
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from diskbin.errors import (
    DiskbinError,
    InvalidTrashId,
    ManifestCorrupt,
    NotFound,
    PermissionDenied,
    RestoreCollision,
    from_os_error,
)
from diskbin.models import TrashEntry, TrashItem, TrashManifest, TrashResult
from diskbin.scanner import get_path_size
from diskbin.system_trash import (
    decode_system_id,
    info_file_for,
    is_strictly_inside,
    is_system_id,
    list_system_trash,
    payload_dir,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
LOCK_NAME = ".manifest.lock"
FILES_DIR = "files"
CORRUPT_SUFFIX = ".corrupt"


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


def new_item_id() -> str:
    return uuid.uuid4().hex


def remove_path(path: Path) -> None:
    """Delete a file, symlink or directory tree."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def parse_manifest(raw: str) -> TrashManifest:
    """
    Parse a manifest document.

    Accepts the versioned object form and the bare list of records.

    Raises:
        ManifestCorrupt: The document cannot be parsed
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ManifestCorrupt(f"Manifest is not valid JSON: {e}") from e

    try:
        if isinstance(data, list):
            return TrashManifest(items=data)
        if isinstance(data, dict):
            return TrashManifest.model_validate(data)
    except ValidationError as e:
        raise ManifestCorrupt(f"Manifest has invalid records ({e.error_count()} errors)") from e

    raise ManifestCorrupt(f"Unexpected manifest document type: {type(data).__name__}")


class TrashManager:
    """
    App-owned trash backed by a manifest, merged with the OS trash for listing.

    Every manifest read-modify-write holds a thread lock plus an exclusive
    flock on ``<trash_root>/.manifest.lock``, so managers in other threads or
    other processes sharing the same root cannot lose each other's updates.
    The manifest itself is replaced atomically.
    """

    def __init__(
        self,
        trash_root: Union[str, Path],
        system_trash_dir: Optional[Union[str, Path]] = None,
        *,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = new_item_id,
    ):
        self.root = Path(trash_root)
        self.files_dir = self.root / FILES_DIR
        self.manifest_path = self.root / MANIFEST_NAME
        self.lock_path = self.root / LOCK_NAME
        self.system_trash_dir = Path(system_trash_dir) if system_trash_dir else None
        self._clock = clock
        self._id_factory = id_factory
        self._lock = threading.RLock()
        self._journal_depth = 0

    @classmethod
    def from_settings(cls, settings) -> "TrashManager":
        return cls(settings.trash_root_path, settings.system_trash_path)

    @contextmanager
    def _journal(self):
        """Hold the manifest exclusively for a read-modify-write."""
        with self._lock:
            if self._journal_depth:
                self._journal_depth += 1
                try:
                    yield
                finally:
                    self._journal_depth -= 1
                return

            self.root.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a") as lock_file:
                # Blocks until any other manager on this root is done
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                self._journal_depth = 1
                try:
                    yield
                finally:
                    self._journal_depth = 0
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    # =========================================================================
    # Manifest persistence
    # =========================================================================

    def load_manifest(self) -> TrashManifest:
        """
        Read the manifest; a missing or corrupt file yields an empty one.

        A corrupt file is kept aside as ``manifest.json.corrupt`` before
        being treated as empty.
        """
        try:
            raw = self.manifest_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return TrashManifest()
        except OSError as e:
            raise from_os_error(e, str(self.manifest_path)) from e

        try:
            return parse_manifest(raw)
        except ManifestCorrupt as e:
            logger.warning("%s; treating trash journal as empty", e.message)
            self._quarantine_manifest()
            return TrashManifest()

    def save_manifest(self, manifest: TrashManifest) -> None:
        """Atomically replace the manifest on disk."""
        self.root.mkdir(parents=True, exist_ok=True)
        document = json.dumps(manifest.model_dump(mode="json", by_alias=True), indent=2)

        fd, tmp_name = tempfile.mkstemp(prefix=".manifest-", suffix=".tmp", dir=self.root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(document)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.manifest_path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def _quarantine_manifest(self) -> None:
        corrupt = self.manifest_path.with_name(MANIFEST_NAME + CORRUPT_SUFFIX)
        try:
            os.replace(self.manifest_path, corrupt)
            logger.warning("Unreadable manifest kept at %s", corrupt)
        except OSError as e:
            logger.warning("Could not set aside corrupt manifest: %s", e)

    # =========================================================================
    # Operations (raise DiskbinError)
    # =========================================================================

    def trash(self, path: Union[str, Path]) -> TrashEntry:
        """
        Soft-delete a path: move it under the trash root and journal it.

        Raises:
            NotFound / PermissionDenied: The path cannot be stat'ed or moved
        """
        source = Path(os.path.abspath(os.path.expanduser(str(path))))
        try:
            st = os.lstat(source)
        except OSError as e:
            raise from_os_error(e, str(source)) from e

        if not source.name:
            raise PermissionDenied("Refusing to trash a filesystem root", str(source))
        real_source = Path(os.path.realpath(source))
        real_root = Path(os.path.realpath(self.root))
        if real_source == real_root or real_root in real_source.parents:
            raise PermissionDenied("Cannot trash the trash itself", str(source))
        if real_source in real_root.parents:
            raise PermissionDenied("Cannot trash a directory containing the trash", str(source))

        is_directory = stat.S_ISDIR(st.st_mode)
        size = get_path_size(source) if is_directory else st.st_size
        item_id = self._id_factory()
        stored_name = f"{item_id}_{source.name}"
        payload = self.files_dir / stored_name

        with self._journal():
            self.files_dir.mkdir(parents=True, exist_ok=True)
            try:
                shutil.move(str(source), str(payload))
            except OSError as e:
                raise from_os_error(e, str(source)) from e

            entry = TrashEntry(
                id=item_id,
                name=source.name,
                original_path=str(source),
                stored_name=stored_name,
                trashed_at=self._clock(),
                size=size,
                is_directory=is_directory,
            )
            try:
                manifest = self.load_manifest()
                manifest.items.append(entry)
                self.save_manifest(manifest)
            except (DiskbinError, OSError):
                self._undo_move(payload, source)
                raise

        logger.info("Trashed %s (%d bytes) as %s", source, size, item_id)
        return entry

    def _undo_move(self, payload: Path, source: Path) -> None:
        try:
            shutil.move(str(payload), str(source))
            logger.warning("Journal write failed; moved %s back", source)
        except OSError as e:
            logger.warning("Journal write failed and %s stays orphaned at %s: %s", source, payload, e)

    def restore(self, item_id: str) -> TrashEntry:
        """
        Move an app-owned item back to where it came from.

        Raises:
            InvalidTrashId: The id belongs to the system trash
            NotFound: Unknown id or missing payload
            RestoreCollision: Something already exists at the original path
        """
        if is_system_id(item_id):
            raise InvalidTrashId("System trash items cannot be restored here")

        with self._journal():
            manifest = self.load_manifest()
            entry = manifest.find(item_id)
            if entry is None:
                raise NotFound(f"No trashed item with id {item_id}")

            payload = self.files_dir / entry.stored_name
            if not os.path.lexists(payload):
                raise NotFound(f"Trashed payload is missing: {payload}", str(payload))

            destination = Path(entry.original_path)
            if os.path.lexists(destination):
                raise RestoreCollision(
                    f"Destination already exists: {destination}", str(destination)
                )

            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(payload), str(destination))
            except OSError as e:
                raise from_os_error(e, str(destination)) from e

            self.save_manifest(manifest.without(item_id))

        logger.info("Restored %s to %s", item_id, destination)
        return entry

    def purge(self, item_id: str) -> None:
        """
        Permanently delete one trashed item (app-owned or system).

        A payload that already disappeared still has its entry dropped.

        Raises:
            NotFound: Unknown id
            InvalidTrashId: System id outside the system trash
        """
        if is_system_id(item_id):
            self._purge_system(item_id)
            return

        with self._journal():
            manifest = self.load_manifest()
            entry = manifest.find(item_id)
            if entry is None:
                raise NotFound(f"No trashed item with id {item_id}")

            payload = self.files_dir / entry.stored_name
            try:
                remove_path(payload)
            except FileNotFoundError:
                logger.info("Payload for %s was already gone", item_id)
            except OSError as e:
                raise from_os_error(e, str(payload)) from e

            self.save_manifest(manifest.without(item_id))

        logger.info("Permanently deleted %s (%s)", item_id, entry.original_path)

    def _purge_system(self, item_id: str) -> None:
        root = self.system_trash_dir
        path = decode_system_id(item_id)
        if root is None or path is None:
            raise InvalidTrashId(f"Not a valid system trash id: {item_id}")

        files_dir = payload_dir(root)
        if not is_strictly_inside(path, files_dir):
            raise InvalidTrashId(f"Path is outside the system trash: {path}", str(path))
        if not os.path.lexists(path):
            raise NotFound(f"System trash item is gone: {path}", str(path))

        try:
            remove_path(path)
        except OSError as e:
            raise from_os_error(e, str(path)) from e

        if files_dir != root and os.path.realpath(path.parent) == os.path.realpath(files_dir):
            try:
                info_file_for(root, path.name).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove trash info for %s: %s", path, e)

        logger.info("Permanently deleted system trash item %s", path)

    def empty(self) -> int:
        """
        Best-effort delete of everything in both trashes.

        Per-item failures are logged and skipped; the manifest is reset to
        empty regardless.

        Returns:
            Number of items that could not be removed
        """
        failures = 0
        with self._journal():
            manifest = self.load_manifest()
            payloads = [self.files_dir / e.stored_name for e in manifest.items]
            payloads.extend(self.orphaned_payloads(manifest))

            for payload in payloads:
                try:
                    remove_path(payload)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    failures += 1
                    logger.warning("Could not delete %s: %s", payload, e)

            for item in list_system_trash(self.system_trash_dir, size_fn=lambda _: 0):
                try:
                    self._purge_system(item.id)
                except DiskbinError as e:
                    failures += 1
                    logger.warning("Could not delete system trash item %s: %s", item.name, e.message)

            self.save_manifest(TrashManifest())

        logger.info("Emptied trash (%d failures)", failures)
        return failures

    def orphaned_payloads(self, manifest: Optional[TrashManifest] = None) -> list[Path]:
        """Payloads under files/ that no manifest entry points at."""
        if manifest is None:
            with self._lock:
                manifest = self.load_manifest()
        known = manifest.stored_names()
        try:
            return sorted(p for p in self.files_dir.iterdir() if p.name not in known)
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning("Cannot list %s: %s", self.files_dir, e)
            return []

    def list_trash_items(self) -> list[TrashItem]:
        """App-owned and system trash items, newest first."""
        with self._lock:
            manifest = self.load_manifest()
        items = [TrashItem.from_entry(e) for e in manifest.items]
        items.extend(list_system_trash(self.system_trash_dir))
        items.sort(key=lambda i: i.trashed_at, reverse=True)
        return items

    # =========================================================================
    # Result-returning API
    # =========================================================================

    def move_to_trash(self, path: Union[str, Path]) -> TrashResult:
        try:
            entry = self.trash(path)
        except DiskbinError as e:
            return TrashResult.failed(e)
        except OSError as e:
            return TrashResult.failed(from_os_error(e, str(path)))
        return TrashResult.ok(entry.id)

    def restore_from_trash(self, item_id: str) -> TrashResult:
        return self._as_result(self.restore, item_id)

    def permanently_delete(self, item_id: str) -> TrashResult:
        return self._as_result(self.purge, item_id)

    def empty_trash(self) -> TrashResult:
        try:
            failures = self.empty()
        except DiskbinError as e:
            return TrashResult.failed(e)
        except OSError as e:
            return TrashResult.failed(from_os_error(e, str(self.manifest_path)))
        if failures:
            return TrashResult(success=True, message=f"{failures} items could not be removed")
        return TrashResult.ok()

    def _as_result(self, operation: Callable[[str], object], item_id: str) -> TrashResult:
        try:
            operation(item_id)
        except DiskbinError as e:
            logger.info("%s failed for %s: %s", operation.__name__, item_id, e.message)
            return TrashResult.failed(e, item_id)
        except OSError as e:
            return TrashResult.failed(from_os_error(e), item_id)
        return TrashResult.ok(item_id)
