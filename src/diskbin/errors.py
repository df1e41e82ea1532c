"""Error taxonomy for diskbin."""

import errno
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Machine-readable failure kinds carried by results and exceptions."""

    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    NOT_A_DIRECTORY = "not_a_directory"
    RESTORE_COLLISION = "restore_collision"
    TRAVERSAL_FAULT = "traversal_fault"
    MANIFEST_CORRUPT = "manifest_corrupt"
    INVALID_ID = "invalid_id"


class DiskbinError(Exception):
    """Base class for all diskbin errors."""

    kind: ErrorKind = ErrorKind.TRAVERSAL_FAULT

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path


class PermissionDenied(DiskbinError):
    kind = ErrorKind.PERMISSION_DENIED


class NotFound(DiskbinError):
    kind = ErrorKind.NOT_FOUND


class NotADirectory(DiskbinError):
    kind = ErrorKind.NOT_A_DIRECTORY


class RestoreCollision(DiskbinError):
    """Restore destination is already occupied."""

    kind = ErrorKind.RESTORE_COLLISION


class TraversalFault(DiskbinError):
    kind = ErrorKind.TRAVERSAL_FAULT


class ScanFailed(TraversalFault):
    """A scan worker raised or exited before delivering its tree."""


class ManifestCorrupt(DiskbinError):
    kind = ErrorKind.MANIFEST_CORRUPT


class InvalidTrashId(DiskbinError):
    """Id is malformed, points outside the system trash, or cannot be restored."""

    kind = ErrorKind.INVALID_ID


def from_os_error(exc: OSError, path: Optional[str] = None) -> DiskbinError:
    """
    Map an OSError onto the diskbin taxonomy.

    Args:
        exc: The original OS error
        path: Path the operation was acting on (falls back to exc.filename)

    Returns:
        The matching DiskbinError instance (not raised)
    """
    target = path or (str(exc.filename) if exc.filename else None)
    message = f"{exc.strerror or exc}: {target}" if target else str(exc)

    if isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM):
        return PermissionDenied(message, target)
    if isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT:
        return NotFound(message, target)
    if isinstance(exc, NotADirectoryError) or exc.errno == errno.ENOTDIR:
        return NotADirectory(message, target)
    if isinstance(exc, FileExistsError) or exc.errno in (errno.EEXIST, errno.ENOTEMPTY):
        return RestoreCollision(message, target)
    return TraversalFault(message, target)
