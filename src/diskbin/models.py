"""Data models for diskbin."""

from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field

from diskbin.errors import DiskbinError, ErrorKind

MISC_BUCKET_ID = "Misc / Other"
FOLDERS_BUCKET_ID = "Other Folders"
BUCKET_IDS = frozenset({MISC_BUCKET_ID, FOLDERS_BUCKET_ID})


def format_size(size_bytes: int) -> str:
    """Format bytes to human-readable string (decimal units)."""
    if size_bytes >= 1000**3:
        return f"{size_bytes / (1000**3):.1f} GB"
    elif size_bytes >= 1000**2:
        return f"{size_bytes / (1000**2):.1f} MB"
    elif size_bytes >= 1000:
        return f"{size_bytes / 1000:.1f} KB"
    else:
        return f"{size_bytes} B"


class NodeCategory(str, Enum):
    """Category of a node in the size-aggregation tree."""

    CODE = "code"
    MEDIA = "media"
    DOCS = "docs"
    SYSTEM = "system"
    FOLDER = "folder"
    OTHER = "other"  # Unlisted extensions and synthetic buckets


class DiskNode(BaseModel):
    """One node of the size-aggregation tree."""

    id: str = Field(..., description="Display label (name or bucket label)")
    value: int = Field(..., description="Aggregate size in bytes")
    path: Optional[str] = Field(None, description="Absolute filesystem path")
    category: NodeCategory = Field(..., description="Node category")
    children: Optional[list["DiskNode"]] = Field(
        None, description="Children, present only on expanded directories"
    )

    @property
    def is_bucket(self) -> bool:
        """Whether this is a synthetic bucket of folded items."""
        return self.category == NodeCategory.OTHER and self.id in BUCKET_IDS and not self.children

    @property
    def size_human(self) -> str:
        """Human-readable size string."""
        return format_size(self.value)

    def iter_leaves(self) -> Iterator["DiskNode"]:
        """Yield every node without children (files, buckets, empty dirs)."""
        if not self.children:
            yield self
            return
        for child in self.children:
            yield from child.iter_leaves()

    def to_dict(self) -> dict:
        """JSON-ready dict; fields that are None are left out."""
        return self.model_dump(mode="json", exclude_none=True)


class TrashSource(str, Enum):
    """Where a trashed item lives."""

    APP = "app"
    SYSTEM = "system"


class TrashEntry(BaseModel):
    """One record in the app-owned trash journal."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., description="Globally unique id assigned at soft-delete")
    name: str = Field(..., description="Basename of the trashed item")
    original_path: str = Field(..., alias="originalPath", description="Where the item lived")
    stored_name: str = Field(..., alias="storedName", description="Payload name under files/")
    trashed_at: int = Field(..., alias="trashedAt", description="Epoch milliseconds")
    size: int = Field(0, description="Size in bytes at trash time")
    is_directory: bool = Field(False, alias="isDirectory")


class TrashManifest(BaseModel):
    """Persisted journal of app-owned trashed items."""

    version: int = Field(1, description="Manifest format version")
    items: list[TrashEntry] = Field(default_factory=list)

    def find(self, item_id: str) -> Optional[TrashEntry]:
        for entry in self.items:
            if entry.id == item_id:
                return entry
        return None

    def without(self, item_id: str) -> "TrashManifest":
        """Copy of the manifest with the given entry dropped."""
        return TrashManifest(
            version=self.version,
            items=[e for e in self.items if e.id != item_id],
        )

    def stored_names(self) -> set[str]:
        return {e.stored_name for e in self.items}


class TrashItem(BaseModel):
    """One row of the unified trash listing."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Manifest id, or encoded path for system items")
    name: str
    original_path: str = Field(..., alias="originalPath")
    trashed_at: int = Field(..., alias="trashedAt", description="Epoch milliseconds")
    size: int = 0
    is_directory: bool = Field(False, alias="isDirectory")
    source: TrashSource

    @classmethod
    def from_entry(cls, entry: TrashEntry) -> "TrashItem":
        return cls(
            id=entry.id,
            name=entry.name,
            original_path=entry.original_path,
            trashed_at=entry.trashed_at,
            size=entry.size,
            is_directory=entry.is_directory,
            source=TrashSource.APP,
        )


class TrashResult(BaseModel):
    """Outcome of a trash operation; truthy when it succeeded."""

    success: bool = Field(..., description="Whether the operation succeeded")
    item_id: Optional[str] = Field(None, description="Id of the affected item")
    error: Optional[ErrorKind] = Field(None, description="Failure kind")
    message: Optional[str] = Field(None, description="Failure detail")

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, item_id: Optional[str] = None) -> "TrashResult":
        return cls(success=True, item_id=item_id)

    @classmethod
    def failed(cls, exc: DiskbinError, item_id: Optional[str] = None) -> "TrashResult":
        return cls(success=False, item_id=item_id, error=exc.kind, message=exc.message)
