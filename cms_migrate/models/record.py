"""Record models flowing through the migration pipeline."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import os


@dataclass
class ValidationRule:
    """Declarative validation rule for one target field."""
    field: str
    required: bool = False
    type: Optional[str] = None  # string, number, boolean, date, email, url, array
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    custom: Optional[Callable[[Any, Dict[str, Any]], Optional[str]]] = None


@dataclass
class ValidationError:
    """A validation error on a record."""
    field: str
    message: str
    error_type: str = "validation"
    row: Optional[int] = None
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "error_type": self.error_type,
            "row": self.row,
            "value": self.value,
        }


@dataclass
class FileAttachment:
    """A local file to be uploaded alongside a target record."""
    path: str
    filename: str
    mime_type: str

    @property
    def size(self) -> int:
        return os.path.getsize(self.path)


@dataclass
class MediaSource:
    """Reference to a binary asset in the remote media origin."""
    key: str  # Storage key or absolute URL
    filename: str
    content_type: Optional[str] = None
    byte_size: Optional[int] = None


@dataclass
class MediaTransferRecord:
    """Result of transferring one asset into the target store."""
    source_key: str
    filename: str
    target_id: str
    mime_type: str
    byte_size: int = 0
    local_path: Optional[str] = None
    url: Optional[str] = None
    reused: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.target_id,
            "url": self.url,
            "filename": self.filename,
            "mimeType": self.mime_type,
            "filesize": self.byte_size,
            "source_key": self.source_key,
            "local_path": self.local_path,
            "reused": self.reused,
        }


@dataclass
class TargetRecord:
    """A transformed record ready to be written to a target collection."""
    collection: str
    source_key: Any  # ID map key for this record
    data: Dict[str, Any]
    natural_key: Dict[str, Any] = field(default_factory=dict)  # where-clause used to find an existing record
    attachment: Optional[MediaSource] = None
    locale: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    media: List[MediaTransferRecord] = field(default_factory=list)  # Related assets transferred while transforming
    create_defaults: Dict[str, Any] = field(default_factory=dict)  # Fields written only when the record is created
