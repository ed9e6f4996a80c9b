"""Typed models for rows of the legacy tables.

Rows are parsed once where they are read, so the migrators work on typed
attributes rather than loose dictionaries.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class SourceRow(BaseModel):
    """Base for legacy rows. Extra columns are kept but ignored."""
    model_config = ConfigDict(extra="allow")


class TagRow(SourceRow):
    id: int
    name: str

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return value.strip().lower()


class FrameRow(SourceRow):
    id: int
    category: Optional[str] = None
    tags: Optional[str] = None


class MeditationRow(SourceRow):
    id: int
    title: Optional[str] = None
    duration: Optional[int] = None
    published: bool = False
    narrator: Optional[int] = None
    music_tag: Optional[str] = None
    tags: Optional[str] = None  # Comma-separated, on top of taggings
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MusicRow(SourceRow):
    id: int
    title: Optional[str] = None
    duration: Optional[float] = None
    credit: Optional[str] = None
    tags: Optional[str] = None  # Comma-separated, on top of taggings


class KeyframeRow(SourceRow):
    media_type: str
    media_id: int
    frame_id: int
    seconds: float


class TaggingRow(SourceRow):
    tag_id: int
    taggable_type: str
    taggable_id: int
    context: Optional[str] = None


class AttachmentRow(SourceRow):
    """An active_storage attachment joined with its blob."""
    name: str
    record_type: str
    record_id: int
    blob_id: int
    key: str
    filename: str
    content_type: Optional[str] = None
    byte_size: Optional[int] = None


def split_tags(value: Optional[str]) -> List[str]:
    """Split a comma-separated tag column into trimmed, lowercased names."""
    if not value:
        return []
    return [part.strip().lower() for part in str(value).split(",") if part.strip()]
