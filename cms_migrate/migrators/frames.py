"""Frames migrator: pose images/videos, split into male and female variants."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import BaseMigrator, SkipRecord
from ..errors import MediaTransferError
from ..extractors.base import Row
from ..models.migration import MigrationResult
from ..models.record import FileAttachment, MediaSource, TargetRecord, ValidationRule
from ..models.rows import FrameRow, split_tags
from ..services.media_processing import get_mime_type, is_image, is_video
from ..services.media_transfer import MEDIA_COLLECTION

logger = logging.getLogger(__name__)

FRAME_VARIANTS = ["male", "female"]

CATEGORIES = [
    "mooladhara",
    "swadhistan",
    "nabhi",
    "void",
    "anahat",
    "vishuddhi",
    "agnya",
    "sahasrara",
    "clearing",
    "kundalini",
    "meditate",
    "ready",
    "namaste",
]

# Legacy category -> frame category
CATEGORY_MAP: Dict[str, str] = {name: name for name in CATEGORIES}
CATEGORY_MAP["heart"] = "anahat"

ALLOWED_FRAME_TAGS = {
    "anahat", "back", "bandhan", "both hands", "center", "channel", "earth",
    "ego", "feel", "ham ksham", "hamsa", "hand", "hands", "ida", "left",
    "lefthanded", "massage", "pingala", "raise", "right", "righthanded",
    "rising", "silent", "superego", "tapping",
}


def map_category(category: Optional[str]) -> Optional[str]:
    if not category:
        return None
    return CATEGORY_MAP.get(category.strip().lower())


def frame_key(frame_id: int, variant: str) -> str:
    """ID map key of one variant of a legacy frame."""
    return f"{frame_id}_{variant}"


class FramesMigrator(BaseMigrator):
    """
    Migrates ``frames`` into the ``frames`` upload collection.

    Each legacy frame carries up to two attachments, ``male`` and ``female``;
    every attachment becomes its own frame record keyed ``<id>_<variant>``.

    Supports:
    - Category normalization through a fixed lookup
    - Tag filtering to the frame vocabulary
    - Images normalized to WebP
    - Videos checked against the size/duration limits, with a thumbnail
    """

    source_table = "frames"
    target_collection = "frames"
    attachment_required = True

    def get_validation_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(field="imageSet", required=True, pattern=r"^(male|female)$"),
            ValidationRule(field="category", required=True, type="string"),
            ValidationRule(field="tags", type="array"),
        ]

    def expand_row(self, row: Row) -> List[Row]:
        frame = FrameRow.model_validate(row)
        attachments = self.index.attachments_for("Frame", frame.id)
        if not attachments:
            raise SkipRecord(f"frame {frame.id} has no attachments")
        return [
            {**row, "variant": variant}
            for variant in FRAME_VARIANTS
            if variant in attachments
        ]

    def source_key(self, row: Row) -> Any:
        return frame_key(row["id"], row["variant"])

    def transform_row(self, row: Row) -> Optional[TargetRecord]:
        frame = FrameRow.model_validate(row)
        variant = row["variant"]

        category = map_category(frame.category)
        if category is None:
            raise SkipRecord(f"frame {frame.id} has unknown category '{frame.category}'")

        tags = [tag for tag in split_tags(frame.tags) if tag in ALLOWED_FRAME_TAGS]

        attachment = self.index.attachments_for("Frame", frame.id)[variant]
        filename = attachment.filename
        if self.media is not None and self.media.processor is not None and is_image(get_mime_type(filename)):
            # Stored under the normalized name
            filename = f"{Path(filename).stem}.webp"

        return TargetRecord(
            collection=self.get_target_collection(),
            source_key=frame_key(frame.id, variant),
            data={
                "imageSet": variant,
                "category": category,
                "tags": tags,
            },
            natural_key={"filename": filename},
            attachment=MediaSource(
                key=attachment.key,
                filename=attachment.filename,
                content_type=attachment.content_type,
                byte_size=attachment.byte_size,
            ),
        )

    def prepare_file(self, record: TargetRecord, result: MigrationResult) -> Optional[FileAttachment]:
        file = super().prepare_file(record, result)
        if file is None or not is_video(file.mime_type):
            return file

        processor = self.media.processor
        if processor is None:
            return file

        try:
            record.data["duration"] = processor.check_video(file.path)
            thumbnail_path = processor.video_thumbnail(file.path)
        except MediaTransferError as e:
            logger.warning(f"Skipping video {file.filename}: {e}")
            result.warnings.append(f"{record.source_key}: {e}")
            return None

        thumbnail = self.media.upload(
            FileAttachment(
                path=thumbnail_path,
                filename=f"{Path(file.filename).stem}-thumbnail.webp",
                mime_type="image/webp",
            ),
            MEDIA_COLLECTION,
            {"alt": f"{record.data.get('category')} {record.data.get('imageSet')} thumbnail"},
            source_key=record.attachment.key,
        )
        if thumbnail is not None:
            record.data["thumbnail"] = thumbnail.target_id
            result.add_media(thumbnail.byte_size)
        return file
