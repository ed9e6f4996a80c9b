"""Meditations migrator: the composite records referencing every other collection."""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .base import BaseMigrator
from .frames import frame_key
from ..extractors.base import Row
from ..models.record import MediaSource, MediaTransferRecord, TargetRecord, ValidationRule
from ..models.rows import MeditationRow, split_tags
from ..services.id_map import IdMap
from ..services.media_transfer import MEDIA_COLLECTION
from ..services.transformer import slugify

logger = logging.getLogger(__name__)

DEFAULT_NARRATOR_INDEX = 0
PLACEHOLDER_FILENAME = "placeholder.jpg"
PATH_PLACEHOLDER_FILENAME = "path.jpg"
PATH_TAG = "path"
LOCALE = "en"


def normalize_frames(frames: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Clean a meditation's frame timeline.

    Entries without a frame id or with a missing, negative or NaN timestamp
    are dropped. The rest are sorted by timestamp and, when several share a
    timestamp, the first one (in source order) is kept.

    Returns:
        The cleaned frames and a warning per dropped entry
    """
    warnings: List[str] = []
    valid = []
    for entry in frames:
        frame_id = entry.get("frame")
        timestamp = entry.get("timestamp")
        if not isinstance(frame_id, str) or not frame_id:
            warnings.append(f"dropping frame entry without a frame id: {entry}")
            continue
        if (
            isinstance(timestamp, bool)
            or not isinstance(timestamp, (int, float))
            or math.isnan(timestamp)
            or timestamp < 0
        ):
            warnings.append(f"dropping frame {frame_id} with invalid timestamp {timestamp!r}")
            continue
        valid.append(entry)

    # sorted() is stable, so the first of equal timestamps stays first
    result = []
    seen = set()
    for entry in sorted(valid, key=lambda e: e["timestamp"]):
        if entry["timestamp"] in seen:
            warnings.append(f"dropping frame {entry['frame']} at duplicate timestamp {entry['timestamp']}")
            continue
        seen.add(entry["timestamp"])
        result.append(entry)
    return result, warnings


def unique_timestamps(value: Any, record: Dict[str, Any]) -> Optional[str]:
    timestamps = [entry.get("timestamp") for entry in value]
    if len(timestamps) != len(set(timestamps)):
        return "frames contain duplicate timestamps"
    return None


class MeditationsMigrator(BaseMigrator):
    """
    Migrates published ``meditations`` into the ``meditations`` collection.

    Handles:
    - Narrator index to narrator, which also picks the frame variant
    - Tag names (taggings and the legacy tags column) to meditation tags
    - Music tag by name
    - Keyframes to an ordered, deduplicated frame timeline
    - Thumbnail upload with deduplication, or a placeholder
    - Audio file upload

    Unresolved references are dropped with a warning instead of failing
    the meditation.
    """

    source_table = "meditations"
    target_collection = "meditations"

    def __init__(
        self,
        *args,
        narrator_map: IdMap,
        frame_map: IdMap,
        meditation_tag_map: IdMap,
        music_tag_map: IdMap,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.narrator_map = narrator_map
        self.frame_map = frame_map
        self.meditation_tag_map = meditation_tag_map
        self.music_tag_map = music_tag_map

    def get_validation_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(field="title", required=True, type="string"),
            ValidationRule(field="locale", required=True, type="string"),
            ValidationRule(field="slug", required=True, type="string", pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$"),
            ValidationRule(field="duration", type="number", min=0),
            ValidationRule(field="tags", type="array"),
            ValidationRule(field="frames", type="array", custom=unique_timestamps),
        ]

    def make_slug(self, meditation: MeditationRow) -> str:
        suffix = meditation.duration if meditation.duration is not None else meditation.id
        base = slugify(meditation.title)
        return f"{base}-{suffix}" if base else str(suffix)

    def resolve_narrator(self, meditation: MeditationRow, warnings: List[str]) -> Tuple[Optional[str], str]:
        """Narrator id and the frame variant that goes with it."""
        index = meditation.narrator
        narrator_id = self.narrator_map.get(index) if index is not None else None
        if narrator_id is None:
            warnings.append(f"narrator {index} not found, using narrator {DEFAULT_NARRATOR_INDEX}")
            index = DEFAULT_NARRATOR_INDEX
            narrator_id = self.narrator_map.get(index)
        variant = self.config.narrator_variants.get(index, "male")
        return narrator_id, variant

    def tag_names(self, meditation: MeditationRow) -> List[str]:
        names = self.index.tag_names_for("Meditation", meditation.id)
        for name in split_tags(meditation.tags):
            if name not in names:
                names.append(name)
        return names

    def resolve_tags(self, names: List[str], warnings: List[str]) -> List[str]:
        tag_ids = []
        for name in names:
            tag_id = self.meditation_tag_map.get(name)
            if tag_id is None:
                warnings.append(f"meditation tag '{name}' has not been migrated")
            elif tag_id not in tag_ids:
                tag_ids.append(tag_id)
        return tag_ids

    def resolve_music_tag(self, meditation: MeditationRow, warnings: List[str]) -> Optional[str]:
        if not meditation.music_tag:
            return None
        name = meditation.music_tag.strip().lower()
        tag_id = self.music_tag_map.get(name)
        if tag_id is None:
            warnings.append(f"music tag '{name}' has not been migrated")
        return tag_id

    def resolve_frames(self, meditation: MeditationRow, variant: str, warnings: List[str]) -> List[Dict[str, Any]]:
        frames = []
        for keyframe in self.index.keyframes_for("Meditation", meditation.id):
            frame_id = self.frame_map.get(frame_key(keyframe.frame_id, variant))
            if frame_id is None:
                warnings.append(f"frame {frame_key(keyframe.frame_id, variant)} has not been migrated, dropping it")
                continue
            frames.append({"frame": frame_id, "timestamp": keyframe.seconds})

        frames, frame_warnings = normalize_frames(frames)
        warnings.extend(frame_warnings)
        return frames

    def resolve_thumbnail(
        self,
        meditation: MeditationRow,
        tag_names: List[str],
        media: List[MediaTransferRecord]
    ) -> Optional[str]:
        """Upload the meditation art, or fall back to a placeholder."""
        if self.media is None:
            return None

        thumbnail_tag = self.media.get_thumbnail_tag()
        tags = [thumbnail_tag] if thumbnail_tag else []

        art = self.index.attachments_for("Meditation", meditation.id).get("art")
        if art is not None:
            transferred = self.media.upload_with_dedup(
                MediaSource(key=art.key, filename=art.filename, content_type=art.content_type, byte_size=art.byte_size),
                MEDIA_COLLECTION,
                {"alt": meditation.title},
                tags=tags,
            )
            if transferred is not None:
                media.append(transferred)
                return transferred.target_id

        placeholder = PATH_PLACEHOLDER_FILENAME if PATH_TAG in tag_names else PLACEHOLDER_FILENAME
        logger.info(f"Using {placeholder} as thumbnail for meditation {meditation.id}")
        return self.media.get_placeholder(placeholder, tags)

    def transform_row(self, row: Row) -> Optional[TargetRecord]:
        meditation = MeditationRow.model_validate(row)
        if not meditation.published:
            logger.debug(f"Skipping unpublished meditation {meditation.id}")
            return None

        warnings: List[str] = []
        media: List[MediaTransferRecord] = []

        slug = self.make_slug(meditation)
        narrator_id, variant = self.resolve_narrator(meditation, warnings)
        tag_names = self.tag_names(meditation)

        attachment = None
        audio = self.index.attachments_for("Meditation", meditation.id).get("audio")
        if audio is not None:
            attachment = MediaSource(
                key=audio.key,
                filename=audio.filename,
                content_type=audio.content_type,
                byte_size=audio.byte_size,
            )

        data = {
            "title": meditation.title,
            "slug": slug,
            "locale": LOCALE,
            "duration": meditation.duration,
            "narrator": narrator_id,
            "tags": self.resolve_tags(tag_names, warnings),
            "musicTag": self.resolve_music_tag(meditation, warnings),
            "frames": self.resolve_frames(meditation, variant, warnings),
            "thumbnail": self.resolve_thumbnail(meditation, tag_names, media),
            "isPublished": True,
        }

        # Keep the legacy publish time; "now" only applies to a newly created record
        create_defaults = {}
        published_at = meditation.published_at or meditation.created_at
        if published_at is not None:
            data["publishAt"] = published_at.isoformat()
        else:
            create_defaults["publishAt"] = datetime.utcnow().isoformat()

        return TargetRecord(
            collection=self.get_target_collection(),
            source_key=meditation.id,
            data=data,
            natural_key={"slug": slug},
            attachment=attachment,
            locale=LOCALE,
            warnings=warnings,
            media=media,
            create_defaults=create_defaults,
        )
