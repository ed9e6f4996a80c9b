"""In-memory index over the legacy join tables (taggings, keyframes, attachments)."""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError as RowValidationError

from ..extractors.base import BaseSource, Row
from ..models.rows import AttachmentRow, KeyframeRow, TaggingRow, TagRow

logger = logging.getLogger(__name__)

TAGS_TABLE = "tags"
TAGGINGS_TABLE = "taggings"
KEYFRAMES_TABLE = "keyframes"
ATTACHMENTS_TABLE = "active_storage_attachments"
BLOBS_TABLE = "active_storage_blobs"


class LegacyIndex:
    """
    Lookups over the legacy join tables, loaded once per run.

    Every table is optional: a missing table is logged as a warning and
    yields empty lookups. Rows that don't parse are logged and skipped.
    """

    def __init__(self, source: BaseSource, tagging_context: str = "tags"):
        """
        Initialize the index.

        Args:
            source: Connected legacy source
            tagging_context: Only taggings in this context are indexed
        """
        self.source = source
        self.tagging_context = tagging_context
        self._loaded = False
        self._tag_names: Dict[int, str] = {}
        self._taggings: Dict[Tuple[str, int], List[int]] = defaultdict(list)
        self._tag_usage: Dict[str, Set[str]] = defaultdict(set)
        self._keyframes: Dict[Tuple[str, int], List[KeyframeRow]] = defaultdict(list)
        self._attachments: Dict[Tuple[str, int], Dict[str, AttachmentRow]] = defaultdict(dict)

    def load(self) -> None:
        """Load every lookup table (no-op once loaded)."""
        if self._loaded:
            return

        for row in self._fetch(TAGS_TABLE):
            tag = self._parse(TagRow, row, TAGS_TABLE)
            if tag:
                self._tag_names[tag.id] = tag.name

        for row in self._fetch(TAGGINGS_TABLE):
            tagging = self._parse(TaggingRow, row, TAGGINGS_TABLE)
            if not tagging or tagging.context != self.tagging_context:
                continue
            self._taggings[(tagging.taggable_type, tagging.taggable_id)].append(tagging.tag_id)
            name = self._tag_names.get(tagging.tag_id)
            if name:
                self._tag_usage[name].add(tagging.taggable_type)

        for row in self._fetch(KEYFRAMES_TABLE):
            keyframe = self._parse(KeyframeRow, row, KEYFRAMES_TABLE)
            if keyframe:
                self._keyframes[(keyframe.media_type, keyframe.media_id)].append(keyframe)
        for keyframes in self._keyframes.values():
            keyframes.sort(key=lambda k: k.seconds)

        blobs = {row.get("id"): row for row in self._fetch(BLOBS_TABLE)}
        for row in self._fetch(ATTACHMENTS_TABLE):
            blob = blobs.get(row.get("blob_id"))
            if blob is None:
                logger.warning(f"Attachment {row.get('id')} references missing blob {row.get('blob_id')}")
                continue
            joined = {
                **row,
                "key": blob.get("key"),
                "filename": blob.get("filename"),
                "content_type": blob.get("content_type"),
                "byte_size": blob.get("byte_size"),
            }
            attachment = self._parse(AttachmentRow, joined, ATTACHMENTS_TABLE)
            if attachment:
                # First attachment per name wins
                self._attachments[(attachment.record_type, attachment.record_id)].setdefault(
                    attachment.name, attachment
                )

        self._loaded = True
        logger.info(
            f"Indexed {len(self._tag_names)} tags, {sum(len(v) for v in self._taggings.values())} taggings, "
            f"{sum(len(v) for v in self._keyframes.values())} keyframes, "
            f"{sum(len(v) for v in self._attachments.values())} attachments"
        )

    def _fetch(self, table: str) -> List[Row]:
        if not self.source.table_exists(table):
            logger.warning(f"Table {table} not found in source, skipping")
            return []
        return self.source.fetch_all(table)

    @staticmethod
    def _parse(model, row: Row, table: str):
        try:
            return model.model_validate(row)
        except RowValidationError as e:
            logger.warning(f"Skipping malformed {table} row {row.get('id')}: {e.error_count()} errors")
            return None

    def tag_name(self, tag_id: int) -> Optional[str]:
        self.load()
        return self._tag_names.get(tag_id)

    def tag_names_for(self, taggable_type: str, taggable_id: int) -> List[str]:
        """Names of the tags attached to a record, in tagging order."""
        self.load()
        names = []
        for tag_id in self._taggings.get((taggable_type, taggable_id), []):
            name = self._tag_names.get(tag_id)
            if name and name not in names:
                names.append(name)
        return names

    def tag_usage(self, name: str) -> Set[str]:
        """Taggable types ("Meditation", "Music", ...) a tag name is used by."""
        self.load()
        return set(self._tag_usage.get(name, set()))

    def keyframes_for(self, media_type: str, media_id: int) -> List[KeyframeRow]:
        """Keyframes of a record ordered by offset."""
        self.load()
        return list(self._keyframes.get((media_type, media_id), []))

    def attachments_for(self, record_type: str, record_id: int) -> Dict[str, AttachmentRow]:
        """Attachments of a record keyed by attachment name."""
        self.load()
        return dict(self._attachments.get((record_type, record_id), {}))
