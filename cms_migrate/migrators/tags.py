"""Tags migrator: collects tag names from several tables and fans them out by usage."""

import logging
from typing import Any, Dict, List, Optional

from .base import BaseMigrator, SkipRecord
from ..extractors.base import Row
from ..models.record import TargetRecord, ValidationRule
from ..models.schema import FieldMapping
from ..services.id_map import IdMap
from ..models.rows import split_tags

logger = logging.getLogger(__name__)

MEDITATION_TAGS_COLLECTION = "meditation-tags"
MUSIC_TAGS_COLLECTION = "music-tags"

# (table, column, collection) for columns holding tag names, comma-separated where a
# row has several. Names from the tags table have no collection of their own and
# go wherever the taggings use them.
TAG_SOURCES = [
    ("tags", "name", None),
    ("meditations", "tags", MEDITATION_TAGS_COLLECTION),
    ("meditations", "music_tag", MUSIC_TAGS_COLLECTION),
    ("musics", "tags", MUSIC_TAGS_COLLECTION),
]

# Taggable type -> tag collection
USAGE_COLLECTIONS = {
    "Meditation": MEDITATION_TAGS_COLLECTION,
    "Music": MUSIC_TAGS_COLLECTION,
}


class TagsMigrator(BaseMigrator):
    """
    Creates one tag per distinct (case-insensitive) tag name.

    The legacy app had a single tag table; the target keeps separate
    taxonomies for meditations and music. A name goes to the taxonomies of
    the records that use it, either through the taggings table or through a
    tag column of their own table. Names nothing uses are skipped.
    """

    source_table = "tags"
    target_collection = MEDITATION_TAGS_COLLECTION
    label = "tags"

    def __init__(self, *args, meditation_tag_map: IdMap, music_tag_map: IdMap, **kwargs):
        self.tag_maps: Dict[str, IdMap] = {
            MEDITATION_TAGS_COLLECTION: meditation_tag_map,
            MUSIC_TAGS_COLLECTION: music_tag_map,
        }
        kwargs.setdefault("id_map", meditation_tag_map)
        super().__init__(*args, **kwargs)
        self._candidates: Optional[List[str]] = None
        self._column_collections: Dict[str, List[str]] = {}

    def get_validation_rules(self) -> List[ValidationRule]:
        return [ValidationRule(field="title", required=True, type="string")]

    def collect_tag_names(self) -> List[str]:
        """Distinct normalized tag names across every tag source, in first-seen order."""
        names: List[str] = []
        seen = set()
        self._column_collections = {}

        for table, column, collection in TAG_SOURCES:
            if not self.source.table_exists(table):
                logger.warning(f"Tag source table {table} not found, skipping")
                continue
            if column not in self.source.get_columns(table):
                logger.warning(f"Tag source column {table}.{column} not found, skipping")
                continue

            for value in self.source.distinct_values(table, column):
                for name in split_tags(value):
                    if name not in seen:
                        seen.add(name)
                        names.append(name)
                    if collection is not None:
                        owners = self._column_collections.setdefault(name, [])
                        if collection not in owners:
                            owners.append(collection)
            logger.debug(f"Collected tags from {table}.{column}: {len(names)} distinct so far")

        logger.info(f"Found {len(names)} distinct tag names")
        return names

    @property
    def candidates(self) -> List[str]:
        if self._candidates is None:
            self._candidates = self.collect_tag_names()
        return self._candidates

    def count_rows(self) -> int:
        return len(self.candidates)

    def fetch_rows(self, offset: int, limit: int) -> List[Row]:
        return [{"name": name} for name in self.candidates[offset:offset + limit]]

    def target_collections(self, name: str) -> List[str]:
        """Tag collections a name belongs in, from its usage."""
        wanted = set(self._column_collections.get(name, []))
        for taggable_type in self.index.tag_usage(name):
            collection = USAGE_COLLECTIONS.get(taggable_type)
            if collection:
                wanted.add(collection)
        return [c for c in (MEDITATION_TAGS_COLLECTION, MUSIC_TAGS_COLLECTION) if c in wanted]

    def expand_row(self, row: Row) -> List[Row]:
        collections = self.target_collections(row["name"])
        if not collections:
            raise SkipRecord(f"tag '{row['name']}' is not used by any meditation or music")
        return [{"name": row["name"], "collection": collection} for collection in collections]

    def source_key(self, row: Row) -> Any:
        return row["name"]

    def collection_for(self, row: Row) -> str:
        return row["collection"]

    def get_id_map(self, collection: str) -> Optional[IdMap]:
        return self.tag_maps.get(collection)

    def get_mappings(self, collection: str) -> List[FieldMapping]:
        return self.mappings.get("tags")

    def transform_row(self, row: Row) -> Optional[TargetRecord]:
        name = row["name"]
        return TargetRecord(
            collection=row["collection"],
            source_key=name,
            data={"name": name, "title": name},
            natural_key={"name": name},
        )
