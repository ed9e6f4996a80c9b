"""Derive column-to-field mappings from source table schemas."""

import logging
from typing import Callable, Dict, List, Optional

from ..models.schema import (
    CollectionMappings,
    ColumnInfo,
    FieldMapping,
    TableSchema,
)

logger = logging.getLogger(__name__)

# Known fields of each target collection
COLLECTION_FIELDS: Dict[str, List[str]] = {
    "tags": ["title"],
    "music": ["title", "slug", "duration", "tags", "credit"],
    "frames": ["name", "imageSet", "tags", "dimensions", "duration"],
    "meditations": [
        "title", "locale", "slug", "thumbnail", "duration",
        "narrator", "tags", "musicTag", "isPublished", "publishedDate", "frames",
    ],
}

# Column name fragment -> target field
COMMON_MAPPINGS: Dict[str, str] = {
    "name": "title",
    "description": "credit",
    "published": "isPublished",
    "published_at": "publishedDate",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "image_set": "imageSet",
    "music_tag": "musicTag",
}


# Source table (singular or plural) -> target collection. Join tables such as
# keyframes and taggings are read through the legacy index, not mapped.
TABLE_COLLECTIONS: Dict[str, str] = {
    "tag": "tags",
    "tags": "tags",
    "music": "music",
    "musics": "music",
    "frame": "frames",
    "frames": "frames",
    "meditation": "meditations",
    "meditations": "meditations",
}


def guess_collection_name(table_name: str) -> Optional[str]:
    """Associate a source table with a target collection by name."""
    return TABLE_COLLECTIONS.get(table_name.strip().lower())


class FieldMapper:
    """
    Proposes field mappings for source tables and lets a user confirm them.

    Proposals are tried in order: foreign key to relationship, exact field
    name, common synonym, and finally tag-like columns split into arrays.
    In interactive mode each proposal is confirmed with ``[Y/n/edit]``; a
    rejected proposal leaves the column unmapped.
    """

    def __init__(
        self,
        interactive: bool = False,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print
    ):
        """
        Initialize the mapper.

        Args:
            interactive: Ask for confirmation of every proposal
            input_func: Prompt function (injectable for tests)
            output_func: Output function for proposal listings
        """
        self.interactive = interactive
        self._input = input_func
        self._output = output_func

    def generate_mappings(self, schemas: List[TableSchema]) -> CollectionMappings:
        """
        Generate mappings for every table that belongs to a known collection.

        Tables that don't match a collection are skipped.
        """
        result = CollectionMappings()

        for schema in schemas:
            collection = guess_collection_name(schema.table_name)
            if not collection:
                logger.debug(f"No target collection for table {schema.table_name}")
                continue

            if collection in result.mappings:
                logger.warning(
                    f"Table {schema.table_name} also matches {collection}, keeping the first mapping"
                )
                continue

            field_mappings = self.generate_table_mappings(schema, collection)
            result.mappings[collection] = field_mappings
            logger.info(
                f"Mapped {schema.table_name} -> {collection}: {len(field_mappings)} fields"
            )

        return result

    def generate_table_mappings(self, schema: TableSchema, collection: str) -> List[FieldMapping]:
        """Propose and confirm mappings for one table."""
        if self.interactive:
            self._output(f"\n=== Mapping {schema.table_name} to {collection} ===")

        mappings = []
        target_fields = COLLECTION_FIELDS.get(collection, [])

        for column in schema.columns:
            proposed = self.propose_mapping(column.name, target_fields, schema)
            if not proposed:
                continue

            confirmed = self.confirm_mapping(column, proposed) if self.interactive else proposed
            if confirmed:
                mappings.append(confirmed)

        return mappings

    def propose_mapping(
        self,
        column_name: str,
        target_fields: List[str],
        schema: TableSchema
    ) -> Optional[FieldMapping]:
        """Propose a mapping for a column, or None if nothing fits."""
        lowered = column_name.lower()

        foreign_key = schema.get_foreign_key(column_name)
        if foreign_key:
            relation_to = guess_collection_name(foreign_key.referenced_table)
            if relation_to:
                target = column_name[:-3] if column_name.endswith("_id") else column_name
                return FieldMapping(
                    source_column=column_name,
                    target_field=target,
                    is_relationship=True,
                    relation_to=relation_to,
                )
            return FieldMapping(source_column=column_name, target_field=column_name)

        for target in target_fields:
            if target.lower() == lowered:
                return FieldMapping(source_column=column_name, target_field=target)

        for fragment, target in COMMON_MAPPINGS.items():
            if fragment in lowered and target in target_fields:
                return FieldMapping(source_column=column_name, target_field=target)

        if "tag" in lowered and "tags" in target_fields:
            return FieldMapping(source_column=column_name, target_field="tags", transform="split_csv")

        return None

    def confirm_mapping(self, column: ColumnInfo, proposed: FieldMapping) -> Optional[FieldMapping]:
        """Ask the user to accept, reject or edit a proposal."""
        relationship_info = f" -> {proposed.relation_to}" if proposed.is_relationship else ""
        transform_info = f" [{proposed.transform}]" if proposed.transform else ""
        self._output(
            f"  {column.name} ({column.data_type}) -> {proposed.target_field}{relationship_info}{transform_info}"
        )

        answer = self._input("    Confirm mapping? [Y/n/edit]: ").strip().lower()

        if answer == "n":
            return None

        if answer == "edit":
            new_target = self._input("    Enter target field name: ").strip()
            if not new_target:
                return None
            return FieldMapping(
                source_column=proposed.source_column,
                target_field=new_target,
                transform=proposed.transform,
                is_relationship=proposed.is_relationship,
                relation_to=proposed.relation_to,
            )

        return proposed

    def save_to_file(self, mappings: CollectionMappings, path: str) -> None:
        """Persist mappings as versioned JSON."""
        mappings.to_json_file(path)
        logger.info(f"Saved mappings to {path}")

    def load_from_file(self, path: str) -> CollectionMappings:
        """Load mappings saved by ``save_to_file``."""
        mappings = CollectionMappings.from_json_file(path)
        logger.info(f"Loaded mappings for {', '.join(mappings.collections) or 'no collections'} from {path}")
        return mappings
