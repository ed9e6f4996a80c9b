"""Base collection migrator: batching, validation, idempotent writes and error accounting."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from ..errors import RecordNotFoundError, SourceConnectionError
from ..extractors.base import BaseSource, Row
from ..loaders.base import TargetStore
from ..models.migration import MigrationConfig, MigrationResult, RunMode, WriteOutcome
from ..models.record import FileAttachment, TargetRecord, ValidationRule
from ..models.schema import CollectionMappings, FieldMapping
from ..services.id_map import IdMap
from ..services.legacy_index import LegacyIndex
from ..services.media_transfer import MediaTransfer
from ..services.transformer import TransformEngine
from ..services.validator import DataValidator

logger = logging.getLogger(__name__)


class SkipRecord(Exception):
    """Raised while transforming to skip a row with a warning."""


class BaseMigrator(ABC):
    """
    Base class for collection migrators.

    A migrator reads rows of one source table in batches and writes one (or
    more) target records per row. For each row it applies the field mappings,
    the migrator's own transform, validation, and then an idempotent write:

    - A source key already in the ID map is reused (skip mode) or updated
      in place (update mode).
    - Otherwise the store is searched by the record's natural key.
    - Otherwise the record is created, with its attachment if any.

    Row failures are recorded and never stop the batch, unless the number
    of errors passes ``config.max_errors``.
    """

    source_table: str = ""
    target_collection: str = ""
    label: str = ""  # Name used in results, defaults to the collection
    attachment_required: bool = False

    def __init__(
        self,
        source: BaseSource,
        store: TargetStore,
        config: MigrationConfig,
        id_map: Optional[IdMap] = None,
        mappings: Optional[CollectionMappings] = None,
        transformer: Optional[TransformEngine] = None,
        media: Optional[MediaTransfer] = None,
        index: Optional[LegacyIndex] = None,
        relation_maps: Optional[Dict[str, IdMap]] = None
    ):
        """
        Initialize the migrator.

        Args:
            source: Connected legacy source
            store: Target store (a DryRunStore for dry runs)
            config: Run configuration
            id_map: Source key -> target id map for the records this migrator writes
            mappings: Field mappings, applied before the migrator's own transform
            transformer: Transform engine for the field mappings
            media: Media transfer unit for attachments
            index: Lookups over the legacy join tables
            relation_maps: ID maps by collection, for relationship mappings
        """
        self.source = source
        self.store = store
        self.config = config
        self.id_map = id_map if id_map is not None else IdMap(self.get_target_collection())
        self.mappings = mappings or CollectionMappings()
        self.transformer = transformer or TransformEngine()
        self.media = media
        self.index = index or LegacyIndex(source)
        self.relation_maps = relation_maps or {}
        self.validator = DataValidator(self.get_validation_rules())

    # Identity

    def get_source_table(self) -> str:
        return self.source_table

    def get_target_collection(self) -> str:
        return self.target_collection

    def get_label(self) -> str:
        return self.label or self.get_target_collection()

    def get_validation_rules(self) -> List[ValidationRule]:
        return []

    # Hooks

    def count_rows(self) -> int:
        """Number of source rows to process."""
        table = self.get_source_table()
        if not self.source.table_exists(table):
            logger.warning(f"Table {table} not found in source, nothing to migrate")
            return 0
        return self.source.get_table_count(table)

    def fetch_rows(self, offset: int, limit: int) -> List[Row]:
        return self.source.fetch_batch(self.get_source_table(), offset, limit)

    def expand_row(self, row: Row) -> List[Row]:
        """
        Split a source row into the rows that each produce one target record.

        Most rows map to a single record. Raise SkipRecord to skip the row.
        """
        return [row]

    def source_key(self, row: Row) -> Any:
        """ID map key of the record an (expanded) row produces."""
        return row.get("id")

    def collection_for(self, row: Row) -> str:
        return self.get_target_collection()

    def get_id_map(self, collection: str) -> Optional[IdMap]:
        return self.id_map

    @abstractmethod
    def transform_row(self, row: Row) -> Optional[TargetRecord]:
        """
        Build the target record for a row.

        Returns:
            The target record, or None to skip the row silently

        Raises:
            SkipRecord: To skip the row with a warning
        """
        pass

    def get_mappings(self, collection: str) -> List[FieldMapping]:
        return self.mappings.get(collection)

    def resolve_relation(self, collection: str, value: Any) -> Optional[str]:
        """Resolve a mapped relationship through the ID map of its collection."""
        id_map = self.relation_maps.get(collection)
        if id_map is None:
            return None
        return id_map.get(value)

    def prepare_file(self, record: TargetRecord, result: MigrationResult) -> Optional[FileAttachment]:
        """Download and prepare the record's attachment, None if it is missing."""
        if record.attachment is None or self.media is None:
            return None
        return self.media.prepare_attachment(record.attachment)

    # Migration

    def migrate(self) -> MigrationResult:
        """
        Migrate every row of the source table.

        Returns:
            MigrationResult with counts and row errors
        """
        result = MigrationResult(collection=self.get_label())
        result.started_at = datetime.utcnow()
        logger.info(f"=== Migrating {self.get_label()} ===")

        try:
            result.total = self.count_rows()
            logger.info(f"Found {result.total} {self.get_label()} rows")

            offset = 0
            batch_size = max(1, self.config.batch_size)
            while offset < result.total and not result.halted:
                rows = self.fetch_rows(offset, batch_size)
                if not rows:
                    break
                self.process_batch(rows, offset, result)
                offset += len(rows)
                logger.info(f"{self.get_label()}: processed {min(offset, result.total)}/{result.total}")
        finally:
            result.completed_at = datetime.utcnow()

        logger.info(
            f"{self.get_label()} done: {result.created} created, {result.updated} updated, "
            f"{result.existing} existing, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    def process_batch(self, rows: List[Row], offset: int, result: MigrationResult) -> None:
        """Process rows one at a time, stopping at the error ceiling."""
        for i, row in enumerate(rows):
            self.process_row(row, offset + i + 1, result)

            if len(result.errors) > self.config.max_errors:
                result.success = False
                result.halted = True
                logger.error(
                    f"{self.get_label()}: {len(result.errors)} errors exceed the limit of "
                    f"{self.config.max_errors}, halting"
                )
                break

    def process_row(self, row: Row, row_number: int, result: MigrationResult) -> None:
        """Transform, validate and write a single source row. Never raises for row-level failures."""
        try:
            expanded = self.expand_row(row)
        except SkipRecord as e:
            self._warn(result, row_number, str(e))
            result.record(WriteOutcome.SKIPPED)
            return
        except SourceConnectionError:
            raise
        except Exception as e:
            logger.error(f"{self.get_label()} row {row_number}: {e}")
            result.fail(row_number, str(e), data=row)
            return

        if not expanded:
            self._warn(result, row_number, f"row {row.get('id')} produced no records")
            result.record(WriteOutcome.SKIPPED)
            return

        for sub_row in expanded:
            self._process_record(sub_row, row_number, result)

    def _process_record(self, row: Row, row_number: int, result: MigrationResult) -> None:
        if self.config.run_mode == RunMode.SKIP:
            key = self.source_key(row)
            id_map = self.get_id_map(self.collection_for(row))
            if key is not None and id_map is not None and id_map.has(key):
                logger.debug(f"{self.get_label()} {key} already migrated as {id_map.get(key)}")
                result.record(WriteOutcome.EXISTING)
                return

        try:
            record = self.transform_row(row)
            if record is None:
                result.record(WriteOutcome.SKIPPED)
                return

            mapped = self.transformer.apply_mappings(
                row, self.get_mappings(record.collection), self.resolve_relation
            )
            record.data = {**mapped, **record.data}

            for media in record.media:
                result.add_media(media.byte_size, media.reused)
            for warning in record.warnings:
                self._warn(result, row_number, warning)

            errors = self.validator.validate(record.data, row_number)
            if errors:
                first, rest = errors[0], errors[1:]
                result.fail(row_number, first.message, first.field, data=row)
                for error in rest:
                    result.add_error(row_number, error.message, error.field, data=row)
                logger.error(
                    f"{self.get_label()} row {row_number} failed validation: "
                    f"{'; '.join(e.message for e in errors)}"
                )
                return

            outcome = self.write_record(record, result)
            result.record(outcome)

        except SkipRecord as e:
            self._warn(result, row_number, str(e))
            result.record(WriteOutcome.SKIPPED)
        except SourceConnectionError:
            raise
        except Exception as e:
            logger.error(f"{self.get_label()} row {row_number}: {e}")
            result.fail(row_number, str(e), data=row)

    def write_record(self, record: TargetRecord, result: MigrationResult) -> WriteOutcome:
        """
        Write a record without creating duplicates.

        Args:
            record: Validated target record
            result: Result receiving media statistics

        Returns:
            What happened to the record
        """
        collection = record.collection
        id_map = self.get_id_map(collection)
        update_mode = self.config.run_mode == RunMode.UPDATE

        mapped_id = id_map.get(record.source_key) if id_map is not None else None
        if mapped_id is not None:
            if not update_mode:
                return WriteOutcome.EXISTING
            try:
                self.store.update(collection, mapped_id, record.data, locale=record.locale)
                return WriteOutcome.UPDATED
            except RecordNotFoundError:
                logger.info(f"{collection} {mapped_id} for {record.source_key} is gone, looking it up again")
                id_map.delete(record.source_key)

        existing = None
        if record.natural_key:
            existing = self.store.find_one(collection, record.natural_key, locale=record.locale)
        if existing is not None:
            existing_id = str(existing["id"])
            if id_map is not None:
                id_map.set(record.source_key, existing_id)
            if not update_mode:
                logger.debug(f"{collection} {record.natural_key} already exists as {existing_id}")
                return WriteOutcome.EXISTING
            self.store.update(collection, existing_id, record.data, locale=record.locale)
            return WriteOutcome.UPDATED

        file = self.prepare_file(record, result)
        if file is None and self.attachment_required:
            raise SkipRecord(f"no usable attachment for {collection} {record.source_key}")

        data = {**record.create_defaults, **record.data}
        doc = self.store.create(collection, data, file=file, locale=record.locale)
        if file is not None:
            result.add_media(doc.get("filesize") or file.size)
        if id_map is not None:
            id_map.set(record.source_key, str(doc["id"]))
        return WriteOutcome.CREATED

    def _warn(self, result: MigrationResult, row_number: int, message: str) -> None:
        logger.warning(f"{self.get_label()} row {row_number}: {message}")
        result.warnings.append(f"Row {row_number}: {message}")
