"""
Unit tests for the base migrator

Tests the shared row pipeline including:
- Batching and the error ceiling
- Validation failures and error accounting
- Skip and update modes against the ID map and the natural key
- Stale ID map entries
- Silent and warned skips
- Field mappings merged under the migrator's own data
"""

import unittest
from unittest.mock import MagicMock

from cms_migrate.errors import SourceConnectionError
from cms_migrate.migrators.base import BaseMigrator, SkipRecord
from cms_migrate.models.migration import MigrationConfig, RunMode
from cms_migrate.models.record import TargetRecord, ValidationRule
from cms_migrate.models.schema import CollectionMappings, FieldMapping
from cms_migrate.services.id_map import IdMap

from fakes import EMPTY_LEGACY_TABLES, FakeStore, MemorySource


class ItemsMigrator(BaseMigrator):
    """Minimal migrator: one item per row, keyed by title."""

    source_table = "items"
    target_collection = "items"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.transformed = 0

    def get_validation_rules(self):
        return [
            ValidationRule(field="title", required=True, type="string"),
            ValidationRule(field="count", type="number", min=0),
        ]

    def transform_row(self, row):
        self.transformed += 1
        if row.get("explode"):
            raise ValueError("boom")
        if row.get("hidden"):
            return None
        if row.get("skip"):
            raise SkipRecord("not wanted")
        data = {"title": row.get("title")}
        if "count" in row:
            data["count"] = row["count"]
        return TargetRecord(
            collection="items",
            source_key=row["id"],
            data=data,
            natural_key={"title": row["title"]} if row.get("title") else {},
        )


class BaseMigratorTestCase(unittest.TestCase):

    def setUp(self):
        self.store = FakeStore()
        self.config = MigrationConfig()
        self.id_map = IdMap("items")

    def make_migrator(self, rows, **kwargs) -> ItemsMigrator:
        source = MemorySource({**EMPTY_LEGACY_TABLES, "items": rows})
        return ItemsMigrator(source=source, store=self.store, config=self.config, id_map=self.id_map, **kwargs)


class TestErrorAccounting(BaseMigratorTestCase):
    """Test failures, the error ceiling and skips"""

    def test_error_ceiling_halts_migrator(self):
        """105 invalid rows out of 150 stop processing after the 101st error"""
        rows = [{"id": i, "title": None if i <= 105 else f"Item {i}"} for i in range(1, 151)]
        migrator = self.make_migrator(rows)

        result = migrator.migrate()

        self.assertTrue(result.halted)
        self.assertFalse(result.success)
        self.assertEqual(result.failed, 101)
        self.assertEqual(result.created, 0)
        self.assertEqual(migrator.transformed, 101)

    def test_failures_do_not_stop_the_batch(self):
        rows = [{"id": 1, "title": "A"}, {"id": 2, "title": None}, {"id": 3, "title": "C"}]

        result = self.make_migrator(rows).migrate()

        self.assertTrue(result.success)
        self.assertEqual(result.created, 2)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.errors[0].row, 2)
        self.assertEqual(result.errors[0].field, "title")
        self.assertEqual(result.errors[0].data, {"id": 2, "title": None})

    def test_every_invalid_field_is_reported_once_per_row(self):
        rows = [{"id": 1, "title": 5, "count": -1}]

        result = self.make_migrator(rows).migrate()

        self.assertEqual(result.failed, 1)
        self.assertEqual(sorted(e.field for e in result.errors), ["count", "title"])
        self.assertEqual(self.store.created("items"), 0)

    def test_transform_exception_is_recorded(self):
        rows = [{"id": 1, "title": "A", "explode": True}, {"id": 2, "title": "B"}]

        result = self.make_migrator(rows).migrate()

        self.assertEqual(result.failed, 1)
        self.assertEqual(result.created, 1)
        self.assertEqual(result.errors[0].message, "boom")
        self.assertEqual(result.errors[0].data["id"], 1)

    def test_none_is_a_silent_skip(self):
        result = self.make_migrator([{"id": 1, "title": "A", "hidden": True}]).migrate()

        self.assertEqual(result.skipped, 1)
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.failed, 0)

    def test_skip_record_is_a_warning(self):
        result = self.make_migrator([{"id": 1, "title": "A", "skip": True}]).migrate()

        self.assertEqual(result.skipped, 1)
        self.assertEqual(result.warnings, ["Row 1: not wanted"])

    def test_source_connection_errors_propagate(self):
        migrator = self.make_migrator([{"id": 1, "title": "A"}])
        migrator.transform_row = MagicMock(side_effect=SourceConnectionError("lost"))

        with self.assertRaises(SourceConnectionError):
            migrator.migrate()

    def test_missing_table_migrates_nothing(self):
        migrator = ItemsMigrator(
            source=MemorySource(EMPTY_LEGACY_TABLES), store=self.store, config=self.config
        )

        with self.assertLogs("cms_migrate", level="WARNING"):
            result = migrator.migrate()

        self.assertEqual(result.total, 0)
        self.assertTrue(result.success)

    def test_batches_cover_every_row(self):
        self.config.batch_size = 2
        rows = [{"id": i, "title": f"Item {i}"} for i in range(1, 6)]

        result = self.make_migrator(rows).migrate()

        self.assertEqual(result.total, 5)
        self.assertEqual(result.created, 5)
        self.assertIsNotNone(result.duration_seconds)


class TestIdempotentWrites(BaseMigratorTestCase):
    """Test skip and update modes"""

    def test_skip_mode_trusts_the_id_map(self):
        self.id_map.set(1, "42")
        migrator = self.make_migrator([{"id": 1, "title": "A"}])

        result = migrator.migrate()

        self.assertEqual(result.existing, 1)
        self.assertEqual(migrator.transformed, 0)
        self.assertEqual(self.store.calls, [])

    def test_natural_key_match_is_existing(self):
        doc = self.store.add("items", title="A")
        migrator = self.make_migrator([{"id": 1, "title": "A"}])

        result = migrator.migrate()

        self.assertEqual(result.existing, 1)
        self.assertEqual(self.store.created("items"), 0)
        self.assertEqual(self.id_map.get(1), doc["id"])

    def test_created_records_are_mapped(self):
        self.make_migrator([{"id": 7, "title": "A"}]).migrate()

        target_id = self.id_map.get(7)
        self.assertEqual(self.store.docs["items"][target_id]["title"], "A")

    def test_update_mode_patches_mapped_record(self):
        self.config.run_mode = RunMode.UPDATE
        doc = self.store.add("items", title="Old")
        self.id_map.set(1, doc["id"])

        result = self.make_migrator([{"id": 1, "title": "New"}]).migrate()

        self.assertEqual(result.updated, 1)
        self.assertEqual(self.store.docs["items"][doc["id"]]["title"], "New")
        self.assertEqual(self.store.created("items"), 0)

    def test_update_mode_patches_natural_key_match(self):
        self.config.run_mode = RunMode.UPDATE
        doc = self.store.add("items", title="A", count=1)

        result = self.make_migrator([{"id": 1, "title": "A", "count": 2}]).migrate()

        self.assertEqual(result.updated, 1)
        self.assertEqual(self.store.docs["items"][doc["id"]]["count"], 2)
        self.assertEqual(self.id_map.get(1), doc["id"])

    def test_stale_mapping_is_evicted(self):
        """A mapped id the store no longer has falls through to create"""
        self.config.run_mode = RunMode.UPDATE
        self.id_map.set(1, "999")

        result = self.make_migrator([{"id": 1, "title": "A"}]).migrate()

        self.assertEqual(result.created, 1)
        self.assertNotEqual(self.id_map.get(1), "999")
        self.assertIn(self.id_map.get(1), self.store.docs["items"])


class TestFieldMappings(BaseMigratorTestCase):

    def test_mapped_fields_are_merged_under_record_data(self):
        mappings = CollectionMappings()
        mappings.add("items", FieldMapping(source_column="title", target_field="title", transform="lowercase"))
        mappings.add("items", FieldMapping(source_column="notes", target_field="notes", transform="trim"))
        mappings.add("items", FieldMapping(
            source_column="music_id", target_field="music", is_relationship=True, relation_to="music"
        ))
        music_map = IdMap("musics", {3: "m-3"})

        migrator = self.make_migrator(
            [{"id": 1, "title": "Keep me", "notes": "  hello ", "music_id": 3}],
            mappings=mappings,
            relation_maps={"music": music_map},
        )
        migrator.migrate()

        doc = self.store.docs["items"][self.id_map.get(1)]
        self.assertEqual(doc["title"], "Keep me")  # Own data wins over mapped fields
        self.assertEqual(doc["notes"], "hello")
        self.assertEqual(doc["music"], "m-3")
