"""
Unit tests for the migration orchestrator

Tests complete runs against an in-memory source and store:
- Phase order and per-collection results
- Idempotent re-runs from the persisted ID maps
- Re-runs without ID maps, deduplicated by natural keys
- Resuming after a partial run
- Dry runs, resets and analyze-only runs
- Fatal errors
- The Storyblok lessons phase
"""

import json
import os
import tempfile
import unittest

from cms_migrate.loaders.dry_run_store import DryRunStore
from cms_migrate.models.migration import MigrationConfig, RunStatus
from cms_migrate.orchestrator import PHASES, MigrationOrchestrator
from cms_migrate.services.id_map import IdMap, MemoryStateStore
from cms_migrate.services.media_transfer import MediaTransfer

from fakes import FakeStore, MemorySource, MemoryStoryblok, mock_response, mock_session

ATTACHMENTS = [
    ("Frame", 3, "male", "pose-m.jpg"),
    ("Frame", 3, "female", "pose-f.jpg"),
    ("Music", 1, "audio", "rain.mp3"),
    ("Meditation", 1, "art", "calm-art.jpg"),
    ("Meditation", 1, "audio", "calm.mp3"),
]


def legacy_tables():
    """A small but complete legacy dataset."""
    return {
        "tags": [{"id": 1, "name": "calm"}, {"id": 2, "name": "sleep"}],
        "taggings": [
            {"tag_id": 1, "taggable_type": "Meditation", "taggable_id": 1, "context": "tags"},
            {"tag_id": 2, "taggable_type": "Music", "taggable_id": 1, "context": "tags"},
        ],
        "musics": [{"id": 1, "title": "Rain", "duration": 60}],
        "frames": [{"id": 3, "category": "void"}],
        "meditations": [{
            "id": 1,
            "title": "Calm Morning",
            "duration": 600,
            "published": True,
            "narrator": 0,
        }],
        "keyframes": [{"media_type": "Meditation", "media_id": 1, "frame_id": 3, "seconds": 0}],
        "active_storage_attachments": [
            {"id": i, "name": name, "record_type": record_type, "record_id": record_id, "blob_id": i}
            for i, (record_type, record_id, name, _) in enumerate(ATTACHMENTS, start=1)
        ],
        "active_storage_blobs": [
            {"id": i, "key": f"blob-{i}", "filename": filename, "content_type": None, "byte_size": 5}
            for i, (_, _, _, filename) in enumerate(ATTACHMENTS, start=1)
        ],
    }


def created(summary) -> int:
    return sum(r.created for r in summary.results)


def existing(summary) -> int:
    return sum(r.existing for r in summary.results)


class OrchestratorTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = FakeStore()
        self.state = MemoryStateStore()

    def tearDown(self):
        self._tmp.cleanup()

    def make_config(self, **kwargs) -> MigrationConfig:
        return MigrationConfig(cache_dir=self._tmp.name, **kwargs)

    def make_orchestrator(self, config=None, source=None, store=None, state=None, storyblok=None) -> MigrationOrchestrator:
        store = store or self.store
        media = MediaTransfer(
            store=store,
            media_map=IdMap("media"),
            cache_dir=self._tmp.name,
            base_url="https://storage.example.com",
            session=mock_session(mock_response(200, b"bytes")),
        )
        return MigrationOrchestrator(
            config or self.make_config(),
            source=source or MemorySource(legacy_tables()),
            store=store,
            state_store=state or self.state,
            media=media,
            storyblok=storyblok,
        )


class TestFullRun(OrchestratorTestCase):
    """Test complete and repeated runs"""

    def test_first_run_creates_everything(self):
        summary = self.make_orchestrator().run()

        self.assertEqual(summary.status, RunStatus.SUCCESS)
        self.assertIsNone(summary.fatal_error)
        self.assertEqual([r.collection for r in summary.results], [p.name for p in PHASES])
        self.assertEqual(summary.get_result("tags").created, 2)
        self.assertEqual(summary.get_result("narrators").created, 2)
        self.assertEqual(summary.get_result("music").created, 1)
        self.assertEqual(summary.get_result("frames").created, 2)
        self.assertEqual(summary.get_result("meditations").created, 1)

        meditation = next(iter(self.store.docs["meditations"].values()))
        male_frame = self.state.state["frames"]["3_male"]
        self.assertEqual(meditation["frames"], [{"frame": male_frame, "timestamp": 0}])
        self.assertEqual(meditation["narrator"], self.state.state["narrators"]["0"])
        self.assertEqual(meditation["tags"], [self.state.state["meditation_tags"]["calm"]])
        self.assertIn("calm-art.jpg", self.state.state["media"])

    def test_second_run_is_idempotent(self):
        first = self.make_orchestrator().run()
        creates = len([c for c in self.store.calls if c[0] == "create"])

        second = self.make_orchestrator().run()

        self.assertEqual(created(second), 0)
        self.assertEqual(existing(second), created(first))
        self.assertEqual(len([c for c in self.store.calls if c[0] == "create"]), creates)
        self.assertEqual(second.status, RunStatus.SUCCESS)

    def test_lost_id_maps_fall_back_to_natural_keys(self):
        """A fresh state store against a populated target creates nothing"""
        first = self.make_orchestrator().run()
        creates = len([c for c in self.store.calls if c[0] == "create"])

        fresh_state = MemoryStateStore()
        second = self.make_orchestrator(state=fresh_state).run()

        self.assertEqual(created(second), 0)
        self.assertEqual(existing(second), created(first))
        self.assertEqual(len([c for c in self.store.calls if c[0] == "create"]), creates)
        self.assertEqual(fresh_state.state["frames"], self.state.state["frames"])

    def test_resume_after_partial_run(self):
        partial = self.make_orchestrator(self.make_config(tables=["tags"])).run()

        self.assertEqual([r.collection for r in partial.results], ["tags"])

        resumed = self.make_orchestrator().run()

        self.assertEqual(resumed.get_result("tags").existing, 2)
        self.assertEqual(resumed.get_result("tags").created, 0)
        self.assertEqual(resumed.get_result("meditations").created, 1)

    def test_resumed_run_resolves_numeric_tag_names(self):
        tables = legacy_tables()
        tables["tags"].append({"id": 3, "name": "2024"})
        tables["taggings"].append({"tag_id": 3, "taggable_type": "Meditation", "taggable_id": 1, "context": "tags"})

        self.make_orchestrator(self.make_config(tables=["tags", "narrators"]), source=MemorySource(tables)).run()
        summary = self.make_orchestrator(self.make_config(tables=["meditations"]), source=MemorySource(tables)).run()

        tag_map = self.state.state["meditation_tags"]
        meditation = next(iter(self.store.docs["meditations"].values()))
        self.assertEqual(summary.get_result("meditations").created, 1)
        self.assertEqual(sorted(meditation["tags"]), sorted([tag_map["calm"], tag_map["2024"]]))
        self.assertFalse(any("2024" in w for w in summary.get_result("meditations").warnings))

    def test_tables_filter_accepts_source_table_names(self):
        summary = self.make_orchestrator(self.make_config(tables=["musics"])).run()

        self.assertEqual([r.collection for r in summary.results], ["music"])

    def test_reset_recreates_collections(self):
        self.make_orchestrator().run()
        old_ids = set(self.store.docs["meditations"])

        summary = self.make_orchestrator(self.make_config(reset=True)).run()

        self.assertEqual(created(summary), 8)
        self.assertEqual(len(self.store.docs["meditations"]), 1)
        self.assertNotEqual(set(self.store.docs["meditations"]), old_ids)

    def test_report_is_saved(self):
        path = os.path.join(self._tmp.name, "reports", "run.json")

        self.make_orchestrator(self.make_config(report_path=path)).run()

        with open(path) as f:
            report = json.load(f)
        self.assertEqual(report["status"], "success")
        self.assertEqual(len(report["results"]), len(PHASES))
        self.assertGreater(report["media_stats"]["downloaded"], 0)
        self.assertEqual(report["media_stats"]["failed"], 0)


class TestSpecialRuns(OrchestratorTestCase):
    """Test dry runs, analyze-only runs and failures"""

    def test_dry_run_writes_nothing(self):
        store = DryRunStore()
        summary = self.make_orchestrator(self.make_config(dry_run=True), store=store).run()

        self.assertEqual(summary.status, RunStatus.SUCCESS)
        self.assertTrue(summary.dry_run)
        self.assertEqual(created(summary), 8)
        self.assertGreater(store.writes, 0)
        self.assertEqual(self.state.saves, 0)
        self.assertEqual(self.state.state, {})

    def test_analyze_only_runs_no_migrators(self):
        source = MemorySource(legacy_tables())
        summary = self.make_orchestrator(self.make_config(analyze_only=True), source=source).run()

        self.assertEqual(summary.results, [])
        self.assertEqual(self.store.calls, [])
        self.assertFalse(source.connected)

    def test_connection_failure_is_fatal(self):
        summary = self.make_orchestrator(source=MemorySource(fail_connect=True)).run()

        self.assertEqual(summary.status, RunStatus.FAILED)
        self.assertEqual(summary.status.exit_code, 2)
        self.assertIn("connection refused", summary.fatal_error)
        self.assertIsNotNone(summary.completed_at)

    def test_unreachable_target_is_fatal(self):
        self.store.validate_connection = lambda: False

        summary = self.make_orchestrator().run()

        self.assertEqual(summary.status, RunStatus.FAILED)
        self.assertEqual(summary.results, [])

    def test_row_failures_degrade_the_run(self):
        tables = legacy_tables()
        tables["musics"].append({"id": 2, "title": None})
        summary = self.make_orchestrator(source=MemorySource(tables)).run()

        self.assertEqual(summary.get_result("music").failed, 1)
        self.assertEqual(summary.status, RunStatus.DEGRADED)
        self.assertEqual(summary.status.exit_code, 1)


def path_step(slug, name):
    return {"id": int(slug.split("-")[-1]), "uuid": f"{slug}-uuid", "name": name, "slug": slug, "content": {}}


class TestLessonsPhase(OrchestratorTestCase):
    """Test the Storyblok lessons phase"""

    def test_lessons_run_last_with_a_token(self):
        storyblok = MemoryStoryblok([path_step("step-1", "Awakening"), path_step("step-2", "Balance")])
        config = self.make_config(storyblok_token="sb-token")

        summary = self.make_orchestrator(config, storyblok=storyblok).run()

        self.assertEqual(summary.status, RunStatus.SUCCESS)
        self.assertEqual([r.collection for r in summary.results], [p.name for p in PHASES] + ["lessons"])
        self.assertEqual(summary.get_result("lessons").created, 2)
        self.assertEqual(set(self.state.state["lessons"]), {"step-1", "step-2"})
        self.assertFalse(storyblok.connected)

    def test_lessons_need_a_token(self):
        storyblok = MemoryStoryblok([path_step("step-1", "Awakening")])

        summary = self.make_orchestrator(self.make_config(tables=["lessons"]), storyblok=storyblok).run()

        self.assertEqual(summary.results, [])
        self.assertEqual(self.store.docs["lessons"], {})

    def test_lessons_alone_resolve_step_meditations(self):
        self.store.add("meditations", title="Step 1: Awakening")
        story = path_step("step-1", "Awakening")
        story["content"] = {"Meditation_reference": ["m-uuid"]}
        config = self.make_config(storyblok_token="sb-token", tables=["lessons"])

        summary = self.make_orchestrator(config, storyblok=MemoryStoryblok([story])).run()

        self.assertEqual([r.collection for r in summary.results], ["lessons"])
        lesson = next(iter(self.store.docs["lessons"].values()))
        meditation = next(iter(self.store.docs["meditations"].values()))
        self.assertEqual(lesson["meditation"], meditation["id"])
        self.assertEqual(lesson["unit"], "Unit 1")

    def test_reset_clears_lessons(self):
        config = self.make_config(storyblok_token="sb-token", tables=["lessons"])
        self.make_orchestrator(config, storyblok=MemoryStoryblok([path_step("step-1", "Awakening")])).run()
        self.store.add("file-attachments", filename="icon.png")

        reset = self.make_config(storyblok_token="sb-token", tables=["lessons"], reset=True)
        summary = self.make_orchestrator(reset, storyblok=MemoryStoryblok([path_step("step-1", "Awakening")])).run()

        self.assertEqual(summary.get_result("lessons").created, 1)
        self.assertEqual(len(self.store.docs["lessons"]), 1)
        self.assertEqual(self.store.docs["file-attachments"], {})
