"""Migration orchestrator - coordinates the complete migration run."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .errors import TargetStoreError
from .extractors.api_source import APISource
from .extractors.base import BaseSource
from .extractors.postgres_source import PostgresSource
from .extractors.storyblok_source import StoryblokSource
from .loaders.base import TargetStore
from .loaders.dry_run_store import DryRunStore
from .loaders.payload_store import PayloadRESTStore
from .migrators.base import BaseMigrator
from .migrators.frames import FramesMigrator
from .migrators.lessons import (
    EXTERNAL_VIDEOS_COLLECTION,
    FILE_ATTACHMENTS_COLLECTION,
    LESSONS_COLLECTION,
    LessonsMigrator,
)
from .migrators.meditations import MeditationsMigrator
from .migrators.music import MusicMigrator
from .migrators.narrators import NarratorsMigrator
from .migrators.tags import MEDITATION_TAGS_COLLECTION, MUSIC_TAGS_COLLECTION, TagsMigrator
from .models.migration import MigrationConfig, MigrationSummary
from .models.schema import CollectionMappings, TableSchema
from .services.field_mapper import FieldMapper
from .services.id_map import IdMapCache, JsonFileStateStore, StateStore
from .services.legacy_index import LegacyIndex
from .services.media_processing import MediaProcessor
from .services.media_transfer import MediaTransfer
from .services.reporter import MigrationReporter
from .services.schema_analyzer import SchemaAnalyzer
from .services.transformer import TransformEngine

logger = logging.getLogger(__name__)

# Tables read from a REST source, endpoint = /<table>
LEGACY_TABLES = [
    "tags",
    "taggings",
    "musics",
    "frames",
    "meditations",
    "keyframes",
    "active_storage_attachments",
    "active_storage_blobs",
]


@dataclass(frozen=True)
class Phase:
    """One migrator in the run, with what it owns."""
    name: str
    source_table: str
    collections: List[str]  # Target collections, cleared by --reset
    id_map_kinds: List[str]


# Dependency order: tags first, composite meditations last
PHASES = [
    Phase("tags", "tags", [MEDITATION_TAGS_COLLECTION, MUSIC_TAGS_COLLECTION], ["meditation_tags", "music_tags"]),
    Phase("narrators", "", ["narrators"], ["narrators"]),
    Phase("music", "musics", ["music"], ["musics"]),
    Phase("frames", "frames", ["frames"], ["frames"]),
    Phase("meditations", "meditations", ["meditations"], ["meditations"]),
]

# Storyblok path steps, run after meditations when a Storyblok token is configured
LESSONS_PHASE = Phase(
    "lessons",
    "path-steps",
    [LESSONS_COLLECTION, EXTERNAL_VIDEOS_COLLECTION, FILE_ATTACHMENTS_COLLECTION],
    ["lessons", "external_videos"],
)


class MigrationOrchestrator:
    """
    Orchestrates the complete migration.

    Handles:
    - Source and target store setup (a no-op store for dry runs)
    - Loading and saving the ID maps for resumable runs
    - Schema analysis and field mapping
    - Optional reset of the target collections
    - Running the migrators in dependency order
    - Importing the Storyblok lessons when a token is configured
    - Reporting
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: Optional[BaseSource] = None,
        store: Optional[TargetStore] = None,
        state_store: Optional[StateStore] = None,
        media: Optional[MediaTransfer] = None,
        storyblok: Optional[StoryblokSource] = None,
        input_func: Callable[[str], str] = input
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            source: Legacy source (built from the config if omitted)
            store: Target store (built from the config if omitted)
            state_store: ID map persistence (id-mappings.json in the cache dir if omitted)
            media: Media transfer unit (built from the config if omitted)
            storyblok: Storyblok source for lessons (built from the config if omitted)
            input_func: Prompt function for interactive mapping
        """
        self.config = config
        self.source = source or self._create_source()
        self.store = store or self._create_store()
        self.state_store = state_store or JsonFileStateStore.in_cache_dir(config.cache_dir)
        self.id_maps = IdMapCache()
        self.transformer = TransformEngine()
        self.index = LegacyIndex(self.source)
        self.mapper = FieldMapper(interactive=config.interactive, input_func=input_func)
        self._media = media
        self._storyblok = storyblok

        self.schemas: List[TableSchema] = []
        self.mappings = CollectionMappings()
        self.reporter = MigrationReporter(
            MigrationSummary(dry_run=config.dry_run, run_mode=config.run_mode)
        )

    def _create_source(self) -> BaseSource:
        if self.config.source_api_url:
            return APISource(
                base_url=self.config.source_api_url,
                endpoints={table: f"/{table}" for table in LEGACY_TABLES},
                api_key=self.config.source_api_key,
                max_retries=self.config.download_retries,
                backoff_factor=self.config.retry_backoff,
            )
        return PostgresSource.from_config(self.config)

    def _create_store(self) -> TargetStore:
        if self.config.dry_run:
            logger.info("Dry run: no changes will be written to the target")
            return DryRunStore()
        return PayloadRESTStore(
            base_url=self.config.target_url,
            api_key=self.config.target_api_key,
            max_retries=self.config.download_retries,
            backoff_factor=self.config.retry_backoff,
        )

    @property
    def media(self) -> MediaTransfer:
        # Built lazily so the media map is the one loaded from the cache
        if self._media is None:
            self._media = MediaTransfer(
                store=self.store,
                media_map=self.id_maps["media"],
                cache_dir=self.config.cache_dir,
                base_url=self.config.storage_base_url,
                processor=MediaProcessor(
                    webp_quality=self.config.webp_quality,
                    thumbnail_size=self.config.thumbnail_size,
                    max_image_bytes=self.config.max_image_bytes,
                    max_video_bytes=self.config.max_video_bytes,
                    max_video_seconds=self.config.max_video_seconds,
                ),
                timeout=self.config.download_timeout,
                max_retries=self.config.download_retries,
                backoff_factor=self.config.retry_backoff,
                concurrency=self.config.media_concurrency,
            )
        return self._media

    @property
    def storyblok(self) -> StoryblokSource:
        if self._storyblok is None:
            self._storyblok = StoryblokSource(
                token=self.config.storyblok_token or "",
                base_url=self.config.storyblok_url,
                cache_dir=self.config.cache_dir,
                max_retries=self.config.download_retries,
                backoff_factor=self.config.retry_backoff,
            )
        return self._storyblok

    @property
    def summary(self) -> MigrationSummary:
        return self.reporter.summary

    def run(self) -> MigrationSummary:
        """
        Run the complete migration.

        Returns:
            MigrationSummary with per-collection results
        """
        summary = self.summary
        summary.started_at = datetime.utcnow()
        connected = False

        try:
            logger.info("=== PHASE 1: CONNECT ===")
            self.source.connect()
            connected = True
            if not self.store.validate_connection():
                raise TargetStoreError(f"Could not connect to target store {self.store.name}")
            self.id_maps.load(self.state_store)
            if self._media is not None:
                self._media.media_map = self.id_maps["media"]

            logger.info("=== PHASE 2: SCHEMA ANALYSIS ===")
            self._run_analysis()

            if self.config.analyze_only:
                logger.info("Analyze-only mode, stopping after schema analysis")
                return summary

            if self.config.reset:
                logger.info("=== PHASE 3: RESET ===")
                self._run_reset()

            logger.info("=== PHASE 4: MIGRATION ===")
            self._run_migrators()

            logger.info("=== MIGRATION COMPLETED ===")

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            summary.fatal_error = str(e)

        finally:
            summary.completed_at = datetime.utcnow()
            if self._media is not None:
                summary.media_stats = self._media.stats.to_dict()
            if connected:
                self.source.disconnect()
            if self._storyblok is not None:
                self._storyblok.disconnect()
            if self.config.report_path:
                self.reporter.save_json(self.config.report_path)

        return summary

    def available_phases(self) -> List[Phase]:
        if self.config.storyblok_token:
            return PHASES + [LESSONS_PHASE]
        return list(PHASES)

    def selected_phases(self) -> List[Phase]:
        """Phases matching the tables filter (by phase name or source table)."""
        phases = self.available_phases()
        if not self.config.tables:
            return phases
        wanted = set(self.config.tables)
        if LESSONS_PHASE.name in wanted and not self.config.storyblok_token:
            logger.warning("Skipping lessons: STORYBLOK_ACCESS_TOKEN is not set")
        return [p for p in phases if p.name in wanted or (p.source_table and p.source_table in wanted)]

    def _run_analysis(self):
        """Introspect the source and build the field mappings."""
        if self.source.supports_queries:
            analyzer = SchemaAnalyzer(self.source)
            tables = analyzer.get_tables()
            if self.config.tables:
                tables = [t for t in tables if t in self.config.tables] or tables
            self.schemas = analyzer.analyze_tables(tables)
        else:
            logger.info(f"Source {self.source.name} does not support schema introspection")

        if self.config.mapping_file:
            self.mappings = self.mapper.load_from_file(self.config.mapping_file)
        else:
            self.mappings = self.mapper.generate_mappings(self.schemas)

        if self.config.save_mappings:
            self.mapper.save_to_file(self.mappings, self.config.save_mappings)

    def _run_reset(self):
        """Delete the selected collections, dependents first."""
        for phase in reversed(self.selected_phases()):
            for collection in phase.collections:
                deleted = self.store.delete(collection)
                logger.info(f"Deleted {deleted} documents from {collection}")
            for kind in phase.id_map_kinds:
                self.id_maps.clear(kind)
        self._save_id_maps()

    def _run_migrators(self):
        for phase in self.selected_phases():
            if phase is LESSONS_PHASE:
                self.storyblok.connect()
            migrator = self.create_migrator(phase.name)
            result = migrator.migrate()
            self.reporter.add_result(result)
            self._save_id_maps()

    def _save_id_maps(self):
        if self.config.dry_run:
            return
        self.id_maps.save(self.state_store)

    def create_migrator(self, name: str) -> BaseMigrator:
        """Build a migrator wired to the shared ID maps it reads and writes."""
        maps = self.id_maps
        common = dict(
            source=self.source,
            store=self.store,
            config=self.config,
            mappings=self.mappings,
            transformer=self.transformer,
            index=self.index,
            relation_maps={
                "narrators": maps["narrators"],
                "music": maps["musics"],
                "frames": maps["frames"],
                "meditations": maps["meditations"],
                "tags": maps["meditation_tags"],
            },
        )

        if name == "tags":
            return TagsMigrator(
                meditation_tag_map=maps["meditation_tags"],
                music_tag_map=maps["music_tags"],
                **common,
            )
        if name == "narrators":
            return NarratorsMigrator(id_map=maps["narrators"], **common)
        if name == "music":
            return MusicMigrator(
                id_map=maps["musics"],
                media=self.media,
                music_tag_map=maps["music_tags"],
                **common,
            )
        if name == "frames":
            return FramesMigrator(id_map=maps["frames"], media=self.media, **common)
        if name == "meditations":
            return MeditationsMigrator(
                id_map=maps["meditations"],
                media=self.media,
                narrator_map=maps["narrators"],
                frame_map=maps["frames"],
                meditation_tag_map=maps["meditation_tags"],
                music_tag_map=maps["music_tags"],
                **common,
            )
        if name == "lessons":
            common["source"] = self.storyblok
            return LessonsMigrator(
                id_map=maps["lessons"],
                media=self.media,
                external_video_map=maps["external_videos"],
                **common,
            )
        raise ValueError(f"Unknown migrator: {name}")
