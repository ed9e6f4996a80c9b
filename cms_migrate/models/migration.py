"""Migration configuration and result models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import os

from dotenv import load_dotenv

DEFAULT_STORAGE_BASE_URL = "https://storage.googleapis.com/media.sydevelopers.com"
DEFAULT_CACHE_DIR = "migration-cache"
DEFAULT_STORYBLOK_URL = "https://api.storyblok.com/v2/cdn"


class RunMode(str, Enum):
    """What to do with a record that already exists in the target."""
    SKIP = "skip"  # Reuse the existing id, write nothing
    UPDATE = "update"  # Patch the existing record's metadata


class RunStatus(str, Enum):
    """Final classification of a migration run."""
    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def exit_code(self) -> int:
        return {"success": 0, "degraded": 1, "failed": 2}[self.value]


class WriteOutcome(str, Enum):
    """What happened to a single target record."""
    CREATED = "created"
    UPDATED = "updated"
    EXISTING = "existing"
    SKIPPED = "skipped"


@dataclass
class MigrationConfig:
    """Configuration for a migration run."""
    # Source
    source_dsn: Optional[str] = None
    source_host: str = "localhost"
    source_port: int = 5432
    source_database: str = ""
    source_user: str = ""
    source_password: Optional[str] = None
    source_api_url: Optional[str] = None  # Use a REST API source instead of Postgres
    source_api_key: Optional[str] = None

    # Storyblok path steps, imported as lessons when a token is set
    storyblok_token: Optional[str] = None
    storyblok_url: str = DEFAULT_STORYBLOK_URL
    storyblok_unit: Optional[int] = None  # Only import this unit

    # Target
    target_url: str = "http://localhost:3000"
    target_api_key: Optional[str] = None

    # Media origin and local state
    storage_base_url: str = DEFAULT_STORAGE_BASE_URL
    cache_dir: str = DEFAULT_CACHE_DIR

    # Execution options
    dry_run: bool = False
    run_mode: RunMode = RunMode.SKIP
    batch_size: int = 100
    max_errors: int = 100  # Halt a migrator once its error count exceeds this
    tables: List[str] = field(default_factory=list)  # Empty means all
    reset: bool = False
    analyze_only: bool = False

    # Mapping files
    mapping_file: Optional[str] = None
    save_mappings: Optional[str] = None
    interactive: bool = False

    # Media options
    media_concurrency: int = 3
    download_timeout: float = 30.0
    download_retries: int = 3
    retry_backoff: float = 1.0
    max_image_bytes: int = 10 * 1024 * 1024
    max_video_bytes: int = 100 * 1024 * 1024
    max_video_seconds: float = 30.0
    webp_quality: int = 90
    thumbnail_size: int = 160

    # Narrator index -> frame variant
    narrator_variants: Dict[int, str] = field(default_factory=lambda: {0: "male", 1: "female"})

    # Output
    report_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (secrets omitted)."""
        return {
            "source_host": self.source_host,
            "source_port": self.source_port,
            "source_database": self.source_database,
            "source_user": self.source_user,
            "source_api_url": self.source_api_url,
            "storyblok_url": self.storyblok_url,
            "storyblok_unit": self.storyblok_unit,
            "target_url": self.target_url,
            "storage_base_url": self.storage_base_url,
            "cache_dir": self.cache_dir,
            "dry_run": self.dry_run,
            "run_mode": self.run_mode.value,
            "batch_size": self.batch_size,
            "max_errors": self.max_errors,
            "tables": self.tables,
            "reset": self.reset,
            "analyze_only": self.analyze_only,
            "mapping_file": self.mapping_file,
            "save_mappings": self.save_mappings,
            "interactive": self.interactive,
            "media_concurrency": self.media_concurrency,
            "download_timeout": self.download_timeout,
            "download_retries": self.download_retries,
            "retry_backoff": self.retry_backoff,
            "max_image_bytes": self.max_image_bytes,
            "max_video_bytes": self.max_video_bytes,
            "max_video_seconds": self.max_video_seconds,
            "webp_quality": self.webp_quality,
            "thumbnail_size": self.thumbnail_size,
            "narrator_variants": {str(k): v for k, v in self.narrator_variants.items()},
            "report_path": self.report_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation. Unknown keys are ignored."""
        config = cls()
        for key, value in data.items():
            if key == "run_mode":
                value = RunMode(value)
            elif key == "narrator_variants":
                value = {int(k): v for k, v in value.items()}
            elif key == "tables" and isinstance(value, str):
                value = [t.strip() for t in value.split(",") if t.strip()]
            if hasattr(config, key):
                setattr(config, key, value)
        return config

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "MigrationConfig":
        """Create from environment variables (and a .env file if present)."""
        load_dotenv(dotenv_path)

        config = cls(
            source_dsn=os.getenv("SOURCE_DATABASE_URL"),
            source_host=os.getenv("SOURCE_DB_HOST", "localhost"),
            source_port=int(os.getenv("SOURCE_DB_PORT", "5432")),
            source_database=os.getenv("SOURCE_DB_NAME", ""),
            source_user=os.getenv("SOURCE_DB_USER", ""),
            source_password=os.getenv("SOURCE_DB_PASSWORD"),
            source_api_url=os.getenv("SOURCE_API_URL"),
            source_api_key=os.getenv("SOURCE_API_KEY"),
            storyblok_token=os.getenv("STORYBLOK_ACCESS_TOKEN"),
            storyblok_url=os.getenv("STORYBLOK_API_URL", DEFAULT_STORYBLOK_URL),
            target_url=os.getenv("PAYLOAD_URL", "http://localhost:3000"),
            target_api_key=os.getenv("PAYLOAD_API_KEY"),
            storage_base_url=os.getenv("STORAGE_BASE_URL", DEFAULT_STORAGE_BASE_URL),
            cache_dir=os.getenv("MIGRATION_CACHE_DIR", DEFAULT_CACHE_DIR),
        )
        return config


@dataclass
class RowError:
    """A failure attributed to a single source row."""
    row: int
    message: str
    field: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "row": self.row,
            "field": self.field,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class MigrationResult:
    """Outcome of one collection migrator."""
    collection: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    existing: int = 0
    skipped: int = 0
    errors: List[RowError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    media_transferred: int = 0
    media_reused: int = 0
    media_size_bytes: int = 0
    success: bool = True
    halted: bool = False  # Stopped early by the error ceiling
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        processed = self.succeeded + self.failed
        if processed == 0:
            return 1.0
        return self.succeeded / processed

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def record(self, outcome: WriteOutcome) -> None:
        """Count a successfully handled record."""
        if outcome == WriteOutcome.SKIPPED:
            self.skipped += 1
            return
        self.succeeded += 1
        if outcome == WriteOutcome.CREATED:
            self.created += 1
        elif outcome == WriteOutcome.UPDATED:
            self.updated += 1
        elif outcome == WriteOutcome.EXISTING:
            self.existing += 1

    def add_error(
        self,
        row: int,
        message: str,
        field: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record an error without counting a failure (see ``fail``)."""
        self.errors.append(RowError(row=row, message=message, field=field, data=data))

    def fail(
        self,
        row: int,
        message: str,
        field: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record a failed row and its error."""
        self.failed += 1
        self.add_error(row, message, field, data)

    def add_media(self, size_bytes: int, reused: bool = False) -> None:
        """Account for a transferred (or reused) media object."""
        if reused:
            self.media_reused += 1
            return
        self.media_transferred += 1
        self.media_size_bytes += size_bytes or 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "collection": self.collection,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "created": self.created,
            "updated": self.updated,
            "existing": self.existing,
            "skipped": self.skipped,
            "success": self.success,
            "halted": self.halted,
            "success_rate": self.success_rate,
            "media_transferred": self.media_transferred,
            "media_reused": self.media_reused,
            "media_size_bytes": self.media_size_bytes,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": self.warnings,
        }


@dataclass
class MigrationSummary:
    """Aggregate of all migrator results for a run."""
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    results: List[MigrationResult] = field(default_factory=list)
    dry_run: bool = False
    run_mode: RunMode = RunMode.SKIP
    fatal_error: Optional[str] = None
    media_stats: Dict[str, int] = field(default_factory=dict)  # Transfer counters for the whole run

    def add_result(self, result: MigrationResult) -> None:
        self.results.append(result)

    def get_result(self, collection: str) -> Optional[MigrationResult]:
        """Get the result for a collection."""
        for result in self.results:
            if result.collection == collection:
                return result
        return None

    @property
    def total_records(self) -> int:
        return sum(r.total for r in self.results)

    @property
    def total_succeeded(self) -> int:
        return sum(r.succeeded for r in self.results)

    @property
    def total_failed(self) -> int:
        return sum(r.failed for r in self.results)

    @property
    def total_media_transferred(self) -> int:
        return sum(r.media_transferred for r in self.results)

    @property
    def total_media_reused(self) -> int:
        return sum(r.media_reused for r in self.results)

    @property
    def total_media_size_bytes(self) -> int:
        return sum(r.media_size_bytes for r in self.results)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def status(self) -> RunStatus:
        """
        Classify the run.

        A fatal error or a migrator halted by the error ceiling fails the run.
        Otherwise the run is successful when nothing failed, degraded when
        successes outnumber failures, and failed when they don't.
        """
        if self.fatal_error or any(not r.success for r in self.results):
            return RunStatus.FAILED
        if self.total_failed == 0:
            return RunStatus.SUCCESS
        if self.total_succeeded > self.total_failed:
            return RunStatus.DEGRADED
        return RunStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "dry_run": self.dry_run,
            "run_mode": self.run_mode.value,
            "status": self.status.value,
            "fatal_error": self.fatal_error,
            "total_records": self.total_records,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "total_media_transferred": self.total_media_transferred,
            "total_media_reused": self.total_media_reused,
            "total_media_size_bytes": self.total_media_size_bytes,
            "media_stats": dict(self.media_stats),
            "results": [r.to_dict() for r in self.results],
        }
