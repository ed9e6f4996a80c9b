"""Data models for the migration engine."""

from .schema import (
    ColumnInfo,
    ForeignKeyInfo,
    TableSchema,
    FieldMapping,
    CollectionMappings,
)
from .migration import (
    RunMode,
    RunStatus,
    WriteOutcome,
    MigrationConfig,
    RowError,
    MigrationResult,
    MigrationSummary,
)
from .record import (
    ValidationRule,
    ValidationError,
    FileAttachment,
    MediaSource,
    MediaTransferRecord,
    TargetRecord,
)

__all__ = [
    "ColumnInfo",
    "ForeignKeyInfo",
    "TableSchema",
    "FieldMapping",
    "CollectionMappings",
    "RunMode",
    "RunStatus",
    "WriteOutcome",
    "MigrationConfig",
    "RowError",
    "MigrationResult",
    "MigrationSummary",
    "ValidationRule",
    "ValidationError",
    "FileAttachment",
    "MediaSource",
    "MediaTransferRecord",
    "TargetRecord",
]
