"""Services used by the migrators and the orchestrator."""

from .schema_analyzer import SchemaAnalyzer, format_table_schema
from .field_mapper import FieldMapper, guess_collection_name
from .transformer import TransformEngine, slugify, split_csv
from .validator import DataValidator
from .id_map import IdMap, IdMapCache, StateStore, MemoryStateStore, JsonFileStateStore
from .media_processing import MediaProcessor
from .media_transfer import MediaTransfer, TransferItem
from .legacy_index import LegacyIndex
from .reporter import MigrationReporter

__all__ = [
    "SchemaAnalyzer",
    "format_table_schema",
    "FieldMapper",
    "guess_collection_name",
    "TransformEngine",
    "slugify",
    "split_csv",
    "DataValidator",
    "IdMap",
    "IdMapCache",
    "StateStore",
    "MemoryStateStore",
    "JsonFileStateStore",
    "MediaProcessor",
    "MediaTransfer",
    "TransferItem",
    "LegacyIndex",
    "MigrationReporter",
]
