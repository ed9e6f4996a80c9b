"""Schema models for source tables and field mappings."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import json

from ..errors import MappingConfigError

MAPPING_FILE_VERSION = "1.0.0"


@dataclass(frozen=True)
class ColumnInfo:
    """A single column of a source table."""
    name: str
    data_type: str
    nullable: bool = True
    max_length: Optional[int] = None
    default: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "data_type": self.data_type,
            "nullable": self.nullable,
            "max_length": self.max_length,
            "default": self.default,
        }


@dataclass(frozen=True)
class ForeignKeyInfo:
    """A foreign key constraint on a source column."""
    column_name: str
    referenced_table: str
    referenced_column: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "column_name": self.column_name,
            "referenced_table": self.referenced_table,
            "referenced_column": self.referenced_column,
        }


@dataclass(frozen=True)
class TableSchema:
    """Structural description of a source table, computed once per run."""
    table_name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    foreign_keys: List[ForeignKeyInfo] = field(default_factory=list)

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        """Get a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def get_foreign_key(self, column_name: str) -> Optional[ForeignKeyInfo]:
        """Get the foreign key declared on a column, if any."""
        for fk in self.foreign_keys:
            if fk.column_name == column_name:
                return fk
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table_name": self.table_name,
            "columns": [c.to_dict() for c in self.columns],
            "primary_key": list(self.primary_key),
            "foreign_keys": [fk.to_dict() for fk in self.foreign_keys],
        }


@dataclass
class FieldMapping:
    """Mapping of one source column onto one target field."""
    source_column: str
    target_field: str
    transform: Optional[str] = None  # Name of a registered transform
    is_relationship: bool = False
    relation_to: Optional[str] = None  # Target collection of a relationship

    @property
    def has_transform(self) -> bool:
        return self.transform is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "sourceColumn": self.source_column,
            "targetField": self.target_field,
        }
        if self.transform:
            data["transform"] = self.transform
        if self.is_relationship:
            data["isRelationship"] = True
            data["relationTo"] = self.relation_to
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMapping":
        """Create from dictionary representation."""
        try:
            return cls(
                source_column=data["sourceColumn"],
                target_field=data["targetField"],
                transform=data.get("transform"),
                is_relationship=bool(data.get("isRelationship", False)),
                relation_to=data.get("relationTo"),
            )
        except KeyError as e:
            raise MappingConfigError(f"Field mapping is missing {e}") from e


@dataclass
class CollectionMappings:
    """Ordered field mappings per target collection."""
    mappings: Dict[str, List[FieldMapping]] = field(default_factory=dict)
    version: str = MAPPING_FILE_VERSION
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def get(self, collection: str) -> List[FieldMapping]:
        """Get the mappings for a collection (empty if none)."""
        return self.mappings.get(collection, [])

    def add(self, collection: str, mapping: FieldMapping) -> None:
        """Append a mapping for a collection."""
        self.mappings.setdefault(collection, []).append(mapping)

    @property
    def collections(self) -> List[str]:
        return list(self.mappings.keys())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "version": self.version,
            "generatedAt": self.generated_at.isoformat(),
            "mappings": {
                collection: [m.to_dict() for m in field_mappings]
                for collection, field_mappings in self.mappings.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionMappings":
        """Create from dictionary representation."""
        if not isinstance(data, dict) or "mappings" not in data:
            raise MappingConfigError("Mapping file has no 'mappings' section")

        version = str(data.get("version", MAPPING_FILE_VERSION))
        if version.split(".")[0] != MAPPING_FILE_VERSION.split(".")[0]:
            raise MappingConfigError(f"Unsupported mapping file version: {version}")

        generated_at = datetime.utcnow()
        if data.get("generatedAt"):
            try:
                generated_at = datetime.fromisoformat(data["generatedAt"])
            except ValueError as e:
                raise MappingConfigError(f"Invalid generatedAt: {data['generatedAt']}") from e

        mappings = {
            collection: [FieldMapping.from_dict(m) for m in items]
            for collection, items in data["mappings"].items()
        }
        return cls(mappings=mappings, version=version, generated_at=generated_at)

    def to_json_file(self, path: str) -> None:
        """Save to a JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_json_file(cls, path: str) -> "CollectionMappings":
        """Load from a JSON file."""
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise MappingConfigError(f"Mapping file {path} is not valid JSON: {e}") from e
        return cls.from_dict(data)
