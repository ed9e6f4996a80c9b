"""Transformation engine for applying field mappings to source rows."""

import re
import logging
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, date

from dateutil import parser as date_parser

from ..models.schema import FieldMapping

logger = logging.getLogger(__name__)

TransformFunc = Callable[[Any, Dict[str, Any]], Any]
RelationResolver = Callable[[str, Any], Optional[str]]


def slugify(value: Any) -> str:
    """Lowercase, collapse runs of non-alphanumerics to '-', strip dashes."""
    text = str(value or "").lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def split_csv(value: Any) -> List[str]:
    """Split a comma-separated string into trimmed, lowercased, non-empty items."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value).split(",")
    return [str(item).strip().lower() for item in items if str(item).strip()]


def to_boolean(value: Any) -> bool:
    """Interpret common truthy spellings."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "1", "yes", "y", "t", "on")


class TransformEngine:
    """
    Engine for turning source rows into target-shaped data.

    Supports:
    - Named built-in transforms (serializable in mapping files)
    - Custom transforms registered at runtime
    - Relationship resolution through a caller-provided resolver
    """

    def __init__(self):
        """Initialize the transform engine."""
        self._custom_transforms: Dict[str, TransformFunc] = {}
        self._builtin_transforms = self._register_builtin_transforms()

    def _register_builtin_transforms(self) -> Dict[str, TransformFunc]:
        """Register all built-in transformation functions."""
        return {
            "split_csv": lambda value, row: split_csv(value),
            "slugify": lambda value, row: slugify(value),
            "boolean": lambda value, row: to_boolean(value),
            "date": self._transform_date,
            "number": self._transform_number,
            "lowercase": lambda value, row: str(value).lower() if value is not None else None,
            "trim": lambda value, row: str(value).strip() if value is not None else None,
        }

    def register_transform(self, name: str, func: TransformFunc) -> None:
        """Register a custom transformation function."""
        self._custom_transforms[name] = func

    def has_transform(self, name: str) -> bool:
        return name in self._custom_transforms or name in self._builtin_transforms

    @property
    def transform_names(self) -> List[str]:
        return sorted(set(self._builtin_transforms) | set(self._custom_transforms))

    def apply(self, name: str, value: Any, row: Dict[str, Any]) -> Any:
        """
        Apply a named transform.

        Args:
            name: Transform name
            value: Source value
            row: The whole source row, for transforms that combine columns

        Returns:
            The transformed value

        Raises:
            ValueError: If the transform is unknown or the value can't be converted
        """
        func = self._custom_transforms.get(name) or self._builtin_transforms.get(name)
        if func is None:
            raise ValueError(f"Unknown transform: {name}")
        return func(value, row)

    def apply_mappings(
        self,
        row: Dict[str, Any],
        mappings: List[FieldMapping],
        resolve_relation: Optional[RelationResolver] = None
    ) -> Dict[str, Any]:
        """
        Build target data from a row using field mappings.

        Columns missing from the row or holding None are ignored. Relationships are resolved
        through ``resolve_relation``; an unresolved relationship is dropped.

        Args:
            row: Source row
            mappings: Field mappings for the target collection
            resolve_relation: Callable (collection, source value) -> target id

        Returns:
            Mapped target data
        """
        data: Dict[str, Any] = {}

        for mapping in mappings:
            if mapping.source_column not in row:
                continue

            value = row[mapping.source_column]
            if value is None:
                continue

            if mapping.transform:
                value = self.apply(mapping.transform, value, row)

            if mapping.is_relationship:
                resolved = resolve_relation(mapping.relation_to, value) if resolve_relation else None
                if resolved is None:
                    logger.debug(
                        f"Unresolved relationship {mapping.source_column}={value} -> {mapping.relation_to}"
                    )
                    continue
                value = resolved

            data[mapping.target_field] = value

        return data

    def _transform_date(self, value: Any, row: Dict[str, Any]) -> Optional[str]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day).isoformat()
        try:
            return date_parser.parse(str(value)).isoformat()
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid date: {value}") from e

    def _transform_number(self, value: Any, row: Dict[str, Any]) -> Optional[float]:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            return float(text)
