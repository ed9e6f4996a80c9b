"""Schema introspection for the legacy relational database."""

import logging
from typing import Any, Dict, List, Optional

from ..errors import SourceQueryError
from ..extractors.base import BaseSource
from ..models.schema import ColumnInfo, ForeignKeyInfo, TableSchema

logger = logging.getLogger(__name__)

COLUMNS_QUERY = """
    SELECT
        column_name,
        data_type,
        is_nullable,
        column_default,
        character_maximum_length
    FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position
"""

PRIMARY_KEY_QUERY = """
    SELECT a.attname AS column_name
    FROM pg_index i
    JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
    JOIN pg_class c ON c.oid = i.indrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = %s
      AND c.relname = %s
      AND i.indisprimary
"""

FOREIGN_KEYS_QUERY = """
    SELECT
        kcu.column_name,
        ccu.table_name AS referenced_table,
        ccu.column_name AS referenced_column
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
      ON tc.constraint_name = kcu.constraint_name
      AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage AS ccu
      ON ccu.constraint_name = tc.constraint_name
      AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = %s
      AND tc.table_name = %s
"""


class SchemaAnalyzer:
    """
    Introspects source tables into TableSchema descriptions.

    Only read queries are issued. Column, primary key and foreign key
    lookups share the source's single connection.
    """

    def __init__(self, source: BaseSource, schema: Optional[str] = None):
        """
        Initialize the analyzer.

        Args:
            source: Connected source supporting SQL queries
            schema: Database schema holding the tables, defaults to the source's own
        """
        self.source = source
        self.schema = schema or getattr(source, "schema", None) or "public"

    def get_tables(self) -> List[str]:
        """List the base tables of the source."""
        return self.source.get_tables()

    def analyze_table(self, table_name: str) -> TableSchema:
        """
        Introspect one table.

        Raises:
            SourceQueryError: If the table does not exist or a query fails
        """
        columns = self._get_columns(table_name)
        if not columns:
            raise SourceQueryError(f"Table {table_name} not found")

        return TableSchema(
            table_name=table_name,
            columns=columns,
            primary_key=self._get_primary_key(table_name),
            foreign_keys=self._get_foreign_keys(table_name),
        )

    def analyze_tables(self, table_names: List[str]) -> List[TableSchema]:
        """
        Introspect several tables.

        A table that fails is logged and left out of the result.
        """
        schemas = []
        for table_name in table_names:
            try:
                schemas.append(self.analyze_table(table_name))
            except Exception as e:
                logger.error(f"Failed to analyze table {table_name}: {e}")
        logger.info(f"Analyzed {len(schemas)}/{len(table_names)} tables")
        return schemas

    def _get_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = self.source.query(COLUMNS_QUERY, (self.schema, table_name))
        return [self._column_from_row(row) for row in rows]

    def _get_primary_key(self, table_name: str) -> List[str]:
        rows = self.source.query(PRIMARY_KEY_QUERY, (self.schema, table_name))
        return [row["column_name"] for row in rows]

    def _get_foreign_keys(self, table_name: str) -> List[ForeignKeyInfo]:
        rows = self.source.query(FOREIGN_KEYS_QUERY, (self.schema, table_name))
        return [
            ForeignKeyInfo(
                column_name=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
            )
            for row in rows
        ]

    @staticmethod
    def _column_from_row(row: Dict[str, Any]) -> ColumnInfo:
        return ColumnInfo(
            name=row["column_name"],
            data_type=row["data_type"],
            nullable=row.get("is_nullable") == "YES",
            max_length=row.get("character_maximum_length"),
            default=row.get("column_default"),
        )


def format_table_schema(schema: TableSchema) -> str:
    """Render a table schema for the terminal."""
    lines = [
        f"\n=== Table: {schema.table_name} ===",
        f"Primary Key: {', '.join(schema.primary_key) or 'none'}",
        "",
        "Columns:",
    ]
    for column in schema.columns:
        nullable = "NULL" if column.nullable else "NOT NULL"
        length = f"({column.max_length})" if column.max_length else ""
        default = f" DEFAULT {column.default}" if column.default else ""
        markers = []
        if column.name in schema.primary_key:
            markers.append("PK")
        fk = schema.get_foreign_key(column.name)
        if fk:
            markers.append(f"FK -> {fk.referenced_table}.{fk.referenced_column}")
        marker_text = f" [{'; '.join(markers)}]" if markers else ""
        lines.append(f"  - {column.name}: {column.data_type}{length} {nullable}{default}{marker_text}")

    if schema.foreign_keys:
        lines.append("")
        lines.append("Foreign Keys:")
        for fk in schema.foreign_keys:
            lines.append(f"  - {fk.column_name} -> {fk.referenced_table}.{fk.referenced_column}")

    return "\n".join(lines)
