"""PostgreSQL source for the legacy relational database."""

import logging
from typing import Any, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2 import sql
from psycopg2 import OperationalError, DatabaseError

from .base import BaseSource, Row
from ..errors import SourceConnectionError, SourceQueryError
from ..models.migration import MigrationConfig

logger = logging.getLogger(__name__)


class PostgresSource(BaseSource):
    """
    Source backed by a PostgreSQL database.

    Supports:
    - DSN or discrete connection parameters
    - Offset/limit batch reads
    - Parameterized queries returning dict rows
    - Catalog introspection through information_schema
    """

    supports_queries = True

    def __init__(
        self,
        dsn: Optional[str] = None,
        host: str = "localhost",
        port: int = 5432,
        database: str = "",
        user: str = "",
        password: Optional[str] = None,
        schema: str = "public"
    ):
        """
        Initialize the source.

        Args:
            dsn: Connection string; overrides the discrete parameters
            host: Database host
            port: Database port
            database: Database name
            user: Database user
            password: Database password
            schema: Schema holding the legacy tables
        """
        super().__init__(name=database or "postgres")
        self.dsn = dsn
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.schema = schema
        self._conn = None

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "PostgresSource":
        return cls(
            dsn=config.source_dsn,
            host=config.source_host,
            port=config.source_port,
            database=config.source_database,
            user=config.source_user,
            password=config.source_password,
        )

    def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            if self.dsn:
                self._conn = psycopg2.connect(
                    self.dsn,
                    cursor_factory=psycopg2.extras.RealDictCursor,
                )
            else:
                self._conn = psycopg2.connect(
                    host=self.host,
                    port=self.port,
                    dbname=self.database,
                    user=self.user,
                    password=self.password,
                    cursor_factory=psycopg2.extras.RealDictCursor,
                )
            # Read-only workload; avoid holding a transaction open between batches
            self._conn.autocommit = True
            logger.info(f"Connected to source database {self.name}")
        except OperationalError as e:
            raise SourceConnectionError(f"Could not connect to source database: {e}") from e

    def disconnect(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Disconnected from source database")

    def _execute(self, statement, params: Optional[Sequence[Any]] = None) -> List[Row]:
        if self._conn is None:
            raise SourceConnectionError("Source is not connected")
        try:
            with self._conn.cursor() as cursor:
                cursor.execute(statement, params)
                return [dict(row) for row in cursor.fetchall()]
        except (OperationalError, DatabaseError) as e:
            raise SourceQueryError(str(e)) from e

    def query(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        return self._execute(statement, params)

    def get_tables(self) -> List[str]:
        rows = self._execute(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            (self.schema,),
        )
        return [row["table_name"] for row in rows]

    def get_columns(self, table: str) -> List[str]:
        rows = self._execute(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
            """,
            (self.schema, table),
        )
        return [row["column_name"] for row in rows]

    def table_exists(self, table: str) -> bool:
        rows = self._execute(
            """
            SELECT 1
            FROM information_schema.tables
            WHERE table_schema = %s AND table_name = %s
            """,
            (self.schema, table),
        )
        return bool(rows)

    def get_table_count(self, table: str) -> int:
        statement = sql.SQL("SELECT COUNT(*) AS count FROM {}").format(sql.Identifier(table))
        rows = self._execute(statement)
        return int(rows[0]["count"]) if rows else 0

    def fetch_batch(self, table: str, offset: int = 0, limit: int = 100) -> List[Row]:
        statement = sql.SQL("SELECT * FROM {} ORDER BY 1 LIMIT %s OFFSET %s").format(
            sql.Identifier(table)
        )
        return self._execute(statement, (limit, offset))

    def distinct_values(self, table: str, column: str) -> List[Any]:
        statement = sql.SQL("SELECT DISTINCT {col} FROM {table} WHERE {col} IS NOT NULL").format(
            col=sql.Identifier(column),
            table=sql.Identifier(table),
        )
        return [row[column] for row in self._execute(statement)]

