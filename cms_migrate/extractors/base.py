"""Base source interface for the legacy data store."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Sequence
import logging

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class BaseSource(ABC):
    """
    Base class for legacy data sources.

    Sources expose the legacy data as named tables of rows. Rows are plain
    dictionaries of column name to value; the migrators parse them into the
    typed row models.
    """

    supports_queries = False  # Raw SQL, needed for schema introspection

    def __init__(self, name: str = "source"):
        """
        Initialize the source.

        Args:
            name: Human readable name used in log messages
        """
        self.name = name

    @abstractmethod
    def connect(self) -> None:
        """
        Open the connection.

        Raises:
            SourceConnectionError: If the source cannot be reached
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection. Safe to call more than once."""
        pass

    @abstractmethod
    def get_tables(self) -> List[str]:
        """List the tables available in the source."""
        pass

    @abstractmethod
    def get_columns(self, table: str) -> List[str]:
        """List the column names of a table (empty if the table is missing)."""
        pass

    @abstractmethod
    def get_table_count(self, table: str) -> int:
        """Count the rows of a table."""
        pass

    @abstractmethod
    def fetch_batch(self, table: str, offset: int = 0, limit: int = 100) -> List[Row]:
        """
        Fetch a batch of rows.

        Args:
            table: Table name
            offset: Starting offset
            limit: Maximum rows to fetch

        Returns:
            List of rows
        """
        pass

    def query(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        """Run a parameterized query. Only SQL sources support this."""
        raise NotImplementedError(f"{self.__class__.__name__} does not support raw queries")

    def table_exists(self, table: str) -> bool:
        """Check whether a table exists."""
        return table in self.get_tables()

    def stream(self, table: str, batch_size: int = 100) -> Iterator[List[Row]]:
        """
        Stream rows in batches.

        Args:
            table: Table name
            batch_size: Size of each batch

        Yields:
            Batches of rows
        """
        offset = 0

        while True:
            batch = self.fetch_batch(table, offset=offset, limit=batch_size)
            if not batch:
                break

            yield batch
            offset += len(batch)

            if len(batch) < batch_size:
                break

    def fetch_all(self, table: str, batch_size: int = 500) -> List[Row]:
        """Fetch every row of a table."""
        rows: List[Row] = []
        for batch in self.stream(table, batch_size):
            rows.extend(batch)
        return rows

    def distinct_values(self, table: str, column: str) -> List[Any]:
        """Distinct non-null values of a column, in first-seen order."""
        seen: Dict[Any, None] = {}
        for row in self.fetch_all(table):
            value = row.get(column)
            if value is not None:
                seen.setdefault(value, None)
        return list(seen)

    def __enter__(self) -> "BaseSource":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()
