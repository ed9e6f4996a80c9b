"""Sources for the legacy data being migrated."""

from .base import BaseSource
from .api_source import APISource
from .postgres_source import PostgresSource

__all__ = [
    "BaseSource",
    "APISource",
    "PostgresSource",
]
