"""Base target store interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional
import logging

from ..errors import RecordNotFoundError
from ..models.record import FileAttachment

logger = logging.getLogger(__name__)

# Where clauses map a field to either a plain value (equality) or an
# operator dict such as {"contains": "abc"} or {"in": [1, 2]}.
Where = Dict[str, Any]


class TargetStore(ABC):
    """
    Base class for the target document store.

    Stores are responsible for creating, updating, finding and deleting
    documents in named collections. Documents are plain dictionaries that
    always carry an ``id``.
    """

    def __init__(self, name: str = "target"):
        """
        Initialize the store.

        Args:
            name: Name of the target service, used in log messages
        """
        self.name = name

    @abstractmethod
    def create(
        self,
        collection: str,
        data: Dict[str, Any],
        file: Optional[FileAttachment] = None,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a document.

        Args:
            collection: Target collection slug
            data: Document fields
            file: Binary attachment for upload-enabled collections
            locale: Locale for localized fields

        Returns:
            The created document

        Raises:
            TargetStoreError: If the store rejects the document
        """
        pass

    @abstractmethod
    def update(
        self,
        collection: str,
        id: str,
        data: Dict[str, Any],
        file: Optional[FileAttachment] = None,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Update a document in place. Fields not in ``data`` are left untouched.

        Returns:
            The updated document
        """
        pass

    @abstractmethod
    def find(
        self,
        collection: str,
        where: Optional[Where] = None,
        limit: int = 10,
        page: int = 1,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Find documents.

        Returns:
            A page: ``{"docs": [...], "totalDocs": n, "hasNextPage": bool}``
        """
        pass

    @abstractmethod
    def find_by_id(self, collection: str, id: str) -> Dict[str, Any]:
        """
        Get a document by id.

        Raises:
            RecordNotFoundError: If no such document exists
        """
        pass

    @abstractmethod
    def delete(
        self,
        collection: str,
        id: Optional[str] = None,
        where: Optional[Where] = None
    ) -> int:
        """
        Delete one document by id, or every document matching ``where``.

        Returns:
            Number of documents deleted
        """
        pass

    def find_one(
        self,
        collection: str,
        where: Where,
        locale: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Find the first document matching ``where``."""
        page = self.find(collection, where=where, limit=1, locale=locale)
        docs = page.get("docs") or []
        return docs[0] if docs else None

    def find_all(
        self,
        collection: str,
        where: Optional[Where] = None,
        page_size: int = 100
    ) -> Iterator[Dict[str, Any]]:
        """Iterate over every document matching ``where``."""
        page_number = 1
        while True:
            page = self.find(collection, where=where, limit=page_size, page=page_number)
            docs: List[Dict[str, Any]] = page.get("docs") or []
            yield from docs
            if not page.get("hasNextPage") or not docs:
                break
            page_number += 1

    def exists(self, collection: str, id: str) -> bool:
        """Check whether a document id still resolves."""
        try:
            self.find_by_id(collection, id)
            return True
        except RecordNotFoundError:
            return False

    def validate_connection(self) -> bool:
        """Validate the connection to the target store."""
        return True
