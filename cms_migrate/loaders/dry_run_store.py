"""No-op target store used for dry runs."""

import logging
from typing import Any, Dict, Optional

from .base import TargetStore, Where
from ..errors import RecordNotFoundError
from ..models.record import FileAttachment

logger = logging.getLogger(__name__)

DRY_RUN_ID = "dry-run-id"


class DryRunStore(TargetStore):
    """
    Target store that never writes.

    Writes return the submitted data under a sentinel id, lookups find
    nothing, so every record takes the "create" path and runs through the
    full transform and validation logic.
    """

    def __init__(self):
        super().__init__(name="dry-run")
        self.writes = 0

    def create(
        self,
        collection: str,
        data: Dict[str, Any],
        file: Optional[FileAttachment] = None,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        self.writes += 1
        attached = f" with {file.filename}" if file else ""
        logger.debug(f"[DRY RUN] Would create {collection}{attached}: {data}")
        return {**data, "id": DRY_RUN_ID}

    def update(
        self,
        collection: str,
        id: str,
        data: Dict[str, Any],
        file: Optional[FileAttachment] = None,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        self.writes += 1
        logger.debug(f"[DRY RUN] Would update {collection} {id}: {data}")
        return {**data, "id": id}

    def find(
        self,
        collection: str,
        where: Optional[Where] = None,
        limit: int = 10,
        page: int = 1,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        return {"docs": [], "totalDocs": 0, "hasNextPage": False}

    def find_by_id(self, collection: str, id: str) -> Dict[str, Any]:
        raise RecordNotFoundError(f"{collection} {id} not found (dry run)")

    def delete(
        self,
        collection: str,
        id: Optional[str] = None,
        where: Optional[Where] = None
    ) -> int:
        logger.debug(f"[DRY RUN] Would delete from {collection}")
        return 0
