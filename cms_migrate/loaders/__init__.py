"""Target stores the migration writes into."""

from .base import TargetStore
from .dry_run_store import DryRunStore, DRY_RUN_ID
from .payload_store import PayloadRESTStore

__all__ = [
    "TargetStore",
    "DryRunStore",
    "DRY_RUN_ID",
    "PayloadRESTStore",
]
