"""Collection migrators, one per target collection."""

from .base import BaseMigrator, SkipRecord
from .tags import TagsMigrator
from .narrators import NarratorsMigrator
from .music import MusicMigrator
from .frames import FramesMigrator
from .meditations import MeditationsMigrator, normalize_frames

__all__ = [
    "BaseMigrator",
    "SkipRecord",
    "TagsMigrator",
    "NarratorsMigrator",
    "MusicMigrator",
    "FramesMigrator",
    "MeditationsMigrator",
    "normalize_frames",
]
