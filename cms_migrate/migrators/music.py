"""Music migrator: background tracks with their audio file and music tags."""

import logging
from typing import List, Optional

from .base import BaseMigrator
from ..extractors.base import Row
from ..models.record import MediaSource, TargetRecord, ValidationRule
from ..models.rows import MusicRow, split_tags
from ..services.id_map import IdMap
from ..services.media_processing import is_supported_music_file
from ..services.transformer import slugify

logger = logging.getLogger(__name__)


class MusicMigrator(BaseMigrator):
    """
    Migrates the ``musics`` table into the ``music`` upload collection.

    A track whose audio can't be used (missing, or a format the collection
    rejects such as .m4a) is still created, without a file.
    """

    source_table = "musics"
    target_collection = "music"

    def __init__(self, *args, music_tag_map: IdMap, **kwargs):
        super().__init__(*args, **kwargs)
        self.music_tag_map = music_tag_map

    def get_validation_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(field="title", required=True, type="string"),
            ValidationRule(field="slug", required=True, type="string", pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$"),
            ValidationRule(field="duration", type="number", min=0),
            ValidationRule(field="tags", type="array"),
        ]

    def transform_row(self, row: Row) -> Optional[TargetRecord]:
        music = MusicRow.model_validate(row)
        warnings = []

        slug = slugify(music.title)
        names = self.index.tag_names_for("Music", music.id)
        for name in split_tags(music.tags):
            if name not in names:
                names.append(name)

        tags = []
        for name in names:
            tag_id = self.music_tag_map.get(name)
            if tag_id is None:
                warnings.append(f"music tag '{name}' has not been migrated")
                continue
            tags.append(tag_id)

        attachment = None
        audio = self.index.attachments_for("Music", music.id).get("audio")
        if audio is None:
            warnings.append(f"no audio attached to music {music.id}")
        elif not is_supported_music_file(audio.filename, audio.content_type):
            warnings.append(f"unsupported audio format {audio.filename}, creating without file")
        else:
            attachment = MediaSource(
                key=audio.key,
                filename=audio.filename,
                content_type=audio.content_type,
                byte_size=audio.byte_size,
            )

        return TargetRecord(
            collection=self.get_target_collection(),
            source_key=music.id,
            data={
                "title": music.title,
                "slug": slug,
                "credit": music.credit,
                "duration": music.duration,
                "tags": tags,
            },
            natural_key={"slug": slug},
            attachment=attachment,
            locale="en",
            warnings=warnings,
        )
