"""Lessons migrator: Storyblok path steps into the ``lessons`` collection."""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from .base import BaseMigrator
from ..errors import SourceQueryError, TargetStoreError
from ..extractors.base import Row
from ..extractors.storyblok_source import PATH_STEPS_TABLE, StoryblokSource
from ..models.migration import MigrationResult, WriteOutcome
from ..models.record import MediaSource, MediaTransferRecord, TargetRecord, ValidationRule
from ..models.stories import Asset, IntroPanel, PathStepStory, VideoStory
from ..services.id_map import IdMap
from ..services.lexical import clean_text, clean_textarea, convert_article_blocks
from ..services.media_transfer import MEDIA_COLLECTION

logger = logging.getLogger(__name__)

LESSONS_COLLECTION = "lessons"
FILE_ATTACHMENTS_COLLECTION = "file-attachments"
EXTERNAL_VIDEOS_COLLECTION = "external-videos"
MEDITATIONS_COLLECTION = "meditations"
IMPORT_TAG = "import-storyblok"
VIDEO_CATEGORY = "shri-mataji"
ATTACHMENT_EXTENSIONS = {".mp3", ".mpeg", ".mp4", ".jpg", ".jpeg", ".png", ".webp"}

STEP_PATTERN = re.compile(r"step-(\d+)")


def step_from_slug(slug: str) -> Optional[int]:
    match = STEP_PATTERN.search(slug)
    return int(match.group(1)) if match else None


def unit_from_slug(slug: str) -> int:
    """Unit of a step when the story doesn't say: steps 1-6, 7-11 and 12 onwards."""
    step = step_from_slug(slug)
    if step is None or step <= 6:
        return 1
    if step <= 11:
        return 2
    return 3


def matches_step_title(title: str, expected: str) -> bool:
    """
    Whether a meditation title belongs to a step.

    "Step 1: Awakening" matches "Step 1"; "Step 16" doesn't.
    """
    title, expected = title.lower(), expected.lower()
    if not title.startswith(expected):
        return False
    rest = title[len(expected):]
    return not rest or not rest[0].isdigit()


class LessonsMigrator(BaseMigrator):
    """
    Migrates the Storyblok path steps into the ``lessons`` collection.

    Each story becomes one lesson with:
    - A cover panel, then the intro panels in order (image panels upload to
      media, video panels to file attachments)
    - The step's meditation, found by its "Step N" title
    - Intro audio and icon as file attachments, owned by the lesson once it exists
    - Intro subtitles, read from their JSON file
    - The "delving deeper" article converted to Lexical rich text, with its
      videos created as external videos

    Lessons are keyed by story slug. With ``storyblok_unit`` set, stories of
    other units are skipped.
    """

    source_table = PATH_STEPS_TABLE
    target_collection = LESSONS_COLLECTION

    def __init__(self, *args, external_video_map: IdMap, **kwargs):
        super().__init__(*args, **kwargs)
        self.external_video_map = external_video_map
        self._meditations: Optional[List[Dict[str, Any]]] = None
        self._pending_owners: Dict[str, List[str]] = {}

    @property
    def storyblok(self) -> StoryblokSource:
        return self.source

    def get_validation_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(field="title", required=True, type="string"),
            ValidationRule(field="unit", required=True, type="string"),
            ValidationRule(field="step", type="number", min=1),
            ValidationRule(field="panels", required=True, type="array"),
        ]

    def source_key(self, row: Row) -> Any:
        return row.get("slug")

    def unit_of(self, story: PathStepStory) -> int:
        info = story.step_info
        if info is not None and info.Unit_number:
            return info.Unit_number
        return unit_from_slug(story.slug)

    def in_selected_unit(self, story: PathStepStory) -> bool:
        unit = self.config.storyblok_unit
        if unit is None:
            return True
        info = story.step_info
        return (info is not None and info.Unit_number == unit) or unit_from_slug(story.slug) == unit

    # Media

    def media_tags(self) -> List[str]:
        tag = self.media.get_media_tag(IMPORT_TAG) if self.media is not None else None
        return [tag] if tag else []

    def transfer_image(
        self,
        url: str,
        alt: str,
        media: List[MediaTransferRecord],
        warnings: List[str]
    ) -> Optional[str]:
        """Upload an image to the media collection, once per filename."""
        if self.media is None:
            return None
        asset = Asset(url=url)
        transferred = self.media.upload_with_dedup(
            MediaSource(key=url, filename=asset.basename),
            MEDIA_COLLECTION,
            {"alt": alt or asset.basename},
            tags=self.media_tags(),
        )
        if transferred is None:
            warnings.append(f"image {asset.basename} could not be transferred")
            return None
        media.append(transferred)
        return transferred.target_id

    def transfer_attachment(
        self,
        asset: Optional[Asset],
        media: List[MediaTransferRecord],
        warnings: List[str]
    ) -> Optional[str]:
        """Upload an audio, video or image file to the file attachments collection."""
        if asset is None or not asset.location or self.media is None:
            return None
        filename = asset.basename
        if os.path.splitext(filename)[1].lower() not in ATTACHMENT_EXTENSIONS:
            warnings.append(f"unsupported attachment type: {filename}")
            return None
        transferred = self.media.upload_with_dedup(
            MediaSource(key=asset.location, filename=filename),
            FILE_ATTACHMENTS_COLLECTION,
        )
        if transferred is None:
            warnings.append(f"attachment {filename} could not be transferred")
            return None
        media.append(transferred)
        return transferred.target_id

    def load_subtitles(self, asset: Optional[Asset], warnings: List[str]) -> Optional[Dict[str, Any]]:
        if asset is None or not asset.location or self.media is None:
            return None
        path = self.media.download(asset.location, asset.basename)
        if path is None:
            warnings.append(f"subtitles {asset.basename} could not be downloaded")
            return None
        try:
            with open(path) as f:
                return json.load(f)
        except ValueError as e:
            warnings.append(f"subtitles {asset.basename} are not valid JSON: {e}")
            return None

    # Related documents

    def resolve_meditation(self, story: PathStepStory, warnings: List[str]) -> Optional[str]:
        """The meditation titled "Step N" for the story's step, if it references one."""
        if not story.content.Meditation_reference:
            return None
        step = step_from_slug(story.slug)
        if step is None:
            warnings.append(f"could not extract a step number from slug '{story.slug}'")
            return None

        title = f"Step {step}"
        doc = self.store.find_one(MEDITATIONS_COLLECTION, {"title": title})
        if doc is None:
            if self._meditations is None:
                self._meditations = list(self.store.find_all(MEDITATIONS_COLLECTION))
            doc = next((d for d in self._meditations if matches_step_title(d.get("title") or "", title)), None)
        if doc is None:
            warnings.append(f"meditation '{title}' not found")
            return None
        return str(doc["id"])

    def resolve_video(self, uuid: str, media: List[MediaTransferRecord], warnings: List[str]) -> Optional[str]:
        """External video for a video story, created on first use."""
        video_id = self.external_video_map.get(uuid)
        if video_id is not None:
            return video_id

        try:
            video = VideoStory.model_validate(self.storyblok.fetch_story(uuid))
        except SourceQueryError as e:
            warnings.append(f"video story {uuid} could not be fetched: {e}")
            return None

        existing = self.store.find_one(EXTERNAL_VIDEOS_COLLECTION, {"title": video.name})
        if existing is not None:
            video_id = str(existing["id"])
        else:
            content = video.content
            thumbnail = content.Thumbnail.location if content.Thumbnail else None
            doc = self.store.create(EXTERNAL_VIDEOS_COLLECTION, {
                "title": video.name,
                "thumbnail": self.transfer_image(thumbnail, video.name, media, warnings) if thumbnail else None,
                "videoUrl": content.Video_URL or "",
                "subtitlesUrl": content.Subtitles.location if content.Subtitles and content.Subtitles.location else "",
                "category": [VIDEO_CATEGORY],
            })
            video_id = str(doc["id"])
            logger.info(f"Created external video '{video.name}'")

        self.external_video_map.set(uuid, video_id)
        return video_id

    # Transform

    def build_panels(
        self,
        story: PathStepStory,
        attachments: List[str],
        media: List[MediaTransferRecord],
        warnings: List[str]
    ) -> List[Dict[str, Any]]:
        """Cover panel, then the intro panels by order number."""
        panels: List[Dict[str, Any]] = [{
            "blockType": "cover",
            "title": story.name,
            "quote": clean_textarea(story.content.Intro_quote),
        }]

        intro: List[IntroPanel] = sorted(story.content.Intro_stories, key=lambda p: p.Order_number or 0)
        for panel in intro:
            if panel.Video is not None and panel.Video.location:
                video_id = self.transfer_attachment(panel.Video, media, warnings)
                if video_id is not None:
                    attachments.append(video_id)
                    panels.append({"blockType": "video", "video": video_id})
            elif panel.Image is not None and panel.Image.location:
                image_id = self.transfer_image(panel.Image.location, panel.Title or "", media, warnings)
                if image_id is not None:
                    panels.append({
                        "blockType": "text",
                        "title": clean_text(panel.Title),
                        "text": clean_textarea(panel.Text),
                        "image": image_id,
                    })
            else:
                warnings.append(f"panel {(panel.Order_number or 0):g} has neither a video nor an image")
        return panels

    def transform_row(self, row: Row) -> Optional[TargetRecord]:
        story = PathStepStory.model_validate(row)
        if not self.in_selected_unit(story):
            logger.debug(f"Skipping {story.slug}, not in unit {self.config.storyblok_unit}")
            return None

        warnings: List[str] = []
        media: List[MediaTransferRecord] = []
        attachments: List[str] = []

        title = clean_text(story.name)
        data: Dict[str, Any] = {
            "title": title,
            "unit": f"Unit {self.unit_of(story)}",
            "step": step_from_slug(story.slug) or 1,
            "panels": self.build_panels(story, attachments, media, warnings),
        }

        meditation_id = self.resolve_meditation(story, warnings)
        if meditation_id is not None:
            data["meditation"] = meditation_id

        audio = story.audio_intro
        if audio is not None:
            audio_id = self.transfer_attachment(audio.Audio_track, media, warnings)
            if audio_id is not None:
                attachments.append(audio_id)
                data["introAudio"] = audio_id
            subtitles = self.load_subtitles(audio.Subtitles, warnings)
            if subtitles is not None:
                data["introSubtitles"] = subtitles

        if story.article_blocks:
            data["article"] = convert_article_blocks(
                story.article_blocks,
                lambda url, alt: self.transfer_image(url, alt, media, warnings),
                lambda uuid: self.resolve_video(uuid, media, warnings),
            )

        info = story.step_info
        icon_id = self.transfer_attachment(info.Step_Image if info else None, media, warnings)
        if icon_id is not None:
            attachments.append(icon_id)
            data["icon"] = icon_id
        elif info is None or info.Step_Image is None or not info.Step_Image.location:
            warnings.append(f"lesson '{title}' has no step image")

        self._pending_owners[story.slug] = attachments
        return TargetRecord(
            collection=self.get_target_collection(),
            source_key=story.slug,
            data=data,
            natural_key={"title": title},
            warnings=warnings,
            media=media,
        )

    # Write

    def write_record(self, record: TargetRecord, result: MigrationResult) -> WriteOutcome:
        """Write the lesson, then make it the owner of its new file attachments."""
        outcome = super().write_record(record, result)
        attachments = self._pending_owners.pop(record.source_key, [])
        if outcome != WriteOutcome.CREATED:
            return outcome

        lesson_id = self.id_map.get(record.source_key)
        owner = {"relationTo": LESSONS_COLLECTION, "value": lesson_id}
        for attachment_id in attachments:
            try:
                self.store.update(FILE_ATTACHMENTS_COLLECTION, attachment_id, {"owner": owner})
            except TargetStoreError as e:
                message = f"could not set owner of attachment {attachment_id}: {e}"
                logger.warning(f"{self.get_label()}: {message}")
                result.warnings.append(message)
        return outcome
