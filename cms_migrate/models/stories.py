"""Typed models for the Storyblok stories imported as lessons.

Field names follow the Storyblok component schema. Storyblok sends empty
strings for unset fields, which are read as missing values.
"""

import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class StoryModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    @field_validator("*", mode="before")
    @classmethod
    def empty_is_missing(cls, value: Any) -> Any:
        return None if value == "" else value


class Asset(StoryModel):
    """An asset or link field. Assets carry ``filename``, links carry ``url``."""
    filename: Optional[str] = None
    url: Optional[str] = None
    alt: Optional[str] = None

    @property
    def location(self) -> Optional[str]:
        return self.filename or self.url

    @property
    def basename(self) -> str:
        return os.path.basename((self.location or "").split("?")[0])


class StepInfo(StoryModel):
    Unit_number: Optional[int] = None
    Step_Image: Optional[Asset] = None


class IntroPanel(StoryModel):
    Order_number: Optional[float] = None
    Title: Optional[str] = None
    Text: Optional[str] = None
    Video: Optional[Asset] = None
    Image: Optional[Asset] = None


class AudioIntro(StoryModel):
    Audio_track: Optional[Asset] = None
    Subtitles: Optional[Asset] = None


class Article(StoryModel):
    Blocks: List[Dict[str, Any]] = []


class PathStepContent(StoryModel):
    Step_info: List[StepInfo] = []
    Intro_stories: List[IntroPanel] = []
    Intro_quote: Optional[str] = None
    Meditation_reference: List[Any] = []
    Audio_intro: List[AudioIntro] = []
    Delving_deeper_article: List[Article] = []


class PathStepStory(StoryModel):
    """A ``path/path-steps`` story: one lesson of the path."""
    id: int
    uuid: Optional[str] = None
    name: str
    slug: str
    full_slug: Optional[str] = None
    content: PathStepContent = PathStepContent()

    @property
    def step_info(self) -> Optional[StepInfo]:
        return self.content.Step_info[0] if self.content.Step_info else None

    @property
    def audio_intro(self) -> Optional[AudioIntro]:
        return self.content.Audio_intro[0] if self.content.Audio_intro else None

    @property
    def article_blocks(self) -> List[Dict[str, Any]]:
        return self.content.Delving_deeper_article[0].Blocks if self.content.Delving_deeper_article else []


class VideoContent(StoryModel):
    Video_URL: Optional[str] = None
    Thumbnail: Optional[Asset] = None
    Subtitles: Optional[Asset] = None


class VideoStory(StoryModel):
    """A video story referenced by uuid from an article's main video block."""
    uuid: Optional[str] = None
    name: str
    content: VideoContent = VideoContent()
