"""Storyblok content delivery API source for the path step stories."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from .api_source import APISource
from .base import Row
from ..errors import SourceConnectionError
from ..models.migration import DEFAULT_STORYBLOK_URL

logger = logging.getLogger(__name__)

PATH_STEPS_TABLE = "path-steps"
PATH_STEPS_PREFIX = "path/path-steps"
MAX_PER_PAGE = 100  # Storyblok caps per_page at 100


class StoryblokSource(APISource):
    """
    Reads published Storyblok stories as a single ``path-steps`` table.

    Rows are the raw stories (``id``, ``uuid``, ``name``, ``slug``,
    ``full_slug``, ``content``). Stories referenced by uuid, such as the
    video stories of an article, are fetched one at a time and cached on
    disk so a rerun doesn't hit the API again.
    """

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_STORYBLOK_URL,
        starts_with: str = PATH_STEPS_PREFIX,
        cache_dir: Optional[str] = None,
        **kwargs
    ):
        """
        Initialize the Storyblok source.

        Args:
            token: Public or preview access token of the space
            base_url: Content delivery API base URL
            starts_with: Full slug prefix of the stories to read
            cache_dir: Directory for cached story lookups (no cache if omitted)
            **kwargs: Passed through to APISource (retries, timeout, session)
        """
        super().__init__(
            base_url=base_url,
            endpoints={PATH_STEPS_TABLE: "/stories"},
            data_field="stories",
            total_field="total",
            params={"token": token, "version": "published", "starts_with": starts_with},
            **kwargs
        )
        self.name = f"storyblok:{starts_with}"
        self.token = token
        self.cache_dir = Path(cache_dir) / "storyblok" if cache_dir else None

    def connect(self) -> None:
        if self._session is None:
            self._session = self._create_session()
        try:
            response = self._session.get(
                f"{self.base_url}/spaces/me",
                params={"token": self.token},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise SourceConnectionError(f"Could not reach Storyblok at {self.base_url}: {e}") from e
        if response.status_code in (401, 403):
            raise SourceConnectionError("Storyblok rejected the access token")
        if response.status_code >= 500:
            raise SourceConnectionError(f"Storyblok returned {response.status_code}")
        logger.info(f"Connected to Storyblok ({self.name})")

    def fetch_batch(self, table: str, offset: int = 0, limit: int = 100) -> List[Row]:
        return super().fetch_batch(table, offset, min(limit, MAX_PER_PAGE))

    def get_table_count(self, table: str) -> int:
        # The total only comes back as a response header, so count by paging
        return len(self.fetch_all(table, batch_size=MAX_PER_PAGE))

    def fetch_story(self, uuid: str) -> Dict[str, Any]:
        """A single story by uuid, served from the disk cache when present."""
        cache_file = self.cache_dir / "stories" / f"{uuid}.json" if self.cache_dir else None
        if cache_file is not None and cache_file.exists():
            with open(cache_file) as f:
                return json.load(f)["story"]

        logger.info(f"Fetching story {uuid}...")
        payload = self.get_json(f"/stories/{uuid}", {"find_by": "uuid"})

        if cache_file is not None:
            cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(cache_file, "w") as f:
                json.dump(payload, f, indent=2)
        return payload["story"]
