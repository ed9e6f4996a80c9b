"""REST API source for legacy content exposed by a headless CMS."""

import time
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import BaseSource, Row
from ..errors import SourceConnectionError, SourceQueryError

logger = logging.getLogger(__name__)


class APISource(BaseSource):
    """
    Source for REST APIs with page-numbered pagination.

    Each logical table maps to an endpoint. Responses are expected to carry
    the rows under a data field and the total row count under a total field,
    e.g. ``{"data": [...], "total": 120}``.

    Supports:
    - Bearer token authentication
    - Page/per_page pagination
    - Rate limiting
    - Retry logic
    """

    def __init__(
        self,
        base_url: str,
        endpoints: Dict[str, str],
        api_key: Optional[str] = None,
        data_field: str = "data",
        total_field: str = "total",
        page_param: str = "page",
        per_page_param: str = "per_page",
        params: Optional[Dict[str, Any]] = None,
        rate_limit: Optional[float] = None,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the API source.

        Args:
            base_url: Base URL for the API
            endpoints: Mapping of table name -> endpoint path
            api_key: API key for authentication
            data_field: Response field holding the rows
            total_field: Response field holding the total count
            page_param: Query parameter for the page number (1-based)
            per_page_param: Query parameter for the page size
            params: Query parameters sent with every request
            rate_limit: Max requests per second
            max_retries: Retries on transient failures
            backoff_factor: Exponential backoff factor between retries
            timeout: Request timeout in seconds
            session: Custom requests session
        """
        super().__init__(name=base_url)
        self.base_url = base_url.rstrip("/")
        self.endpoints = endpoints
        self.api_key = api_key
        self.data_field = data_field
        self.total_field = total_field
        self.page_param = page_param
        self.per_page_param = per_page_param
        self.params = dict(params or {})
        self.timeout = timeout
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._rate_limit_delay = 1 / rate_limit if rate_limit else 0
        self._session = session
        self._owns_session = session is None

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self._max_retries,
            backoff_factor=self._backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        if self.api_key:
            session.headers["Authorization"] = f"Bearer {self.api_key}"
        session.headers["Accept"] = "application/json"

        return session

    def connect(self) -> None:
        if self._session is None:
            self._session = self._create_session()
        try:
            response = self._session.get(self.base_url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SourceConnectionError(f"Could not reach source API {self.base_url}: {e}") from e
        if response.status_code >= 500:
            raise SourceConnectionError(
                f"Source API {self.base_url} returned {response.status_code}"
            )
        logger.info(f"Connected to source API {self.base_url}")

    def disconnect(self) -> None:
        if self._session is not None and self._owns_session:
            self._session.close()
            self._session = None

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a path below the base URL, with the source's fixed parameters added."""
        if self._session is None:
            raise SourceConnectionError("Source is not connected")

        if self._rate_limit_delay > 0:
            time.sleep(self._rate_limit_delay)

        url = f"{self.base_url}{path}"
        params = {**self.params, **(params or {})}
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            raise SourceQueryError(
                f"HTTP error: {e.response.status_code} - {e.response.text}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise SourceQueryError(f"Request failed: {e}") from e

    def _get_page(self, table: str, page: int, per_page: int) -> Dict[str, Any]:
        if table not in self.endpoints:
            raise SourceQueryError(f"No endpoint configured for table '{table}'")
        return self.get_json(self.endpoints[table], {self.page_param: page, self.per_page_param: per_page})

    def _rows(self, payload: Dict[str, Any]) -> List[Row]:
        items = payload.get(self.data_field, [])
        if not isinstance(items, list):
            items = [items]
        return [item for item in items if isinstance(item, dict)]

    def get_tables(self) -> List[str]:
        return list(self.endpoints.keys())

    def get_columns(self, table: str) -> List[str]:
        if table not in self.endpoints:
            return []
        rows = self._rows(self._get_page(table, 1, 1))
        return list(rows[0].keys()) if rows else []

    def get_table_count(self, table: str) -> int:
        payload = self._get_page(table, 1, 1)
        if self.total_field in payload:
            return int(payload[self.total_field])
        return len(self.fetch_all(table))

    def fetch_batch(self, table: str, offset: int = 0, limit: int = 100) -> List[Row]:
        # Offsets are always multiples of the batch size when streaming
        page = offset // limit + 1
        rows = self._rows(self._get_page(table, page, limit))
        skip = offset - (page - 1) * limit
        return rows[skip:]
