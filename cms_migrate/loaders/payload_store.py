"""REST client for the Payload CMS target store."""

import json
import time
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import TargetStore, Where
from ..errors import RecordNotFoundError, TargetStoreError
from ..models.record import FileAttachment

logger = logging.getLogger(__name__)


def where_params(where: Optional[Where], prefix: str = "where") -> Dict[str, Any]:
    """
    Flatten a where clause into Payload's bracketed query parameters.

    ``{"slug": "calm"}`` becomes ``{"where[slug][equals]": "calm"}`` and
    ``{"id": {"in": [1, 2]}}`` becomes ``{"where[id][in]": "1,2"}``.
    """
    params: Dict[str, Any] = {}
    for field_name, condition in (where or {}).items():
        if isinstance(condition, dict):
            operators = condition
        else:
            operators = {"equals": condition}
        for operator, value in operators.items():
            if isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            elif isinstance(value, bool):
                value = "true" if value else "false"
            params[f"{prefix}[{field_name}][{operator}]"] = value
    return params


class PayloadRESTStore(TargetStore):
    """
    Target store speaking Payload's REST API.

    Supports:
    - API key authentication (``users API-Key <key>``)
    - Multipart uploads for upload-enabled collections
    - Localized writes
    - Rate limiting
    - Retry logic for idempotent requests
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        auth_collection: str = "users",
        api_prefix: str = "/api",
        rate_limit: float = 10.0,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the store.

        Args:
            base_url: Base URL of the CMS
            api_key: API key of the migration user
            auth_collection: Collection the API key belongs to
            api_prefix: Path prefix of the REST API
            rate_limit: Max requests per second
            max_retries: Retries on transient failures
            backoff_factor: Exponential backoff factor between retries
            timeout: Request timeout in seconds (None waits indefinitely)
            session: Custom requests session
        """
        super().__init__(name="payload")
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}{api_prefix}"
        self.api_key = api_key
        self.auth_collection = auth_collection
        self.rate_limit = rate_limit
        self.timeout = timeout
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._last_request_time = 0.0
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication and retry logic."""
        session = requests.Session()

        # POST is not retried: a retried create could duplicate a document
        retries = Retry(
            total=self._max_retries,
            backoff_factor=self._backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PATCH", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        if self.api_key:
            session.headers["Authorization"] = f"{self.auth_collection} API-Key {self.api_key}"

        return session

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        if self.rate_limit > 0:
            elapsed = time.time() - self._last_request_time
            wait_time = (1.0 / self.rate_limit) - elapsed
            if wait_time > 0:
                time.sleep(wait_time)
        self._last_request_time = time.time()

    def _url(self, collection: str, id: Optional[str] = None) -> str:
        if id is None:
            return f"{self.api_url}/{collection}"
        return f"{self.api_url}/{collection}/{id}"

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            messages = []
            for error in errors:
                messages.append(error.get("message", str(error)))
                details = error.get("data")
                if isinstance(details, dict):
                    for detail in details.get("errors", []):
                        messages.append(f"{detail.get('path')}: {detail.get('message')}")
            return "; ".join(messages)
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or str(body)
        return str(body)

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Tuple[str, Any, str]]] = None
    ) -> Dict[str, Any]:
        self._rate_limit_wait()
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                data=data,
                files=files,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TargetStoreError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404:
            raise RecordNotFoundError(self._error_message(response), status_code=404)
        if response.status_code >= 400:
            raise TargetStoreError(self._error_message(response), status_code=response.status_code)

        return response.json() if response.text else {}

    def _write(
        self,
        method: str,
        url: str,
        data: Dict[str, Any],
        file: Optional[FileAttachment],
        locale: Optional[str]
    ) -> Dict[str, Any]:
        params = {"locale": locale} if locale else None
        if file is None:
            body = self._request(method, url, params=params, json_body=data)
        else:
            with open(file.path, "rb") as handle:
                body = self._request(
                    method,
                    url,
                    params=params,
                    data={"_payload": json.dumps(data)},
                    files={"file": (file.filename, handle, file.mime_type)},
                )
        return body.get("doc", body)

    def create(
        self,
        collection: str,
        data: Dict[str, Any],
        file: Optional[FileAttachment] = None,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        doc = self._write("POST", self._url(collection), data, file, locale)
        logger.debug(f"Created {collection} {doc.get('id')}")
        return doc

    def update(
        self,
        collection: str,
        id: str,
        data: Dict[str, Any],
        file: Optional[FileAttachment] = None,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        doc = self._write("PATCH", self._url(collection, id), data, file, locale)
        logger.debug(f"Updated {collection} {id}")
        return doc

    def find(
        self,
        collection: str,
        where: Optional[Where] = None,
        limit: int = 10,
        page: int = 1,
        locale: Optional[str] = None
    ) -> Dict[str, Any]:
        params = where_params(where)
        params.update({"limit": limit, "page": page, "depth": 0})
        if locale:
            params["locale"] = locale
        body = self._request("GET", self._url(collection), params=params)
        body.setdefault("docs", [])
        return body

    def find_by_id(self, collection: str, id: str) -> Dict[str, Any]:
        return self._request("GET", self._url(collection, id), params={"depth": 0})

    def delete(
        self,
        collection: str,
        id: Optional[str] = None,
        where: Optional[Where] = None
    ) -> int:
        if id is not None:
            self._request("DELETE", self._url(collection, id))
            return 1

        # Bulk delete is paged by the server; repeat until nothing matches
        deleted = 0
        while True:
            params = where_params(where if where else {"id": {"exists": True}})
            body = self._request("DELETE", self._url(collection), params=params)
            docs: List[Dict[str, Any]] = body.get("docs") or []
            deleted += len(docs)
            if not docs:
                break
            if body.get("errors"):
                raise TargetStoreError(
                    f"Bulk delete in {collection} reported errors: {body['errors']}"
                )
        return deleted

    def validate_connection(self) -> bool:
        """Validate connection to the CMS."""
        try:
            self._rate_limit_wait()
            response = self._session.get(f"{self.api_url}/{self.auth_collection}/me", timeout=self.timeout)
            return response.status_code < 500
        except requests.exceptions.RequestException as e:
            logger.error(f"Target store connection validation failed: {e}")
            return False
