"""Media transfer: download, cache, normalize, deduplicate and upload binary assets."""

import logging
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import MediaTransferError, RecordNotFoundError, TargetStoreError
from ..loaders.base import TargetStore
from ..models.record import FileAttachment, MediaSource, MediaTransferRecord
from .id_map import IdMap
from .media_processing import MediaProcessor, get_mime_type, is_image

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; PayloadMigration/1.0)"
THUMBNAIL_TAG = "meditation-thumbnail"
MEDIA_COLLECTION = "media"
MEDIA_TAGS_COLLECTION = "media-tags"


def sanitize_key(key: str) -> str:
    """Filesystem-safe form of a storage key."""
    return re.sub(r"[^a-zA-Z0-9.-]", "_", key)


@dataclass
class MediaStats:
    """Counters for media handled during a run."""
    downloaded: int = 0
    cache_hits: int = 0
    uploaded: int = 0
    reused: int = 0
    skipped: int = 0
    failed: int = 0
    bytes_uploaded: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "downloaded": self.downloaded,
            "cache_hits": self.cache_hits,
            "uploaded": self.uploaded,
            "reused": self.reused,
            "skipped": self.skipped,
            "failed": self.failed,
            "bytes_uploaded": self.bytes_uploaded,
        }


@dataclass
class TransferItem:
    """One asset to transfer in a bulk transfer."""
    source: MediaSource
    collection: str = MEDIA_COLLECTION
    metadata: Dict[str, Any] = field(default_factory=dict)


class MediaTransfer:
    """
    Moves binary assets from the legacy media origin into the target store.

    Supports:
    - Relative storage keys resolved against a base URL
    - On-disk download cache that survives restarts
    - Bounded retry with backoff on transient download failures
    - Image normalization to WebP
    - Deduplication by filename through the media ID map
    - Small fixed-size parallel bulk transfers

    Download and processing failures are soft: they are logged as warnings
    and the asset is reported as missing (None).
    """

    def __init__(
        self,
        store: TargetStore,
        media_map: IdMap,
        cache_dir: str,
        base_url: str,
        processor: Optional[MediaProcessor] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        concurrency: int = 3,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the transfer unit.

        Args:
            store: Target store receiving uploads
            media_map: ID map of filename -> media id
            cache_dir: Directory for downloaded files
            base_url: Base URL for relative storage keys
            processor: Format handler; images are uploaded as-is without one
            timeout: Download timeout in seconds
            max_retries: Retries on transient download failures
            backoff_factor: Exponential backoff factor between retries
            concurrency: Group size for bulk transfers
            session: Custom requests session
        """
        self.store = store
        self.media_map = media_map
        self.cache_dir = Path(cache_dir)
        self.base_url = base_url.rstrip("/")
        self.processor = processor
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self.stats = MediaStats()
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._session = session or self._create_session()
        self._lock = threading.Lock()
        self._media_tags: Dict[str, str] = {}
        self._placeholders: Dict[str, Optional[str]] = {}

        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self._max_retries,
            backoff_factor=self._backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.headers["User-Agent"] = USER_AGENT

        return session

    def _count(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self.stats, counter, getattr(self.stats, counter) + amount)

    # Download

    def resolve_url(self, key: str) -> str:
        """Absolute URL for a storage key or URL."""
        if key.startswith("http://") or key.startswith("https://"):
            return key
        return f"{self.base_url}/{key.lstrip('/')}"

    def cache_path(self, key: str, filename: str) -> Path:
        """Local cache location for an asset."""
        return self.cache_dir / f"{sanitize_key(key)}_{filename}"

    def download(self, key: str, filename: Optional[str] = None) -> Optional[Path]:
        """
        Download an asset into the cache, or reuse the cached copy.

        Args:
            key: Storage key or absolute URL
            filename: Name to store the file under (defaults to the URL's basename)

        Returns:
            Local path, or None if the asset could not be fetched
        """
        filename = filename or os.path.basename(key.split("?")[0]) or "file"
        path = self.cache_path(key, filename)

        if path.exists() and path.stat().st_size > 0:
            logger.debug(f"Using cached {filename}")
            self._count("cache_hits")
            return path

        url = self.resolve_url(key)
        logger.info(f"Downloading {filename}...")
        try:
            response = self._session.get(url, timeout=self.timeout, stream=True)
            try:
                if not response.ok:
                    logger.warning(f"Failed to download {filename}: HTTP {response.status_code}")
                    self._count("failed")
                    return None

                partial = path.with_name(path.name + ".part")
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=64 * 1024):
                        f.write(chunk)
                os.replace(partial, path)
            finally:
                response.close()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to download {filename}: {e}")
            self._count("failed")
            return None

        self._count("downloaded")
        return path

    def prepare_attachment(
        self,
        source: MediaSource,
        normalize_images: bool = True
    ) -> Optional[FileAttachment]:
        """
        Download an asset and turn it into an upload-ready attachment.

        Images are converted to WebP when a processor is configured. Assets
        that can't be fetched or processed yield None.
        """
        path = self.download(source.key, source.filename)
        if path is None:
            return None

        filename = source.filename
        mime_type = get_mime_type(filename)
        local_path = str(path)

        if self.processor and is_image(mime_type):
            try:
                self.processor.check_size(local_path, mime_type)
                if normalize_images:
                    local_path = self.processor.to_webp(local_path)
                    filename = f"{Path(filename).stem}.webp"
                    mime_type = "image/webp"
            except MediaTransferError as e:
                logger.warning(f"Skipping {source.filename}: {e}")
                self._count("skipped")
                return None

        return FileAttachment(path=local_path, filename=filename, mime_type=mime_type)

    # Upload

    def upload(
        self,
        attachment: FileAttachment,
        collection: str = MEDIA_COLLECTION,
        metadata: Optional[Dict[str, Any]] = None,
        source_key: str = "",
        locale: Optional[str] = None
    ) -> Optional[MediaTransferRecord]:
        """Upload a prepared file as a new document in ``collection``."""
        try:
            doc = self.store.create(collection, dict(metadata or {}), file=attachment, locale=locale)
        except TargetStoreError as e:
            if "exceeds maximum allowed duration" in str(e):
                logger.warning(f"Skipping {attachment.filename}: {e}")
                self._count("skipped")
            else:
                logger.warning(f"Failed to upload {attachment.filename}: {e}")
                self._count("failed")
            return None

        size = doc.get("filesize") or attachment.size
        self._count("uploaded")
        self._count("bytes_uploaded", size)

        return MediaTransferRecord(
            source_key=source_key,
            filename=doc.get("filename") or attachment.filename,
            target_id=str(doc["id"]),
            mime_type=doc.get("mimeType") or attachment.mime_type,
            byte_size=size,
            local_path=attachment.path,
            url=doc.get("url"),
        )

    def transfer_file(
        self,
        key: str,
        collection: str = MEDIA_COLLECTION,
        metadata: Optional[Dict[str, Any]] = None,
        filename: Optional[str] = None
    ) -> Optional[MediaTransferRecord]:
        """
        Download an asset and upload it to ``collection``.

        Returns:
            The transfer record, or None if the asset is missing or rejected
        """
        source = MediaSource(key=key, filename=filename or os.path.basename(key.split("?")[0]))
        attachment = self.prepare_attachment(source)
        if attachment is None:
            return None
        return self.upload(attachment, collection, metadata, source_key=key)

    def transfer_multiple(self, items: List[TransferItem]) -> List[MediaTransferRecord]:
        """
        Transfer independent assets in groups of ``concurrency``.

        Each group is joined before the next one starts. Missing assets are
        left out of the result.
        """
        results: List[MediaTransferRecord] = []
        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            for start in range(0, len(items), self.concurrency):
                group = items[start:start + self.concurrency]
                futures = [
                    executor.submit(
                        self.transfer_file,
                        item.source.key,
                        item.collection,
                        item.metadata,
                        item.source.filename,
                    )
                    for item in group
                ]
                for future in futures:
                    record = future.result()
                    if record is not None:
                        results.append(record)
        return results

    # Deduplication

    def upload_with_dedup(
        self,
        source: MediaSource,
        collection: str = MEDIA_COLLECTION,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None
    ) -> Optional[MediaTransferRecord]:
        """
        Upload an asset once per filename.

        A filename already in the media map is verified against the store and
        reused; a stale entry is evicted and the asset uploaded again.

        Args:
            source: Asset to transfer
            collection: Upload collection
            metadata: Fields for a newly created media document
            tags: Media tag ids the document must carry (merged on reuse)
        """
        existing = self._find_existing(source.filename, collection)
        if existing is not None:
            if tags:
                self.ensure_tags(collection, existing, tags)
            self._count("reused")
            logger.debug(f"Reusing media {existing['id']} for {source.filename}")
            return MediaTransferRecord(
                source_key=source.key,
                filename=existing.get("filename") or source.filename,
                target_id=str(existing["id"]),
                mime_type=existing.get("mimeType") or get_mime_type(source.filename),
                byte_size=existing.get("filesize") or 0,
                url=existing.get("url"),
                reused=True,
            )

        attachment = self.prepare_attachment(source)
        if attachment is None:
            return None

        data = dict(metadata or {})
        if tags:
            data["tags"] = list(tags)
        record = self.upload(attachment, collection, data, source_key=source.key)
        if record is not None:
            self.media_map.set(source.filename, record.target_id)
        return record

    def _find_existing(self, filename: str, collection: str) -> Optional[Dict[str, Any]]:
        """Resolve a filename to a live media document, via the map or the store."""
        media_id = self.media_map.get(filename)
        if media_id is not None:
            try:
                return self.store.find_by_id(collection, media_id)
            except RecordNotFoundError:
                logger.debug(f"Media {media_id} for {filename} no longer exists")
                self.media_map.delete(filename)

        doc = self.find_by_filename(filename, collection)
        if doc is not None:
            self.media_map.set(filename, str(doc["id"]))
        return doc

    def find_by_filename(self, filename: str, collection: str = MEDIA_COLLECTION) -> Optional[Dict[str, Any]]:
        """
        Find a stored document for a filename.

        The store may have renamed a duplicate upload (``name-1.jpg``) or the
        file may have been normalized to WebP, so both are accepted.
        """
        stem, ext = os.path.splitext(filename)
        extensions = {ext.lower(), ".webp"}
        pattern = re.compile(
            rf"^{re.escape(stem)}(-[a-z0-9]+)?({'|'.join(re.escape(e) for e in extensions)})$",
            re.IGNORECASE,
        )
        page = self.store.find(collection, where={"filename": {"contains": stem}}, limit=20)
        for doc in page.get("docs", []):
            if pattern.match(doc.get("filename") or ""):
                return doc
        return None

    def ensure_tags(self, collection: str, doc: Dict[str, Any], tags: List[str]) -> None:
        """Merge tag ids into a document's tags if any are missing."""
        current = [
            str(t["id"]) if isinstance(t, dict) else str(t)
            for t in (doc.get("tags") or [])
        ]
        missing = [t for t in tags if str(t) not in current]
        if not missing:
            return
        self.store.update(collection, str(doc["id"]), {"tags": current + missing})

    def get_media_tag(self, name: str) -> Optional[str]:
        """Id of a media tag, created if needed."""
        if name not in self._media_tags:
            try:
                doc = self.store.find_one(MEDIA_TAGS_COLLECTION, {"name": name})
                if doc is None:
                    doc = self.store.create(MEDIA_TAGS_COLLECTION, {"name": name})
                    logger.info(f"Created media tag '{name}'")
            except TargetStoreError as e:
                logger.warning(f"Could not resolve media tag '{name}': {e}")
                return None
            self._media_tags[name] = str(doc["id"])
        return self._media_tags[name]

    def get_thumbnail_tag(self) -> Optional[str]:
        """Id of the media tag marking meditation thumbnails."""
        return self.get_media_tag(THUMBNAIL_TAG)

    def get_placeholder(self, filename: str, tags: Optional[List[str]] = None) -> Optional[str]:
        """
        Media id of a placeholder image.

        Looked up in the media map, then in the store, then uploaded from the
        cache directory if a local copy exists.
        """
        if filename in self._placeholders:
            return self._placeholders[filename]

        placeholder_id: Optional[str] = None
        existing = self._find_existing(filename, MEDIA_COLLECTION)
        if existing is not None:
            placeholder_id = str(existing["id"])
        else:
            local_path = self.cache_dir / filename
            if local_path.exists():
                attachment = FileAttachment(
                    path=str(local_path),
                    filename=filename,
                    mime_type=get_mime_type(filename),
                )
                data: Dict[str, Any] = {"alt": "Placeholder image"}
                if tags:
                    data["tags"] = list(tags)
                record = self.upload(attachment, MEDIA_COLLECTION, data, source_key=filename)
                if record is not None:
                    placeholder_id = record.target_id
                    self.media_map.set(filename, placeholder_id)
            else:
                logger.warning(f"Placeholder {filename} not found in store or {self.cache_dir}")

        self._placeholders[filename] = placeholder_id
        return placeholder_id
