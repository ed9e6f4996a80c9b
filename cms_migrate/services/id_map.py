"""Source-key to target-id maps, with pluggable persistence for resumable runs."""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Entity kinds tracked by the migration, in the order they are persisted
ID_MAP_KINDS = [
    "narrators",
    "meditation_tags",
    "music_tags",
    "frames",
    "musics",
    "meditations",
    "media",
    "lessons",
    "external_videos",
]

ID_MAP_FILENAME = "id-mappings.json"

# Kinds keyed by legacy integer ids; the others are keyed by names or composite strings
INT_KEY_KINDS = {"narrators", "musics", "meditations"}


def _restore_key(kind: str, key: str) -> Any:
    """JSON object keys are always strings; restore integer ids for the kinds that use them."""
    if kind not in INT_KEY_KINDS:
        return key
    if key.isdigit() or (key.startswith("-") and key[1:].isdigit()):
        return int(key)
    return key


class IdMap:
    """
    Mapping from a source natural key to a target identifier for one entity kind.

    At most one target id is kept per source key; setting an existing key
    replaces its id.
    """

    def __init__(self, kind: str, entries: Optional[Dict[Any, str]] = None):
        self.kind = kind
        self._entries: Dict[Any, str] = dict(entries or {})

    def get(self, key: Any, default: Optional[str] = None) -> Optional[str]:
        return self._entries.get(key, default)

    def set(self, key: Any, target_id: str) -> None:
        previous = self._entries.get(key)
        if previous is not None and previous != target_id:
            logger.debug(f"{self.kind}: remapping {key} from {previous} to {target_id}")
        self._entries[key] = target_id

    def has(self, key: Any) -> bool:
        return key in self._entries

    def delete(self, key: Any) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def items(self) -> Iterator[Tuple[Any, str]]:
        return iter(list(self._entries.items()))

    def keys(self) -> List[Any]:
        return list(self._entries.keys())

    def __contains__(self, key: Any) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> Dict[str, str]:
        """Convert to a JSON-safe dictionary (string keys)."""
        return {str(k): v for k, v in self._entries.items()}

    @classmethod
    def from_dict(cls, kind: str, data: Dict[str, str]) -> "IdMap":
        """Create from a persisted dictionary, restoring integer keys."""
        return cls(kind, {_restore_key(kind, k): v for k, v in (data or {}).items()})


class StateStore(ABC):
    """Persistence backend for the ID map snapshot."""

    @abstractmethod
    def load(self) -> Dict[str, Any]:
        """Load the last saved state (empty if none)."""
        pass

    @abstractmethod
    def save(self, state: Dict[str, Any]) -> None:
        """Persist the state, replacing any previous snapshot."""
        pass


class MemoryStateStore(StateStore):
    """State store that keeps the snapshot in memory."""

    def __init__(self, state: Optional[Dict[str, Any]] = None):
        self.state: Dict[str, Any] = json.loads(json.dumps(state or {}))
        self.saves = 0

    def load(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self.state))

    def save(self, state: Dict[str, Any]) -> None:
        self.state = json.loads(json.dumps(state))
        self.saves += 1


class JsonFileStateStore(StateStore):
    """
    State store writing a JSON snapshot into the cache directory.

    The file is replaced atomically so a crash during a save leaves the
    previous snapshot intact.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    @classmethod
    def in_cache_dir(cls, cache_dir: str) -> "JsonFileStateStore":
        return cls(os.path.join(cache_dir, ID_MAP_FILENAME))

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable ID map snapshot {self.path}: {e}")
            return {}

    def save(self, state: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class IdMapCache:
    """
    The set of ID maps shared between migrators.

    The orchestrator owns one cache per run and hands each migrator the maps
    it reads or writes.
    """

    def __init__(self, kinds: Optional[List[str]] = None):
        self._maps: Dict[str, IdMap] = {kind: IdMap(kind) for kind in (kinds or ID_MAP_KINDS)}

    def __getitem__(self, kind: str) -> IdMap:
        if kind not in self._maps:
            self._maps[kind] = IdMap(kind)
        return self._maps[kind]

    def get(self, kind: str) -> IdMap:
        return self[kind]

    @property
    def kinds(self) -> List[str]:
        return list(self._maps.keys())

    def clear(self, kind: Optional[str] = None) -> None:
        """Empty one map, or all of them."""
        if kind is None:
            for id_map in self._maps.values():
                id_map.clear()
        else:
            self[kind].clear()

    def counts(self) -> Dict[str, int]:
        return {kind: len(id_map) for kind, id_map in self._maps.items()}

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {kind: id_map.to_dict() for kind, id_map in self._maps.items()}

    def load(self, store: StateStore) -> None:
        """Replace the in-memory maps with the persisted snapshot."""
        state = store.load()
        for kind, entries in state.items():
            self._maps[kind] = IdMap.from_dict(kind, entries)
        if state:
            summary = ", ".join(f"{kind}={count}" for kind, count in self.counts().items() if count)
            logger.info(f"Loaded ID maps from cache: {summary or 'empty'}")

    def save(self, store: StateStore) -> None:
        """Persist every map."""
        store.save(self.to_dict())
        logger.debug(f"Saved ID maps: {self.counts()}")
