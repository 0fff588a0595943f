"""Persistent record of linked servers.

The registry is held in memory and only touches its store on ``load`` and
``save``. The persisted document looks like::

    {
        "servers": [
            {"address": "localhost:25575", "uuid": "7c1d..."}
        ]
    }

Unknown fields are ignored when reading and dropped when writing.
"""

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .errors import ConfigCorrupt, PersistError
from .models import ServerEntry

logger = logging.getLogger(__name__)


class RegistryStore(Protocol):
    def read(self) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None if nothing was stored yet."""
        ...

    def write(self, document: Dict[str, Any]) -> None:
        """Replace the stored document."""
        ...


class JsonFileStore:
    """Registry store backed by a JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConfigCorrupt(str(self.path), f"invalid JSON ({e})") from e
        except OSError as e:
            raise ConfigCorrupt(str(self.path), str(e)) from e
        # An existing file must hold an object; only a missing file reads as None
        if not isinstance(document, dict):
            raise ConfigCorrupt(str(self.path), "top level must be an object")
        return document

    def write(self, document: Dict[str, Any]) -> None:
        """Write to a temporary file in the same directory, then rename over the target."""
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=4)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistError(str(self.path), str(e)) from e


class MemoryStore:
    """In-memory registry store, mostly useful for tests."""

    def __init__(self, document: Optional[Dict[str, Any]] = None):
        self.document = copy.deepcopy(document)
        self.writes = 0

    def read(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.document)

    def write(self, document: Dict[str, Any]) -> None:
        self.document = copy.deepcopy(document)
        self.writes += 1


class ServerRegistry:
    def __init__(self, store: RegistryStore, entries: Optional[List[ServerEntry]] = None):
        self._store = store
        self._entries: List[ServerEntry] = []
        for entry in entries or []:
            self.upsert(entry)

    @classmethod
    def load(cls, store: RegistryStore) -> "ServerRegistry":
        """Read the registry from ``store``; a missing store yields an empty registry."""
        document = store.read()
        if document is None:
            logger.debug("No server registry found, starting empty")
            return cls(store)
        registry = cls(store, _parse_entries(document, _store_label(store)))
        logger.debug(f"Loaded {len(registry)} linked servers")
        return registry

    @property
    def entries(self) -> Tuple[ServerEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def find(self, address: str) -> Optional[ServerEntry]:
        """Look up an entry by exact address."""
        for entry in self._entries:
            if entry.address == address:
                return entry
        return None

    def upsert(self, entry: ServerEntry) -> None:
        """Replace the entry for ``entry.address`` or append a new one."""
        for i, existing in enumerate(self._entries):
            if existing.address == entry.address:
                self._entries[i] = entry
                return
        self._entries.append(entry)

    def save(self) -> None:
        """Write every entry back to the store.

        Raises:
            PersistError: if the store cannot be written.
        """
        document = {
            "servers": [
                {"address": entry.address, "uuid": entry.client_id}
                for entry in self._entries
            ]
        }
        self._store.write(document)
        logger.debug(f"Saved {len(self._entries)} linked servers")


def _store_label(store: RegistryStore) -> str:
    path = getattr(store, "path", None)
    return str(path) if path is not None else type(store).__name__


def _parse_entries(document: Any, label: str) -> List[ServerEntry]:
    if not isinstance(document, dict):
        raise ConfigCorrupt(label, "top level must be an object")
    servers = document.get("servers")
    if not isinstance(servers, list):
        raise ConfigCorrupt(label, "'servers' must be a list")

    entries = []
    for index, item in enumerate(servers):
        if not isinstance(item, dict):
            raise ConfigCorrupt(label, f"server #{index} must be an object")
        address = item.get("address")
        client_id = item.get("uuid")
        if not isinstance(address, str) or not address:
            raise ConfigCorrupt(label, f"server #{index} has no address")
        if not isinstance(client_id, str) or not client_id:
            raise ConfigCorrupt(label, f"server #{index} has no uuid")
        entries.append(ServerEntry(address=address, client_id=client_id))
    return entries
