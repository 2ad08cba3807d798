"""
Namespaced persisted state for the order synchronization core.

The order cache and the notification store share a single JSON blob, each
owning one section of it. The blob carries a schema version so that data
written by an older client can be migrated or discarded.

Design decisions:
- JSON file per namespace, loaded lazily on first read
- Writes are best-effort: failures are logged and swallowed, the in-memory
  state stays authoritative for the session
- In-memory backend for sessions without a storage directory (and for tests)
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger("persistence")


SCHEMA_VERSION = 2

# Migrations keyed by the schema version they upgrade *from*
MIGRATIONS: dict[int, Callable[[dict], dict]] = {}


def _migrate_v1(blob: dict) -> dict:
    """
    Version 1 stored orders as a list and notifications without dedup state.
    """
    orders = blob.get("orders")
    if isinstance(orders, list):
        blob["orders"] = {"records": orders, "aliases": {}}
    notifications = blob.get("notifications")
    if isinstance(notifications, list):
        blob["notifications"] = {"items": notifications, "last_notified": {}, "notified_keys": []}
    blob["schema_version"] = 2
    return blob


MIGRATIONS[1] = _migrate_v1


# =============================================================================
# Storage backends
# =============================================================================

class MemoryStorage:
    """Keeps blobs in a dict. Nothing survives the process."""

    def __init__(self):
        self.blobs: dict[str, str] = {}

    def read(self, namespace: str) -> Optional[str]:
        return self.blobs.get(namespace)

    def write(self, namespace: str, data: str) -> None:
        self.blobs[namespace] = data

    def remove(self, namespace: str) -> None:
        self.blobs.pop(namespace, None)


class JsonFileStorage:
    """
    Stores each namespace as `<directory>/<namespace>.json`.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, namespace: str) -> Path:
        return self.directory / f"{namespace}.json"

    def read(self, namespace: str) -> Optional[str]:
        path = self._path(namespace)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, namespace: str, data: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(namespace)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(data, encoding="utf-8")
        tmp.replace(path)

    def remove(self, namespace: str) -> None:
        self._path(namespace).unlink(missing_ok=True)


# =============================================================================
# Persisted state
# =============================================================================

class PersistedState:
    """
    One versioned blob, split into named sections.

    Example usage:
        state = PersistedState(JsonFileStorage(Path("~/.storefront")), "storefront")
        state.write_section("orders", {"records": [...], "aliases": {...}})
        state.read_section("orders")
    """

    def __init__(self, storage=None, namespace: str = "storefront-order-sync"):
        self.storage = storage if storage is not None else MemoryStorage()
        self.namespace = namespace
        self._blob: Optional[dict[str, Any]] = None

    def _ensure_loaded(self) -> dict[str, Any]:
        """Lazy load the blob, migrating or discarding incompatible data."""
        if self._blob is not None:
            return self._blob

        self._blob = {"schema_version": SCHEMA_VERSION}
        try:
            raw = self.storage.read(self.namespace)
        except OSError as e:
            logger.error(f"Could not read persisted state '{self.namespace}': {e}")
            return self._blob
        if not raw:
            return self._blob

        try:
            blob = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable persisted state '{self.namespace}': {e}")
            return self._blob
        if not isinstance(blob, dict):
            logger.warning(f"Discarding persisted state '{self.namespace}': not an object")
            return self._blob

        version = blob.get("schema_version", 1)
        while version != SCHEMA_VERSION:
            migrate = MIGRATIONS.get(version)
            if migrate is None:
                logger.warning(
                    f"Discarding persisted state '{self.namespace}': "
                    f"schema version {version} is not supported"
                )
                return self._blob
            logger.info(f"Migrating persisted state '{self.namespace}' from schema version {version}")
            blob = migrate(blob)
            version = blob.get("schema_version")

        self._blob = blob
        return self._blob

    def read_section(self, name: str) -> Optional[Any]:
        """Get one section of the blob, or None if it was never written."""
        return self._ensure_loaded().get(name)

    def write_section(self, name: str, value: Any) -> bool:
        """
        Replace one section and flush the whole blob.

        Returns:
            True if the blob was written, False if the write failed. A failed
            write never raises.
        """
        blob = self._ensure_loaded()
        blob[name] = value
        try:
            data = json.dumps(blob, default=str)
            self.storage.write(self.namespace, data)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist section '{name}' of '{self.namespace}': {e}")
            return False
        logger.debug(f"Persisted section '{name}' ({len(data)} bytes)")
        return True

    def clear(self) -> None:
        """Forget everything, in memory and in storage."""
        self._blob = {"schema_version": SCHEMA_VERSION}
        try:
            self.storage.remove(self.namespace)
        except OSError as e:
            logger.error(f"Failed to remove persisted state '{self.namespace}': {e}")
