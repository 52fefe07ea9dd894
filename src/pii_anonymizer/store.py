"""Mapping store — durable JSON snapshot of the token mapping.

Survives process restarts.  Writes are atomic (temp file in the same
directory, then rename), so a crash mid-write leaves the previous snapshot
intact.  A file that cannot be parsed is moved aside as
``<name>.corrupt.<timestamp>`` and the caller starts empty.

One writer per file is assumed.  Two processes saving the same path is
last-write-wins; there is no cross-process locking.

Usage:
    store = MappingStore("~/.pii-anonymizer/mapping.json")
    mapping = store.load()          # None if missing or corrupt
    store.save(assigner.snapshot())
    store.close()
"""

from __future__ import annotations
import contextlib
import ipaddress
import json
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import PersistenceError
from .types import AnonymizationMapping, CategoryMapping, PersistedSnapshot, PiiCategory

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Layout written before schema versioning: one flat map per kind of value
_LEGACY_KEYS = {
    "usernames": PiiCategory.USERNAME,
    "computerNames": PiiCategory.COMPUTER_NAME,
    "ipAddresses": None,   # split into IPV4 / IPV6
    "emails": PiiCategory.EMAIL,
    "paths": PiiCategory.FILE_PATH,
}


class MappingStore:
    """Loads and atomically saves one snapshot file."""

    def __init__(
        self,
        path: str | Path,
        *,
        save_timeout: float = 5.0,
        file_mode: int = 0o600,
    ) -> None:
        self.path = Path(path).expanduser()
        self.save_timeout = save_timeout
        self.file_mode = file_mode
        # single worker: saves are queued, never interleaved
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pii-anonymizer-store")
        self._closed = False

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def load(self) -> AnonymizationMapping | None:
        """Return the persisted mapping, or None if there is nothing usable."""
        snapshot = self.load_snapshot()
        return snapshot.categories if snapshot is not None else None

    def load_snapshot(self) -> PersistedSnapshot | None:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            log.info("no token mapping at %s; starting empty", self.path)
            return None
        except OSError as e:
            log.warning("cannot read token mapping at %s (%s); starting empty", self.path, e)
            return None

        try:
            snapshot = decode_snapshot(json.loads(data.decode("utf-8")))
        except (ValueError, TypeError, KeyError, RecursionError) as e:
            self._quarantine(e)
            return None

        log.info("loaded %d token mappings from %s", snapshot.categories.size, self.path)
        return snapshot

    def save(self, mapping: AnonymizationMapping) -> None:
        """Write ``mapping`` atomically.  Raises PersistenceError unless confirmed."""
        if self._closed:
            raise PersistenceError(f"store for {self.path} is closed")
        text = json.dumps(encode_snapshot(mapping), indent=2, ensure_ascii=False)
        future = self._writer.submit(self._write, text)
        try:
            future.result(timeout=self.save_timeout)
        except FuturesTimeout as e:
            raise PersistenceError(
                f"save to {self.path} not confirmed within {self.save_timeout}s"
            ) from e
        except OSError as e:
            raise PersistenceError(f"cannot write token mapping to {self.path}: {e}") from e
        log.debug("saved %d token mappings to %s", mapping.size, self.path)

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            if os.name != "nt":
                os.chmod(tmp, self.file_mode)
            os.replace(tmp, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise

    def _quarantine(self, error: Exception) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = self.path.with_name(f"{self.path.name}.corrupt.{stamp}")
        try:
            os.replace(self.path, target)
        except OSError as e:
            log.error("token mapping at %s is corrupt and could not be moved aside: %s", self.path, e)
            return
        log.warning(
            "token mapping at %s is corrupt (%s); moved to %s and starting empty",
            self.path, type(error).__name__, target.name,
        )

    # ------------------------------------------------------------------
    # File management
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return self.path.exists()

    def size(self) -> int:
        """Snapshot size in bytes, 0 if absent."""
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    def close(self) -> None:
        """Wait for queued saves, then stop the writer thread."""
        self._closed = True
        self._writer.shutdown(wait=True)


# ----------------------------------------------------------------------
# Serialization
# ----------------------------------------------------------------------

def encode_snapshot(mapping: AnonymizationMapping) -> dict[str, Any]:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "lastModified": datetime.now(timezone.utc).isoformat(),
        "categories": {
            c.value: {"counter": m.counter, "entries": dict(m.entries)}
            for c, m in mapping.categories.items()
        },
    }


def decode_snapshot(data: Any) -> PersistedSnapshot:
    """Build a snapshot from parsed JSON.  Raises ValueError on bad structure."""
    if not isinstance(data, dict):
        raise ValueError("snapshot root is not an object")

    if "schemaVersion" not in data:
        if not any(k in data for k in _LEGACY_KEYS):
            raise ValueError("unrecognised snapshot layout")
        return _decode_legacy(data)

    version = data["schemaVersion"]
    if not isinstance(version, int) or isinstance(version, bool):
        raise ValueError("schemaVersion is not an integer")
    if version > SCHEMA_VERSION:
        log.warning("snapshot schema %d is newer than %d; reading known fields only", version, SCHEMA_VERSION)

    categories = data["categories"]
    if not isinstance(categories, dict):
        raise ValueError("categories is not an object")

    mapping = AnonymizationMapping()
    for name, body in categories.items():
        try:
            category = PiiCategory(name)
        except ValueError:
            log.warning("ignoring unknown category %r in snapshot", name)
            continue
        if not isinstance(body, dict):
            raise ValueError(f"category {name} is not an object")
        entries = _string_map(body.get("entries", {}), name)
        counter = body.get("counter", 0)
        if not isinstance(counter, int) or isinstance(counter, bool) or counter < 0:
            raise ValueError(f"category {name} has an invalid counter")
        mapping.categories[category] = CategoryMapping(entries, max(counter, len(entries)))

    return PersistedSnapshot(version, _parse_time(data.get("lastModified")), mapping)


def _decode_legacy(data: dict[str, Any]) -> PersistedSnapshot:
    mapping = AnonymizationMapping()
    for key, category in _LEGACY_KEYS.items():
        for raw, token in _string_map(data.get(key, {}), key).items():
            target = category or _ip_category(raw)
            mapping[target].entries[raw] = token
    for cmap in mapping.categories.values():
        cmap.counter = len(cmap.entries)
    log.info("migrating unversioned token mapping to schema %d", SCHEMA_VERSION)
    return PersistedSnapshot(0, _parse_time(data.get("timestamp")), mapping)


def _string_map(value: Any, name: str) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ValueError(f"entries of {name} are not an object")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ValueError(f"entries of {name} must map strings to strings")
    return dict(value)


def _ip_category(raw: str) -> PiiCategory:
    try:
        return PiiCategory.IPV6 if ipaddress.ip_address(raw).version == 6 else PiiCategory.IPV4
    except ValueError:
        return PiiCategory.IPV6 if ":" in raw else PiiCategory.IPV4


def _parse_time(value: Any) -> datetime:
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.fromtimestamp(0, timezone.utc)
