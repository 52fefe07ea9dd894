"""Token assigner — the single in-memory owner of the raw → token mapping.

Design goals:
  - Deterministic: tokens come from hashing, not from call order, so the
    same value gets the same token in every process that shares a snapshot
  - Injective: two different values never share a token within a namespace,
    even when their truncated hashes collide
  - Append-only: once issued, a token stays bound to its value

One instance is built at startup and handed to every record producer;
sharing it is what makes tokens correlate across producers.

Usage:
    store = MappingStore("~/.pii-anonymizer/mapping.json")
    assigner = TokenAssigner(store)

    assigner.assign(PiiCategory.USERNAME, "CONTOSO\\\\jdoe")
    # 'CONTOSO\\\\[ANON_USER_5F3A1C]'

    assigner.shutdown()   # last call before exit: persists the mapping
"""

from __future__ import annotations
import logging
import threading
from typing import TYPE_CHECKING

from .errors import CollisionExhaustedError, PersistenceError
from .strategy import Sha256TokenStrategy, TokenStrategy
from .types import AnonymizationMapping, PiiCategory

if TYPE_CHECKING:
    from .store import MappingStore

log = logging.getLogger(__name__)

_TOKEN_FMT = "[ANON_{tag}_{id}]"

FLUSH_POLICIES = ("manual", "eager", "interval")


def identity_key(category: PiiCategory, raw: str) -> str:
    """Normalise a raw value to the key it is stored under."""
    if category is PiiCategory.COMPUTER_NAME:
        # host names are case-insensitive
        return raw.upper()
    return raw


class TokenAssigner:
    """Hash-based raw value ↔ token assignment with collision resolution."""

    def __init__(
        self,
        store: MappingStore | None = None,
        *,
        strategy: TokenStrategy | None = None,
        flush_policy: str = "manual",
        autosave_interval: float = 30.0,
    ) -> None:
        if flush_policy not in FLUSH_POLICIES:
            raise ValueError(f"flush_policy must be one of {FLUSH_POLICIES}, got {flush_policy!r}")
        self._store = store
        self._strategy = strategy or Sha256TokenStrategy()
        self._flush_policy = flush_policy
        self._autosave_interval = autosave_interval

        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._mapping: AnonymizationMapping | None = None   # None until loaded
        self._owners: dict[str, str] = {}                    # token → "TAG\0key"
        self._dirty = False
        self._collisions = 0

        self._stop = threading.Event()
        self._autosave: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        return "uninitialized" if self._mapping is None else "ready"

    def load(self) -> None:
        """Load the persisted mapping (or start empty).  Idempotent."""
        with self._lock:
            if self._mapping is not None:
                return
            loaded = self._store.load() if self._store is not None else None
            mapping = loaded or AnonymizationMapping()
            self._owners = _index_owners(mapping)
            self._mapping = mapping
            log.info("token mapping ready with %d entries", mapping.size)

        if self._flush_policy == "interval" and self._store is not None:
            self._start_autosave()

    def _ready(self) -> AnonymizationMapping:
        if self._mapping is None:
            self.load()
        return self._mapping

    def flush(self) -> None:
        """Persist the current mapping.  Raises PersistenceError if not confirmed."""
        if self._store is None:
            return
        with self._flush_lock:
            with self._lock:
                mapping = self._ready().copy()
                self._dirty = False
            try:
                self._store.save(mapping)
            except PersistenceError:
                with self._lock:
                    self._dirty = True
                raise

    def shutdown(self) -> None:
        """Stop the autosave thread and flush.  Meant to be the last call."""
        self._stop.set()
        if self._autosave is not None:
            self._autosave.join(timeout=self._autosave_interval + 1)
            self._autosave = None
        if self._mapping is not None:
            self.flush()

    def _start_autosave(self) -> None:
        if self._autosave is not None:
            return
        self._autosave = threading.Thread(
            target=self._autosave_loop, name="pii-anonymizer-autosave", daemon=True
        )
        self._autosave.start()

    def _autosave_loop(self) -> None:
        while not self._stop.wait(self._autosave_interval):
            if not self._dirty:
                continue
            try:
                self.flush()
            except PersistenceError as e:
                # stays dirty; retried on the next tick
                log.warning("periodic save of token mapping failed: %s", e)

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def assign(self, category: PiiCategory, raw: str) -> str:
        """Return the token for ``raw``, issuing one if it is new."""
        category = PiiCategory(category)
        if not isinstance(raw, str):
            raise TypeError(f"{category.value} values must be str, got {type(raw).__name__}")
        key = identity_key(category, raw)
        with self._lock:
            entries = self._ready()[category].entries
            token = entries.get(key)
            if token is None:
                token = self._issue(category, key)
                entries[key] = token
                self._mapping[category].counter += 1
                self._owners[token] = _owner(category, key)
                self._dirty = True
            unsaved = self._dirty

        # eager: no token leaves this method until the mapping holding it is saved
        if unsaved and self._flush_policy == "eager":
            self.flush()
        return token

    def reverse_known(self, category: PiiCategory, raw: str) -> str | None:
        """Look up the token for ``raw`` without issuing one."""
        category = PiiCategory(category)
        with self._lock:
            return self._ready()[category].entries.get(identity_key(category, raw))

    def _issue(self, category: PiiCategory, key: str) -> str:
        tag = category.tag
        owner = _owner(category, key)
        token = self._format(category, key, self._strategy.primary(tag, key))
        if self._owners.get(token, owner) == owner:
            return token

        for attempt in range(1, self._strategy.max_attempts + 1):
            token = self._format(category, key, self._strategy.disambiguate(tag, key, attempt))
            if self._owners.get(token, owner) == owner:
                self._collisions += 1
                log.warning("token collision in %s namespace resolved after %d attempt(s)", tag, attempt)
                return token

        log.critical(
            "token space exhausted for a %s value after %d attempts; "
            "the token strategy is too narrow for this data set",
            category.value, self._strategy.max_attempts,
        )
        raise CollisionExhaustedError(category.value, self._strategy.max_attempts)

    @staticmethod
    def _format(category: PiiCategory, key: str, token_id: str) -> str:
        token = _TOKEN_FMT.format(tag=category.tag, id=token_id)
        if category is PiiCategory.USERNAME and "\\" in key:
            # DOMAIN\name keeps its domain; only the account is pseudonymised
            domain = key.split("\\", 1)[0]
            return f"{domain}\\{token}"
        return token

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self) -> AnonymizationMapping:
        """Return a copy of the mapping; the live one is never handed out."""
        with self._lock:
            return self._ready().copy()

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def stats(self) -> dict:
        with self._lock:
            mapping = self._mapping
            return {
                "state": self.state,
                "collisions": self._collisions,
                "tokens": {
                    c.value: (len(mapping[c].entries) if mapping else 0) for c in PiiCategory
                },
            }


def _owner(category: PiiCategory, key: str) -> str:
    return f"{category.tag}\0{key}"


def _index_owners(mapping: AnonymizationMapping) -> dict[str, str]:
    owners: dict[str, str] = {}
    for category, cmap in mapping.categories.items():
        for key, token in cmap.entries.items():
            owner = _owner(category, key)
            if owners.setdefault(token, owner) != owner:
                log.warning("snapshot binds one %s token to two values; keeping the first", category.tag)
    return owners
