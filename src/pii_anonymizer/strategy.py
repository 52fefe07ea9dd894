"""Token id derivation.

The assigner asks a strategy for an id and, if that id is already owned by
another value, for disambiguated ids until one is free.  Swapping the
strategy changes token shape without touching the assigner or the store.
Changing it for an existing snapshot is safe: stored tokens are reused as-is,
only new values get ids from the new strategy.
"""

from __future__ import annotations
import hashlib
from abc import ABC, abstractmethod


class TokenStrategy(ABC):
    """Contract for deterministic token ids."""

    #: how many disambiguated ids to try before giving up
    max_attempts: int = 16

    @abstractmethod
    def primary(self, tag: str, key: str) -> str:
        """Return the preferred id for ``key`` in the ``tag`` namespace."""

    @abstractmethod
    def disambiguate(self, tag: str, key: str, attempt: int) -> str:
        """Return the id to try on collision number ``attempt`` (1-based).

        Must be deterministic and must differ from ``primary`` and from
        every other attempt for the same key.
        """


class Sha256TokenStrategy(TokenStrategy):
    """Truncated SHA-256, upper-case hex.  ``A1B2C3`` then ``A1B2C3-9F01``."""

    def __init__(self, width: int = 6, suffix_width: int = 4, max_attempts: int = 16) -> None:
        if width < 4 or suffix_width < 2:
            raise ValueError("token ids need at least 4 hex chars plus a 2-char suffix")
        self.width = width
        self.suffix_width = suffix_width
        self.max_attempts = max_attempts

    def primary(self, tag: str, key: str) -> str:
        return _digest(tag, key)[:self.width]

    def disambiguate(self, tag: str, key: str, attempt: int) -> str:
        suffix = _digest(tag, key, str(attempt))[:self.suffix_width]
        return f"{self.primary(tag, key)}-{attempt:X}{suffix}"


def _digest(*parts: str) -> str:
    return hashlib.sha256("\0".join(parts).encode("utf-8")).hexdigest().upper()
