"""Error taxonomy.

Messages never carry raw PII: only categories, field names and paths.
"""

from __future__ import annotations


class AnonymizationError(Exception):
    """Base class for every error raised by the engine."""


class DetectionError(AnonymizationError):
    """The detector was handed something it cannot scan."""


class PersistenceError(AnonymizationError):
    """Reading or writing the mapping snapshot failed or was not confirmed."""


class CollisionExhaustedError(AnonymizationError):
    """Every disambiguation suffix for a value was already taken."""

    def __init__(self, category: str, attempts: int) -> None:
        super().__init__(
            f"no free token for a {category} value after {attempts} attempts"
        )
        self.category = category
        self.attempts = attempts


class RecordAnonymizationError(AnonymizationError):
    """A record could not be fully anonymized; nothing from it may be emitted."""

    def __init__(self, field: str, reason: str = "") -> None:
        msg = f"failed to anonymize field {field!r}"
        super().__init__(f"{msg}: {reason}" if reason else msg)
        self.field = field
