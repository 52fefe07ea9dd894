"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PiiCategory(str, Enum):
    """Kinds of identity the engine recognises."""

    USERNAME = "username"
    COMPUTER_NAME = "computer_name"
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    EMAIL = "email"
    FILE_PATH = "file_path"

    @property
    def tag(self) -> str:
        """Label used inside tokens, e.g. ``USER`` in ``[ANON_USER_1A2B3C]``."""
        return _TAGS[self]


_TAGS = {
    PiiCategory.USERNAME: "USER",
    PiiCategory.COMPUTER_NAME: "COMPUTER",
    PiiCategory.IPV4: "IP",
    PiiCategory.IPV6: "IP",
    PiiCategory.EMAIL: "EMAIL",
    # profile folders are account names, so they share the USER namespace
    PiiCategory.FILE_PATH: "USER",
}


@dataclass(frozen=True, slots=True)
class PiiMatch:
    """A single detected PII occurrence inside a larger string."""
    category: PiiCategory
    start: int
    end: int
    text: str


@dataclass(slots=True)
class CategoryMapping:
    """Raw value → token for one category, plus the issued-token counter."""
    entries: dict[str, str] = field(default_factory=dict)
    counter: int = 0


@dataclass(slots=True)
class AnonymizationMapping:
    """Everything the engine must remember to keep tokens stable.

    Append-only: entries are added, never removed or renumbered.
    """
    categories: dict[PiiCategory, CategoryMapping] = field(
        default_factory=lambda: {c: CategoryMapping() for c in PiiCategory}
    )

    def __getitem__(self, category: PiiCategory) -> CategoryMapping:
        return self.categories[category]

    def copy(self) -> AnonymizationMapping:
        return AnonymizationMapping({
            c: CategoryMapping(dict(m.entries), m.counter)
            for c, m in self.categories.items()
        })

    @property
    def size(self) -> int:
        return sum(len(m.entries) for m in self.categories.values())


@dataclass(slots=True)
class PersistedSnapshot:
    """On-disk form of a mapping."""
    schema_version: int
    last_modified: datetime
    categories: AnonymizationMapping
