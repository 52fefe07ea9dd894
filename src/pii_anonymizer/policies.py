"""Field policies for the record producers that feed the engine.

Both producers must anonymize through the same Anonymizer so that, e.g.,
the account in an event log ``userId`` and the profile folder in a file
search ``path`` come out as the same ``[ANON_USER_…]`` token.
"""

from __future__ import annotations

from .anonymizer import SCAN, FieldPolicy
from .types import PiiCategory

# Enum values, metadata and identifiers: never identity-bearing
EVENTLOG_SAFE_FIELDS = frozenset({
    "logName",
    "levelDisplayName",
    "level",
    "providerName",
    "source",
    "eventId",
    "id",
    "timeCreated",
    "timestamp",
})

# Windows event log entries: known identity columns plus a free-text scan
# of every other string field.
EVENTLOG_POLICY = FieldPolicy(
    rules={
        "userId": PiiCategory.USERNAME,
        "computerName": PiiCategory.COMPUTER_NAME,
        "message": SCAN,
    },
    default=SCAN,
    exempt=EVENTLOG_SAFE_FIELDS,
)

# File search hits: profile segments in paths, document authors.
FILESEARCH_POLICY = FieldPolicy(
    rules={
        "path": SCAN,
        "author": PiiCategory.USERNAME,
    },
)
