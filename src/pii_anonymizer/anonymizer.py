"""Anonymizer — the record-level API.

Usage:
    from pii_anonymizer import Anonymizer, FieldPolicy, MappingStore, PiiCategory, SCAN, TokenAssigner

    assigner = TokenAssigner(MappingStore("mapping.json"))   # one per process
    anonymizer = Anonymizer(assigner)

    policy = FieldPolicy({"user": PiiCategory.USERNAME, "message": SCAN})
    anonymizer.anonymize_record(
        {"user": "CONTOSO\\\\jdoe", "message": "login from 192.168.1.100", "id": 7},
        policy,
    )
    # {'user': 'CONTOSO\\\\[ANON_USER_…]', 'message': 'login from [ANON_IP_…]', 'id': 7}

Fail-closed: if any covered field cannot be anonymized the whole record is
rejected with RecordAnonymizationError.  A raw value is never returned.
"""

from __future__ import annotations
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from .assigner import TokenAssigner
from .errors import AnonymizationError, RecordAnonymizationError
from .patterns import PatternDetector
from .types import PiiCategory

log = logging.getLogger(__name__)

# Field rule: scan free text and replace every embedded match
SCAN = "scan"

Rule = Union[PiiCategory, str]
Record = Union[Mapping[str, Any], Iterable[tuple[str, Any]]]


@dataclass
class FieldPolicy:
    """How each field of a record is treated.

    ``rules`` maps a field name to a fixed PiiCategory (the whole value is
    one identity) or to SCAN.  Fields without a rule get ``default`` when
    they hold a string and are not listed in ``exempt``; with no default
    they pass through untouched.
    """
    rules: dict[str, Rule] = field(default_factory=dict)
    default: Rule | None = None
    exempt: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        self.rules = {name: _rule(r) for name, r in self.rules.items()}
        if self.default is not None:
            self.default = _rule(self.default)
        self.exempt = frozenset(self.exempt)

    def rule_for(self, name: str, value: Any) -> Rule | None:
        if name in self.rules:
            return self.rules[name]
        if self.default is None or name in self.exempt or not isinstance(value, str):
            return None
        return self.default


def _rule(rule: Rule) -> Rule:
    if rule == SCAN:
        return SCAN
    return PiiCategory(rule)


@dataclass(slots=True)
class RecordResult:
    """Outcome for one record of a batch: exactly one of the two is set."""
    record: dict[str, Any] | None = None
    error: AnonymizationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class BatchResult:
    """Per-record outcomes, in input order.  Shorter than the input if cancelled."""
    results: list[RecordResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def records(self) -> list[dict[str, Any]]:
        return [r.record for r in self.results if r.ok]

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


class Anonymizer:
    """Applies field policies to records through a shared TokenAssigner.

    The assigner is injected, never created here: every producer that
    should correlate identities must be handed the same instance.
    """

    def __init__(self, assigner: TokenAssigner, detector: PatternDetector | None = None) -> None:
        self.assigner = assigner
        self.detector = detector or PatternDetector()

    def anonymize_text(self, text: str) -> str:
        """Replace every detected identity in free text; keep the rest as-is."""
        result = text
        # right-to-left so earlier offsets stay valid
        for match in sorted(self.detector.detect(text), key=lambda m: m.start, reverse=True):
            token = self.assigner.assign(match.category, match.text)
            result = result[:match.start] + token + result[match.end:]
        return result

    def anonymize_value(self, category: PiiCategory, value: str) -> str:
        """Token for a value that is entirely one identity (surrounding blanks dropped)."""
        stripped = value.strip()
        if not stripped:
            return value
        return self.assigner.assign(category, stripped)

    def anonymize_record(self, record: Record, policy: FieldPolicy) -> dict[str, Any]:
        """Return a new record with every policy-covered field anonymized.

        Does NOT mutate the input.  Raises RecordAnonymizationError naming
        the first field that failed; nothing from the record is returned.
        """
        items = record.items() if isinstance(record, Mapping) else record
        out: dict[str, Any] = {}
        for name, value in items:
            rule = policy.rule_for(name, value)
            if rule is None or value is None:
                out[name] = value
                continue
            try:
                out[name] = self._apply(rule, value)
            except Exception as e:
                raise RecordAnonymizationError(name, type(e).__name__) from e
        return out

    def _apply(self, rule: Rule, value: Any) -> str:
        if not isinstance(value, str):
            raise TypeError(f"expected str, got {type(value).__name__}")
        if rule == SCAN:
            return self.anonymize_text(value)
        return self.anonymize_value(rule, value)

    def anonymize_records(
        self,
        records: Iterable[Record],
        policy: FieldPolicy,
        *,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Anonymize records one by one.  Not a transaction.

        A failed record is reported in its slot and the batch carries on.
        ``cancel_event`` is checked between records, never mid-record.
        """
        batch = BatchResult()
        for index, record in enumerate(records):
            if cancel_event is not None and cancel_event.is_set():
                batch.cancelled = True
                log.info("anonymization batch cancelled after %d record(s)", index)
                break
            try:
                batch.results.append(RecordResult(record=self.anonymize_record(record, policy)))
            except RecordAnonymizationError as e:
                log.warning("record %d withheld: %s", index, e)
                batch.results.append(RecordResult(error=e))
        return batch

    # ------------------------------------------------------------------
    # Lifecycle passthroughs
    # ------------------------------------------------------------------

    def flush(self) -> None:
        self.assigner.flush()

    def shutdown(self) -> None:
        self.assigner.shutdown()

    @property
    def stats(self) -> dict:
        return self.assigner.stats
