"""Optional secondary scan backed by Presidio.

The regex matchers are authoritative.  Presidio only contributes email and
IP findings the regexes missed (e.g. unusual separators), and never
overrides a span the regexes already claimed.
"""

from __future__ import annotations
import ipaddress
import logging
import threading
from typing import TYPE_CHECKING

from .types import PiiCategory, PiiMatch

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

log = logging.getLogger(__name__)

# One analyzer per language, built on first use (spaCy loads slowly)
_engines: dict[str, AnalyzerEngine] = {}
_engines_lock = threading.Lock()

# Presidio entity type → engine category (IPs are split by address family)
ENTITY_MAP = {
    "EMAIL_ADDRESS": PiiCategory.EMAIL,
    "IP_ADDRESS": None,
}


def _get_engine(language: str = "en") -> AnalyzerEngine:
    """Analyzer for ``language``; detectors on other threads share it."""
    engine = _engines.get(language)
    if engine is not None:
        return engine
    with _engines_lock:
        if language not in _engines:
            from presidio_analyzer import AnalyzerEngine
            from presidio_analyzer.nlp_engine import NlpEngineProvider

            nlp = NlpEngineProvider(nlp_configuration={
                "nlp_engine_name": "spacy",
                "models": [{"lang_code": language, "model_name": f"{language}_core_web_sm"}],
            }).create_engine()
            _engines[language] = AnalyzerEngine(nlp_engine=nlp, supported_languages=[language])
            log.info("presidio analyzer loaded for language %r", language)
        return _engines[language]


def _ip_category(value: str) -> PiiCategory | None:
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return None
    return PiiCategory.IPV6 if addr.version == 6 else PiiCategory.IPV4


def scan_presidio(
    text: str,
    *,
    language: str = "en",
    score_threshold: float = 0.5,
    exclude_spans: list[tuple[int, int]] | None = None,
) -> list[PiiMatch]:
    """Run Presidio over text and translate its findings.

    Args:
        text: Input text to scan.
        language: ISO language code.
        score_threshold: Minimum Presidio confidence.
        exclude_spans: Spans already matched by the regex layer — skip overlaps.
    """
    results = _get_engine(language).analyze(
        text=text,
        language=language,
        entities=list(ENTITY_MAP),
        score_threshold=score_threshold,
    )

    exclude = exclude_spans or []
    matches: list[PiiMatch] = []
    for r in results:
        if any(r.start < e and r.end > s for s, e in exclude):
            continue
        value = text[r.start:r.end]
        category = ENTITY_MAP.get(r.entity_type)
        if r.entity_type == "IP_ADDRESS":
            category = _ip_category(value)
        if category is None:
            continue
        matches.append(PiiMatch(category, r.start, r.end, value))

    return sorted(matches, key=lambda m: m.start)
