"""PII Anonymizer — stable pseudonymous tokens for identities in records and log text."""

from .anonymizer import Anonymizer, FieldPolicy, RecordResult, BatchResult, SCAN
from .assigner import TokenAssigner
from .store import MappingStore
from .strategy import TokenStrategy, Sha256TokenStrategy
from .patterns import PatternDetector, detect
from .policies import EVENTLOG_POLICY, FILESEARCH_POLICY
from .config import create_anonymizer, load_config, load_from_yaml
from .errors import (
    AnonymizationError, DetectionError, PersistenceError,
    CollisionExhaustedError, RecordAnonymizationError,
)
from .types import PiiCategory, PiiMatch, AnonymizationMapping, CategoryMapping, PersistedSnapshot

__all__ = [
    "Anonymizer", "FieldPolicy", "RecordResult", "BatchResult", "SCAN",
    "TokenAssigner",
    "MappingStore",
    "TokenStrategy", "Sha256TokenStrategy",
    "PatternDetector", "detect",
    "EVENTLOG_POLICY", "FILESEARCH_POLICY",
    "create_anonymizer", "load_config", "load_from_yaml",
    "AnonymizationError", "DetectionError", "PersistenceError",
    "CollisionExhaustedError", "RecordAnonymizationError",
    "PiiCategory", "PiiMatch", "AnonymizationMapping", "CategoryMapping", "PersistedSnapshot",
]
__version__ = "0.1.0"
