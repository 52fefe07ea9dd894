"""YAML/dict config loader for pii-anonymizer.

Supports loading from a YAML file or a plain dict (for embedding in a
larger service config).

Example YAML:

    pii_anonymizer:
      enabled: true
      flush_policy: interval     # "manual", "eager" or "interval"
      autosave_interval: 30
      known_accounts:
        - jdoe
        - svc-backup
      known_hosts:
        - WS-042
      include_local_hostname: true
      use_presidio: false
      store:
        path: ~/.pii-anonymizer/mapping.json
        save_timeout: 5

The store path falls back to $PII_ANONYMIZER_STORE, then to
~/.pii-anonymizer/mapping.json.
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Any

from .anonymizer import Anonymizer, BatchResult, FieldPolicy, RecordResult
from .assigner import TokenAssigner
from .patterns import PatternDetector
from .store import MappingStore

STORE_ENV = "PII_ANONYMIZER_STORE"
DEFAULT_STORE = str(Path.home() / ".pii-anonymizer" / "mapping.json")


def default_store_path() -> str:
    """$PII_ANONYMIZER_STORE as set right now, else DEFAULT_STORE."""
    return os.environ.get(STORE_ENV) or DEFAULT_STORE


class _PassthroughAnonymizer:
    """Stand-in when anonymization is disabled: the engine is bypassed entirely.

    Nothing is detected, no token is issued and the mapping is never loaded.
    """
    def anonymize_text(self, text: str) -> str:
        return text
    def anonymize_value(self, category, value: str) -> str:
        return value
    def anonymize_record(self, record, policy: FieldPolicy) -> dict[str, Any]:
        return dict(record.items() if hasattr(record, "items") else record)
    def anonymize_records(self, records, policy: FieldPolicy, *, cancel_event=None) -> BatchResult:
        batch = BatchResult()
        for record in records:
            if cancel_event is not None and cancel_event.is_set():
                batch.cancelled = True
                break
            batch.results.append(RecordResult(record=self.anonymize_record(record, policy)))
        return batch
    def flush(self) -> None:
        pass
    def shutdown(self) -> None:
        pass
    @property
    def stats(self) -> dict:
        return {"state": "disabled", "collisions": 0, "tokens": {}}


def load_config(data: dict[str, Any]) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline)."""
    # Support nested under "pii_anonymizer" key or flat
    if "pii_anonymizer" in data:
        data = data["pii_anonymizer"] or {}

    store = data.get("store") or {}
    return {
        "enabled": bool(data.get("enabled", True)),
        "store_path": store.get("path") or default_store_path(),
        "save_timeout": float(store.get("save_timeout", 5.0)),
        "flush_policy": data.get("flush_policy", "manual"),
        "autosave_interval": float(data.get("autosave_interval", 30.0)),
        "known_accounts": list(data.get("known_accounts") or []),
        "known_hosts": list(data.get("known_hosts") or []),
        "include_local_hostname": bool(data.get("include_local_hostname", True)),
        "use_presidio": bool(data.get("use_presidio", False)),
        "language": data.get("language", "en"),
    }


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    import yaml
    with open(path, encoding="utf-8") as f:
        return load_config(yaml.safe_load(f) or {})


def create_anonymizer(config: dict[str, Any]) -> Anonymizer | _PassthroughAnonymizer:
    """Build the process-wide engine from a config dict.

    Call once at startup and pass the result to every record producer.
    """
    cfg = load_config(config) if "store_path" not in config else config

    if not cfg["enabled"]:
        return _PassthroughAnonymizer()

    store = MappingStore(cfg["store_path"], save_timeout=cfg["save_timeout"])
    assigner = TokenAssigner(
        store,
        flush_policy=cfg["flush_policy"],
        autosave_interval=cfg["autosave_interval"],
    )
    detector = PatternDetector(
        cfg["known_accounts"],
        cfg["known_hosts"],
        include_local_hostname=cfg["include_local_hostname"],
        use_presidio=cfg["use_presidio"],
        language=cfg["language"],
    )
    return Anonymizer(assigner, detector)
