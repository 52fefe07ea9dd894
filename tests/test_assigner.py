"""Tests for token assignment — determinism, collisions, persistence policy."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import re
import threading
import time

import pytest

from pii_anonymizer import (
    CollisionExhaustedError, MappingStore, PersistenceError, PiiCategory,
    TokenAssigner, TokenStrategy,
)


class WeakStrategy(TokenStrategy):
    """Every value hashes to the same id; suffixes are the attempt number."""
    max_attempts = 4

    def primary(self, tag, key):
        return "000000"

    def disambiguate(self, tag, key, attempt):
        return f"000000-{attempt}"


class NoRoomStrategy(WeakStrategy):
    """Disambiguation never produces anything new."""

    def disambiguate(self, tag, key, attempt):
        return "000000"


class FailingStore:
    """Store whose writes never succeed."""

    def __init__(self):
        self.saves = 0

    def load(self):
        return None

    def save(self, mapping):
        self.saves += 1
        raise PersistenceError("disk unavailable")


# ── Determinism ──────────────────────────────────────────────────────

def test_same_value_same_token():
    a = TokenAssigner()
    t1 = a.assign(PiiCategory.USERNAME, "jdoe")
    t2 = a.assign(PiiCategory.USERNAME, "jdoe")
    assert t1 == t2
    assert re.fullmatch(r"\[ANON_USER_[0-9A-F]{6}\]", t1)


def test_tokens_do_not_depend_on_call_order():
    a, b = TokenAssigner(), TokenAssigner()
    b.assign(PiiCategory.USERNAME, "someone-else")
    b.assign(PiiCategory.EMAIL, "x@example.com")
    assert a.assign(PiiCategory.USERNAME, "jdoe") == b.assign(PiiCategory.USERNAME, "jdoe")


def test_domain_segment_is_preserved():
    a = TokenAssigner()
    token = a.assign(PiiCategory.USERNAME, "CONTOSO\\jdoe")
    assert re.fullmatch(r"CONTOSO\\\[ANON_USER_[0-9A-F]{6}\]", token)
    assert a.assign(PiiCategory.USERNAME, "CONTOSO\\jdoe") == token


@pytest.mark.parametrize("category,raw,tag", [
    (PiiCategory.COMPUTER_NAME, "WS-042", "COMPUTER"),
    (PiiCategory.IPV4, "192.168.1.100", "IP"),
    (PiiCategory.IPV6, "fe80::1", "IP"),
    (PiiCategory.EMAIL, "alice@example.com", "EMAIL"),
    (PiiCategory.FILE_PATH, "jdoe", "USER"),
])
def test_token_shape_per_category(category, raw, tag):
    token = TokenAssigner().assign(category, raw)
    assert re.fullmatch(rf"\[ANON_{tag}_[0-9A-F]{{6}}\]", token)


def test_computer_names_ignore_case():
    a = TokenAssigner()
    assert a.assign(PiiCategory.COMPUTER_NAME, "ws-042") == a.assign(PiiCategory.COMPUTER_NAME, "WS-042")


def test_profile_folder_and_account_correlate():
    a = TokenAssigner()
    assert a.assign(PiiCategory.FILE_PATH, "jdoe") == a.assign(PiiCategory.USERNAME, "jdoe")


def test_non_string_value_is_rejected():
    with pytest.raises(TypeError):
        TokenAssigner().assign(PiiCategory.IPV4, 3232235876)


# ── Lookup without creating ──────────────────────────────────────────

def test_reverse_known_does_not_issue():
    a = TokenAssigner()
    assert a.reverse_known(PiiCategory.EMAIL, "a@b.com") is None
    assert a.stats["tokens"]["email"] == 0
    token = a.assign(PiiCategory.EMAIL, "a@b.com")
    assert a.reverse_known(PiiCategory.EMAIL, "a@b.com") == token


# ── Collisions ───────────────────────────────────────────────────────

def test_colliding_values_get_distinct_tokens():
    a = TokenAssigner(strategy=WeakStrategy())
    t1 = a.assign(PiiCategory.USERNAME, "alice")
    t2 = a.assign(PiiCategory.USERNAME, "bob")
    t3 = a.assign(PiiCategory.USERNAME, "carol")
    assert t1 == "[ANON_USER_000000]"
    assert len({t1, t2, t3}) == 3
    assert a.assign(PiiCategory.USERNAME, "bob") == t2
    assert a.stats["collisions"] == 2


def test_collisions_checked_across_categories_sharing_a_tag():
    a = TokenAssigner(strategy=WeakStrategy())
    user = a.assign(PiiCategory.USERNAME, "alice")
    folder = a.assign(PiiCategory.FILE_PATH, "bob")
    assert user != folder


def test_exhausted_disambiguation_is_fatal():
    a = TokenAssigner(strategy=NoRoomStrategy())
    a.assign(PiiCategory.USERNAME, "alice")
    with pytest.raises(CollisionExhaustedError) as exc:
        a.assign(PiiCategory.USERNAME, "bob")
    assert "bob" not in str(exc.value)
    assert a.reverse_known(PiiCategory.USERNAME, "bob") is None


# ── Mapping state ────────────────────────────────────────────────────

def test_lazy_load_state():
    a = TokenAssigner()
    assert a.state == "uninitialized"
    a.assign(PiiCategory.IPV4, "10.0.0.1")
    assert a.state == "ready"


def test_counter_and_snapshot_copy():
    a = TokenAssigner()
    a.assign(PiiCategory.USERNAME, "alice")
    a.assign(PiiCategory.USERNAME, "bob")
    a.assign(PiiCategory.USERNAME, "alice")
    snap = a.snapshot()
    assert snap[PiiCategory.USERNAME].counter == 2
    snap[PiiCategory.USERNAME].entries.clear()
    assert a.reverse_known(PiiCategory.USERNAME, "alice") is not None


def test_invalid_flush_policy():
    with pytest.raises(ValueError):
        TokenAssigner(flush_policy="sometimes")


def test_concurrent_assign_is_consistent():
    a = TokenAssigner(strategy=WeakStrategy())
    names = [f"user{i}" for i in range(3)]
    seen: list[dict] = []

    def worker():
        seen.append({n: a.assign(PiiCategory.USERNAME, n) for n in names})

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(s == seen[0] for s in seen)
    assert len(set(seen[0].values())) == len(names)


# ── Persistence ──────────────────────────────────────────────────────

def test_tokens_survive_restart(tmp_path):
    path = tmp_path / "mapping.json"
    first = TokenAssigner(MappingStore(path))
    token = first.assign(PiiCategory.USERNAME, "CONTOSO\\jdoe")
    first.flush()

    second = TokenAssigner(MappingStore(path))
    assert second.reverse_known(PiiCategory.USERNAME, "CONTOSO\\jdoe") == token
    assert second.assign(PiiCategory.USERNAME, "CONTOSO\\jdoe") == token


def test_disambiguated_tokens_survive_restart(tmp_path):
    path = tmp_path / "mapping.json"
    first = TokenAssigner(MappingStore(path), strategy=WeakStrategy())
    first.assign(PiiCategory.USERNAME, "alice")
    bob = first.assign(PiiCategory.USERNAME, "bob")
    first.shutdown()

    # stored tokens win over whatever the current strategy would compute
    second = TokenAssigner(MappingStore(path))
    assert second.assign(PiiCategory.USERNAME, "bob") == bob


def test_missing_snapshot_starts_empty(tmp_path):
    a = TokenAssigner(MappingStore(tmp_path / "absent.json"))
    assert a.assign(PiiCategory.IPV4, "10.0.0.1").startswith("[ANON_IP_")
    assert a.stats["tokens"]["ipv4"] == 1


def test_eager_flush_writes_each_new_token(tmp_path):
    path = tmp_path / "mapping.json"
    a = TokenAssigner(MappingStore(path), flush_policy="eager")
    token = a.assign(PiiCategory.EMAIL, "a@b.com")
    assert path.exists()
    assert TokenAssigner(MappingStore(path)).reverse_known(PiiCategory.EMAIL, "a@b.com") == token


def test_eager_flush_failure_surfaces():
    store = FailingStore()
    a = TokenAssigner(store, flush_policy="eager")
    with pytest.raises(PersistenceError):
        a.assign(PiiCategory.USERNAME, "jdoe")
    assert store.saves == 1
    assert a.dirty


def test_eager_unsaved_token_is_never_handed_out():
    store = FailingStore()
    a = TokenAssigner(store, flush_policy="eager")
    with pytest.raises(PersistenceError):
        a.assign(PiiCategory.IPV4, "10.0.0.1")
    with pytest.raises(PersistenceError):
        a.assign(PiiCategory.IPV4, "10.0.0.1")
    assert store.saves == 2
    assert a.dirty


def test_eager_retries_the_save_once_the_store_recovers(tmp_path):
    path = tmp_path / "mapping.json"
    store = MappingStore(path)
    real_save = store.save
    calls = []

    def save_once_failing(mapping):
        calls.append(mapping.size)
        if len(calls) == 1:
            raise PersistenceError("disk unavailable")
        real_save(mapping)

    store.save = save_once_failing
    a = TokenAssigner(store, flush_policy="eager")
    with pytest.raises(PersistenceError):
        a.assign(PiiCategory.IPV4, "10.0.0.1")
    token = a.assign(PiiCategory.IPV4, "10.0.0.1")
    assert calls == [1, 1]
    assert not a.dirty
    assert TokenAssigner(MappingStore(path)).reverse_known(PiiCategory.IPV4, "10.0.0.1") == token
    # saved and clean: cache hits no longer write
    a.assign(PiiCategory.IPV4, "10.0.0.1")
    assert len(calls) == 2


def test_manual_flush_failure_surfaces():
    a = TokenAssigner(FailingStore())
    a.assign(PiiCategory.USERNAME, "jdoe")
    with pytest.raises(PersistenceError):
        a.flush()


def test_interval_autosave(tmp_path):
    path = tmp_path / "mapping.json"
    a = TokenAssigner(MappingStore(path), flush_policy="interval", autosave_interval=0.05)
    a.assign(PiiCategory.IPV4, "10.0.0.1")
    deadline = time.monotonic() + 5
    while not path.exists() and time.monotonic() < deadline:
        time.sleep(0.02)
    a.shutdown()
    assert path.exists()
    assert not a.dirty


def test_flush_without_store_is_a_noop():
    a = TokenAssigner()
    a.assign(PiiCategory.IPV4, "10.0.0.1")
    a.flush()
    a.shutdown()
