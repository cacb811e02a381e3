"""Tests for sync state persistence and FileState construction.

Covers:
- Load returns empty state when file is missing or corrupt
- Save creates the directory and writes camelCase JSON atomically
- Save/load round-trip preserves baselines
- Per-sync locks
- hash_file_content / build_file_state / build_remote_file_state
- FileState comparison with and without hashes
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path

from lsvault_sync.sync.models import EPOCH, FileState, SyncState
from lsvault_sync.sync.state import (
    StateStore,
    build_file_state,
    build_remote_file_state,
    build_written_file_state,
    has_file_changed,
    hash_file_content,
    snapshot_file,
)

# ---------------------------------------------------------------------------
# Load / Save
# ---------------------------------------------------------------------------


class TestStateStoreLoad:
    """Tests for StateStore.load()."""

    def test_load_returns_empty_state_when_file_missing(
        self, tmp_path: Path
    ):
        store = StateStore(tmp_path / "nonexistent")
        state = store.load("abc")
        assert state.sync_id == "abc"
        assert state.local == {}
        assert state.remote == {}
        assert state.updated_at == EPOCH.isoformat()

    def test_corrupt_json_loads_as_empty(self, tmp_path: Path, caplog):
        (tmp_path / "abc.json").write_text("{not json", encoding="utf-8")
        store = StateStore(tmp_path)
        with caplog.at_level(logging.WARNING):
            state = store.load("abc")
        assert state.local == {}
        assert "corrupt" in caplog.text

    def test_invalid_shape_loads_as_empty(self, tmp_path: Path):
        (tmp_path / "abc.json").write_text(
            json.dumps({"syncId": "abc", "local": ["not", "a", "map"]}),
            encoding="utf-8",
        )
        state = StateStore(tmp_path).load("abc")
        assert state.local == {}
        assert state.sync_id == "abc"


class TestStateStoreSave:
    """Tests for StateStore.save()."""

    def test_save_creates_state_dir_if_needed(self, tmp_path: Path):
        state_dir = tmp_path / "nested" / "deep"
        store = StateStore(state_dir)
        store.save(SyncState(sync_id="x"))
        assert (state_dir / "x.json").is_file()

    def test_save_stamps_updated_at(self, tmp_path: Path):
        store = StateStore(tmp_path)
        state = SyncState(sync_id="ts")
        store.save(state)
        assert state.updated_at != EPOCH.isoformat()
        assert "T" in state.updated_at

    def test_save_writes_camel_case_keys(self, tmp_path: Path):
        store = StateStore(tmp_path)
        store.save(SyncState(sync_id="cc"))
        data = json.loads((tmp_path / "cc.json").read_text())
        assert set(data) == {"syncId", "local", "remote", "updatedAt"}

    def test_save_leaves_no_temp_files(self, tmp_path: Path):
        store = StateStore(tmp_path)
        store.save(SyncState(sync_id="t"))
        store.save(SyncState(sync_id="t"))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["t.json"]

    def test_round_trip_preserves_baselines(self, tmp_path: Path):
        store = StateStore(tmp_path)
        local = FileState(
            path="a.md", hash="h1", mtime="2026-01-01T00:00:00+00:00", size=3
        )
        remote = FileState(
            path="a.md", hash="h1", mtime="2026-01-02T00:00:00+00:00", size=3
        )
        state = SyncState(sync_id="rt")
        state.record("a.md", local, remote)
        store.save(state)

        loaded = store.load("rt")
        assert loaded.local == {"a.md": local}
        assert loaded.remote == {"a.md": remote}
        assert loaded.updated_at == state.updated_at


class TestStateStoreMisc:
    """delete() and lock()."""

    def test_delete(self, tmp_path: Path):
        store = StateStore(tmp_path)
        store.save(SyncState(sync_id="d"))
        assert store.delete("d") is True
        assert store.delete("d") is False

    def test_lock_is_per_sync(self, tmp_path: Path):
        store = StateStore(tmp_path)
        assert store.lock("a") is store.lock("a")
        assert store.lock("a") is not store.lock("b")

    def test_lock_is_reentrant(self, tmp_path: Path):
        store = StateStore(tmp_path)
        with store.lock("a"):
            with store.lock("a"):
                pass


# ---------------------------------------------------------------------------
# FileState helpers
# ---------------------------------------------------------------------------


class TestHashing:
    """Tests for hash_file_content()."""

    def test_str_and_bytes_hash_identically(self):
        assert hash_file_content("héllo") == hash_file_content(
            "héllo".encode("utf-8")
        )

    def test_known_digest(self):
        assert hash_file_content(b"") == hashlib.sha256(b"").hexdigest()

    def test_different_content_different_hash(self):
        assert hash_file_content("a") != hash_file_content("b")


class TestBuildFileState:
    """Tests for build_file_state() and build_remote_file_state()."""

    def test_local_state_from_disk(self, tmp_path: Path):
        f = tmp_path / "a.md"
        f.write_bytes(b"# Title\n")
        state = build_file_state(f, "a.md")
        assert state.path == "a.md"
        assert state.size == 8
        assert state.hash == hash_file_content(b"# Title\n")
        assert state.modified_at is not None
        assert state.mtime.endswith("+00:00")

    def test_remote_state_counts_utf8_bytes(self):
        state = build_remote_file_state("é.md", "é", "2026-01-01T00:00:00Z")
        assert state.size == 2
        assert state.mtime == "2026-01-01T00:00:00Z"
        assert state.hash == hash_file_content("é")

    def test_local_and_remote_hash_agree_for_same_content(
        self, tmp_path: Path
    ):
        f = tmp_path / "a.md"
        f.write_text("same\n", encoding="utf-8")
        local = build_file_state(f, "a.md")
        remote = build_remote_file_state("a.md", "same\n", "x")
        assert local.hash == remote.hash

    def test_snapshot_returns_bytes_and_matching_state(
        self, tmp_path: Path
    ):
        f = tmp_path / "a.md"
        f.write_bytes(b"\xff\xferaw")
        raw, state = snapshot_file(f, "a.md")
        assert raw == b"\xff\xferaw"
        assert state.hash == hash_file_content(raw)
        assert state.size == 5

    def test_written_state_describes_content(self):
        state = build_written_file_state("a.md", "é")
        assert state.hash == hash_file_content("é")
        assert state.size == 2
        assert state.modified_at is not None


class TestFileStateComparison:
    """FileState.same_content() and has_file_changed()."""

    def test_empty_hash_is_missing(self):
        state = FileState(path="a.md", hash="", mtime="x")
        assert state.hash is None
        assert not state.has_hash

    def test_hashes_decide_when_both_present(self):
        a = FileState(path="a.md", hash="h", mtime="2026-01-01T00:00:00Z")
        b = FileState(path="a.md", hash="h", mtime="2030-01-01T00:00:00Z")
        assert a.same_content(b)
        assert not has_file_changed(a, b)

    def test_fallback_compares_instants_and_size(self):
        a = FileState(path="a.md", mtime="2026-01-01T00:00:00Z", size=4)
        b = FileState(
            path="a.md", hash="h", mtime="2026-01-01T00:00:00+00:00", size=4
        )
        assert a.same_content(b)

    def test_fallback_detects_size_change(self):
        a = FileState(path="a.md", mtime="2026-01-01T00:00:00Z", size=4)
        b = FileState(path="a.md", mtime="2026-01-01T00:00:00Z", size=5)
        assert has_file_changed(a, b)

    def test_fallback_detects_mtime_change(self):
        a = FileState(path="a.md", mtime="2026-01-01T00:00:00Z", size=4)
        b = FileState(path="a.md", mtime="2026-01-01T00:00:01Z", size=4)
        assert has_file_changed(a, b)
