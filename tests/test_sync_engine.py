"""Tests for the sync executor and the SyncEngine facade.

Runs against the in-memory FakeVaultClient and a real temp directory,
so every scenario exercises scanning, diffing, transfer and baseline
persistence end to end.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import FakeVaultClient, write_doc

from lsvault_sync.config_schema import EPOCH_ISO, SyncConfig, SyncMode
from lsvault_sync.core.client import VaultAPIError
from lsvault_sync.sync.engine import (
    PullHandler,
    PushHandler,
    SyncEngine,
    TransferOutcome,
    reconciled_states,
)
from lsvault_sync.sync.models import (
    FileState,
    SyncAction,
    SyncDiffEntry,
    SyncDirection,
    SyncPhase,
)
from lsvault_sync.sync.state import hash_file_content


@pytest.fixture
def make_engine(state_store, config_store, no_sleep_retry):
    def _make(client, config):
        return SyncEngine(
            client, config, state_store, config_store, retry=no_sleep_retry
        )

    return _make


def _entry(path, direction=SyncDirection.UPLOAD, action=SyncAction.CREATE):
    return SyncDiffEntry(path=path, action=action, direction=direction)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestPullHandler:
    def test_transfer_writes_file_and_reports_server_mtime(
        self, sync_config, sync_root, no_sleep_retry
    ):
        client = FakeVaultClient({"sub/a.md": "remote body"})
        written = []
        handler = PullHandler(
            client, sync_config, no_sleep_retry, written.append
        )
        outcome = handler.transfer(_entry("sub/a.md", SyncDirection.DOWNLOAD))
        assert (sync_root / "sub" / "a.md").read_text() == "remote body"
        assert outcome.content == "remote body"
        assert outcome.remote_mtime == client.docs["sub/a.md"][1]
        assert outcome.local.hash == hash_file_content("remote body")
        assert written == ["sub/a.md"]

    def test_transfer_rejects_paths_outside_root(
        self, sync_config, no_sleep_retry
    ):
        client = FakeVaultClient({"../evil.md": "x"})
        handler = PullHandler(client, sync_config, no_sleep_retry)
        with pytest.raises(ValueError, match="escapes"):
            handler.transfer(_entry("../evil.md", SyncDirection.DOWNLOAD))

    def test_delete_removes_local_file(self, sync_config, sync_root):
        write_doc(sync_root, "a.md", "x")
        handler = PullHandler(FakeVaultClient(), sync_config)
        handler.delete(_entry("a.md", action=SyncAction.DELETE))
        assert not (sync_root / "a.md").exists()


class TestPushHandler:
    def test_transfer_uploads_file_content(
        self, sync_config, sync_root, no_sleep_retry
    ):
        write_doc(sync_root, "a.md", "local body")
        client = FakeVaultClient()
        outcome = PushHandler(client, sync_config, no_sleep_retry).transfer(
            _entry("a.md")
        )
        assert client.content("a.md") == "local body"
        assert outcome.remote_mtime == client.docs["a.md"][1]

    def test_delete_calls_remote(self, sync_config, no_sleep_retry):
        client = FakeVaultClient({"a.md": "x"})
        PushHandler(client, sync_config, no_sleep_retry).delete(
            _entry("a.md", action=SyncAction.DELETE)
        )
        assert "a.md" not in client.docs


def test_reconciled_states_use_transferred_local_state(sync_root):
    # The file on disk has moved on since the transfer.
    write_doc(sync_root, "a.md", "edited later")
    sent = FileState(
        path="a.md",
        hash=hash_file_content("body"),
        mtime="2026-01-01T00:00:00+00:00",
        size=4,
    )
    local, remote = reconciled_states(
        "a.md", TransferOutcome("body", "2026-01-01T00:00:05Z", sent)
    )
    assert local == sent
    assert remote.hash == hash_file_content("body")
    assert remote.mtime == "2026-01-01T00:00:05Z"


def test_reconciled_states_describe_content_without_local_state():
    local, remote = reconciled_states("gone.md", TransferOutcome("body"))
    assert local.hash == remote.hash == hash_file_content("body")
    assert local.size == remote.size == 4


# ---------------------------------------------------------------------------
# Pull / push
# ---------------------------------------------------------------------------


class TestPull:
    def test_pull_downloads_and_is_idempotent(
        self, make_engine, sync_config, sync_root, state_store
    ):
        client = FakeVaultClient({"a.md": "A", "dir/b.md": "BB"})
        engine = make_engine(client, sync_config)

        result = engine.pull()
        assert result.files_downloaded == 2
        assert result.bytes_transferred == 3
        assert (sync_root / "dir" / "b.md").read_text() == "BB"

        state = state_store.load(sync_config.id)
        assert sorted(state.local) == ["a.md", "dir/b.md"]
        assert state.remote["a.md"].mtime == client.docs["a.md"][1]

        client.calls.clear()
        again = engine.pull()
        assert again.total_files == 0
        assert client.ops("get") == []

    def test_pull_propagates_remote_delete(
        self, make_engine, sync_config, sync_root, state_store
    ):
        client = FakeVaultClient({"a.md": "A"})
        engine = make_engine(client, sync_config)
        engine.pull()

        del client.docs["a.md"]
        result = engine.pull()
        assert result.files_deleted == 1
        assert not (sync_root / "a.md").exists()
        assert "a.md" not in state_store.load(sync_config.id).local

    def test_pull_never_deletes_local_only_files(
        self, make_engine, sync_config, sync_root
    ):
        write_doc(sync_root, "mine.md", "local only")
        result = make_engine(FakeVaultClient(), sync_config).pull()
        assert result.total_files == 0
        assert (sync_root / "mine.md").exists()

    def test_plan_pull_does_not_touch_anything(
        self, make_engine, sync_config, sync_root, state_store
    ):
        client = FakeVaultClient({"a.md": "A"})
        diff = make_engine(client, sync_config).plan_pull()
        assert [e.path for e in diff.downloads] == ["a.md"]
        assert not (sync_root / "a.md").exists()
        assert not (state_store.state_dir / f"{sync_config.id}.json").exists()


class TestPush:
    def test_push_uploads_and_is_idempotent(
        self, make_engine, sync_config, sync_root
    ):
        write_doc(sync_root, "a.md", "A")
        write_doc(sync_root, "notes/b.md", "B")
        client = FakeVaultClient()
        engine = make_engine(client, sync_config)

        result = engine.push()
        assert result.files_uploaded == 2
        assert client.content("notes/b.md") == "B"

        client.calls.clear()
        assert engine.push().total_files == 0
        assert client.ops("put") == []

    def test_edit_during_upload_is_pushed_next_time(
        self, make_engine, sync_config, sync_root, state_store
    ):
        write_doc(sync_root, "a.md", "first")

        class EditingClient(FakeVaultClient):
            def put_document(self, vault_id, path, content):
                ack = super().put_document(vault_id, path, content)
                if len(self.ops("put")) == 1:
                    write_doc(sync_root, path, "edited during upload")
                return ack

        client = EditingClient()
        engine = make_engine(client, sync_config)
        engine.push()

        state = state_store.load(sync_config.id)
        assert state.local["a.md"].hash == hash_file_content("first")
        assert [e.path for e in engine.plan_push().uploads] == ["a.md"]

        engine.push()
        assert client.content("a.md") == "edited during upload"

    def test_push_propagates_local_delete(
        self, make_engine, sync_config, sync_root
    ):
        write_doc(sync_root, "a.md", "A")
        client = FakeVaultClient()
        engine = make_engine(client, sync_config)
        engine.push()

        (sync_root / "a.md").unlink()
        result = engine.push()
        assert result.files_deleted == 1
        assert client.docs == {}

    def test_push_continues_after_transient_failure(
        self, make_engine, sync_config, sync_root, state_store
    ):
        write_doc(sync_root, "a.md", "A")
        write_doc(sync_root, "b.md", "B")
        client = FakeVaultClient()
        client.failures["a.md"] = VaultAPIError("500 Internal Server Error")

        result = make_engine(client, sync_config).push()
        assert result.files_uploaded == 1
        assert [e.path for e in result.errors] == ["a.md"]
        assert not result.aborted
        # Retried before giving up.
        assert client.ops("put").count("a.md") == 4
        state = state_store.load(sync_config.id)
        assert sorted(state.local) == ["b.md"]

    def test_quota_error_aborts_batch(
        self, make_engine, sync_config, sync_root
    ):
        write_doc(sync_root, "a.md", "A")
        write_doc(sync_root, "b.md", "B")
        client = FakeVaultClient()
        client.failures["a.md"] = VaultAPIError(
            "402 Payment Required: Storage quota exceeded", 402
        )

        result = make_engine(client, sync_config).push()
        assert result.aborted
        assert result.files_uploaded == 0
        assert len(result.errors) == 1
        assert client.ops("put") == ["a.md"]

    def test_state_saved_and_last_sync_updated_once(
        self,
        make_engine,
        sync_config,
        sync_root,
        state_store,
        config_store,
    ):
        write_doc(sync_root, "a.md", "A")
        write_doc(sync_root, "b.md", "B")
        client = FakeVaultClient()
        client.failures["b.md"] = VaultAPIError("403 Forbidden", 403)
        state_store.save = MagicMock(wraps=state_store.save)
        config_store.update_last_sync = MagicMock(
            wraps=config_store.update_last_sync
        )

        result = make_engine(client, sync_config).push()
        assert result.files_uploaded == 1
        assert state_store.save.call_count == 1
        config_store.update_last_sync.assert_called_once_with(
            sync_config.id
        )
        assert config_store.get(sync_config.id).last_sync_at != EPOCH_ISO

    def test_unregistered_config_still_completes(
        self, state_store, config_store, sync_root, no_sleep_retry
    ):
        write_doc(sync_root, "a.md", "A")
        config = SyncConfig(
            id="ghost", vault_id="v", local_path=str(sync_root)
        )
        engine = SyncEngine(
            FakeVaultClient(),
            config,
            state_store,
            config_store,
            retry=no_sleep_retry,
        )
        assert engine.push().files_uploaded == 1


class TestProgress:
    def test_phases_reported_in_order(
        self, make_engine, sync_config, sync_root
    ):
        write_doc(sync_root, "a.md", "A")
        seen = []
        make_engine(FakeVaultClient(), sync_config).push(seen.append)
        assert [p.phase for p in seen] == [
            SyncPhase.SCANNING,
            SyncPhase.COMPUTING,
            SyncPhase.TRANSFERRING,
            SyncPhase.COMPLETE,
        ]
        assert seen[2].current_file == "a.md"
        assert seen[-1].current == seen[-1].total == 1

    def test_failing_callback_does_not_fail_sync(
        self, make_engine, sync_config, sync_root
    ):
        write_doc(sync_root, "a.md", "A")
        callback = MagicMock(side_effect=RuntimeError("ui crashed"))
        result = make_engine(FakeVaultClient(), sync_config).push(callback)
        assert result.files_uploaded == 1
        assert callback.call_count == 4


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    def test_sync_mode_pushes_then_pulls(
        self, make_engine, sync_config, sync_root
    ):
        write_doc(sync_root, "local.md", "L")
        client = FakeVaultClient({"remote.md": "R"})
        engine = make_engine(client, sync_config)

        result = engine.run()
        assert result.files_uploaded == 1
        assert result.files_downloaded == 1
        assert client.content("local.md") == "L"
        assert (sync_root / "remote.md").read_text() == "R"

        client.calls.clear()
        assert engine.run().total_files == 0
        assert client.ops("put") == client.ops("get") == []

    def test_upload_without_ack_mtime_is_not_pulled_back(
        self, make_engine, sync_config, sync_root, state_store
    ):
        class SilentAckClient(FakeVaultClient):
            def put_document(self, vault_id, path, content):
                super().put_document(vault_id, path, content)
                return {}

        write_doc(sync_root, "a.md", "A")
        write_doc(sync_root, "b.md", "BB")
        client = SilentAckClient()

        result = make_engine(client, sync_config).run()
        assert result.files_uploaded == 2
        assert result.files_downloaded == 0
        assert client.ops("get") == []
        state = state_store.load(sync_config.id)
        assert state.remote["a.md"].mtime == client.docs["a.md"][1]

    def test_pull_mode_ignores_local_changes(
        self, make_engine, make_sync_config, sync_root, tmp_path: Path
    ):
        config = make_sync_config(mode=SyncMode.PULL)
        write_doc(sync_root, "local.md", "L")
        client = FakeVaultClient()
        assert make_engine(client, config).run().total_files == 0
        assert client.docs == {}

    def test_push_mode_ignores_remote_changes(
        self, make_engine, make_sync_config, sync_root
    ):
        config = make_sync_config(mode=SyncMode.PUSH)
        client = FakeVaultClient({"remote.md": "R"})
        assert make_engine(client, config).run().total_files == 0
        assert not (sync_root / "remote.md").exists()
