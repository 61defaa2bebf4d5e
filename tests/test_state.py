"""
Tests for the run lock and the stage record.
"""

import json
from pathlib import Path

import pytest

from selfupdate_engine.state import StateManager, UpdateLock, UpdateLockError, UpdateStage, lock_file_for


class TestUpdateLock:
    """Tests for UpdateLock."""

    def test_lock_is_exclusive(self, tmp_path: Path) -> None:
        first = UpdateLock(tmp_path / "app", lock_dir=tmp_path)
        second = UpdateLock(tmp_path / "app", lock_dir=tmp_path)

        first.acquire()
        try:
            with pytest.raises(UpdateLockError):
                second.acquire()
            assert second.is_locked()
        finally:
            first.release()

        second.acquire()
        second.release()
        assert not second.is_locked()

    def test_different_installations_do_not_contend(self, tmp_path: Path) -> None:
        with UpdateLock(tmp_path / "one", lock_dir=tmp_path):
            with UpdateLock(tmp_path / "two", lock_dir=tmp_path) as other:
                assert other.locked

    def test_lock_file_is_keyed_by_folder(self, tmp_path: Path) -> None:
        assert lock_file_for(tmp_path / "a", tmp_path) == lock_file_for(tmp_path / "x" / ".." / "a", tmp_path)
        assert lock_file_for(tmp_path / "a", tmp_path) != lock_file_for(tmp_path / "b", tmp_path)

    def test_release_is_idempotent(self, tmp_path: Path) -> None:
        lock = UpdateLock(tmp_path / "app", lock_dir=tmp_path)
        lock.acquire()
        lock.release()
        lock.release()

        assert not lock.locked


class TestStateManager:
    """Tests for StateManager."""

    def test_stage_transitions_are_persisted(self, tmp_path: Path) -> None:
        manager = StateManager(tmp_path / "state.json")

        manager.begin_run()
        manager.set_stage(UpdateStage.FETCHING, target_version="1.2.0.0")

        reloaded = StateManager(tmp_path / "state.json")
        state = reloaded.load()
        assert state["stage"] == "fetching"
        assert state["target_version"] == "1.2.0.0"
        assert "started_at" in state
        assert "completed_at" not in state
        assert reloaded.is_update_in_progress()

    def test_terminal_stage_records_completion(self, tmp_path: Path) -> None:
        manager = StateManager(tmp_path / "state.json")
        manager.begin_run()

        manager.set_stage(UpdateStage.DONE)

        assert manager.stage == UpdateStage.DONE
        assert "completed_at" in manager.state
        assert not manager.is_update_in_progress()

    def test_tampered_state_is_ignored(self, tmp_path: Path) -> None:
        state_file = tmp_path / "state.json"
        StateManager(state_file).save({"stage": "applying"})

        data = json.loads(state_file.read_text())
        data["stage"] = "done"
        state_file.write_text(json.dumps(data))

        assert StateManager(state_file).load() is None

    def test_new_run_replaces_interrupted_record(self, tmp_path: Path) -> None:
        state_file = tmp_path / "state.json"
        StateManager(state_file).save({"stage": "applying", "target_version": "9.9"})

        manager = StateManager(state_file)
        manager.begin_run()

        assert manager.stage == UpdateStage.IDLE
        assert "target_version" not in manager.state

    def test_missing_or_corrupt_file(self, tmp_path: Path) -> None:
        assert StateManager(tmp_path / "missing.json").load() is None

        corrupt = tmp_path / "state.json"
        corrupt.write_text("{not json")
        assert StateManager(corrupt).load() is None
