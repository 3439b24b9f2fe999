from __future__ import annotations
from pathlib import Path

import pytest

from melodymagnet.errors import RunInProgress
from melodymagnet.scheduler import RunGuard, run_once


def test_second_guard_cannot_acquire(tmp_path: Path):
    lock = tmp_path / "library.db.lock"
    first, second = RunGuard(lock), RunGuard(lock)

    assert first.acquire()
    assert not second.acquire()
    first.release()
    assert second.acquire()
    second.release()


def test_held_raises_when_busy(tmp_path: Path):
    lock = tmp_path / "run.lock"
    with RunGuard(lock).held():
        with pytest.raises(RunInProgress):
            with RunGuard(lock).held():
                pass


def test_run_once_skips_trigger_while_running(tmp_path: Path):
    lock = tmp_path / "run.lock"
    calls = []

    def job():
        calls.append("outer")
        # a trigger firing mid-run is dropped, not queued
        assert run_once(lambda: calls.append("inner"), RunGuard(lock)) is None
        return "done"

    assert run_once(job, RunGuard(lock)) == "done"
    assert calls == ["outer"]
    assert run_once(lambda: "again", RunGuard(lock)) == "again"


def test_guard_released_when_job_raises(tmp_path: Path):
    guard = RunGuard(tmp_path / "run.lock")

    def job():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        run_once(job, guard)
    assert not guard.locked
    assert guard.acquire()
    guard.release()
