from __future__ import annotations
import fcntl
from contextlib import contextmanager
from datetime import datetime
from os import O_CREAT, O_RDWR, close, ftruncate, getpid, open as os_open, write
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar
from zoneinfo import ZoneInfo
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from .errors import RunInProgress
from .utils.logging import setup_logging

logger = setup_logging(__name__)

T = TypeVar("T")


class RunGuard:
    """Non-blocking, process-wide "one run at a time" lock on a file."""

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self._fd: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> bool:
        if self._fd is not None:
            return False
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os_open(self.lock_path, O_CREAT | O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            close(fd)
            return False
        ftruncate(fd, 0)
        write(fd, str(getpid()).encode("utf-8"))
        self._fd = fd
        return True

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            close(fd)

    @contextmanager
    def held(self) -> Iterator["RunGuard"]:
        if not self.acquire():
            raise RunInProgress(
                f"Another run holds {self.lock_path}",
                details={"lock_path": str(self.lock_path)},
            )
        try:
            yield self
        finally:
            self.release()


def run_once(job: Callable[[], T], guard: RunGuard) -> Optional[T]:
    """Run ``job`` unless another run is active; a busy trigger is dropped."""
    try:
        with guard.held():
            return job()
    except RunInProgress as e:
        logger.info(f"Skipping trigger, previous run still active: {e}")
        return None


def watch(job: Callable[[], object], guard: RunGuard, interval: int, time_zone: str = "UTC") -> None:
    scheduler = BlockingScheduler(timezone=time_zone)
    scheduler.add_job(
        run_once,
        trigger=IntervalTrigger(seconds=interval, timezone=time_zone),
        args=(job, guard),
        id="sync_favourites",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(ZoneInfo(time_zone)),
    )
    logger.info(f"Sync favourites job scheduled every {interval}s")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped.")
