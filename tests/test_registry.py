from __future__ import annotations
from pathlib import Path

import pytest

from melodymagnet.errors import StorageError
from melodymagnet.registry import SyncRegistry, SyncState

from conftest import make_album


@pytest.fixture
def registry(tmp_path: Path):
    reg = SyncRegistry(tmp_path / "library.db")
    yield reg
    reg.close()


def test_request_album_creates_requested_row(registry, album):
    assert not registry.exists(album.id)
    assert registry.request_album(album, "tidal") is True
    assert registry.exists(album.id)
    assert registry.state_of(album.id) is SyncState.REQUESTED

    row = registry.conn.execute(
        "SELECT path, backend, cover_url FROM album_state WHERE id = ?", (album.id,)
    ).fetchone()
    assert row == ("Max Richter/2014 Album", "tidal", "")


def test_request_album_twice_keeps_one_row_and_state(registry, album):
    registry.request_album(album, "tidal")
    registry.claim_next_requested()
    registry.mark_synchronized(album.id)

    assert registry.request_album(album, "tidal") is False

    count = registry.conn.execute("SELECT count(*) FROM album_state").fetchone()[0]
    assert count == 1
    assert registry.state_of(album.id) is SyncState.SYNCHRONIZED


def test_claim_is_fifo_and_returns_snapshot(registry):
    first = make_album("A1", title="First", cover="https://img/1.jpg")
    second = make_album("A2", title="Second")
    registry.request_album(first, "tidal")
    registry.request_album(second, "tidal")

    assert registry.claim_next_requested() == first
    assert registry.state_of("A1") is SyncState.PROCESSING
    assert registry.claim_next_requested() == second
    assert registry.claim_next_requested() is None


def test_claim_on_empty_ledger_returns_none(registry):
    assert registry.claim_next_requested() is None


def test_claim_never_returns_same_album_twice(registry):
    for n in range(5):
        registry.request_album(make_album(f"A{n}"), "tidal")

    claimed = []
    while (album := registry.claim_next_requested()) is not None:
        claimed.append(album.id)
    assert claimed == ["A0", "A1", "A2", "A3", "A4"]

    registry.request_album(make_album("A9"), "tidal")
    assert registry.claim_next_requested().id == "A9"


def test_state_never_regresses(registry, album):
    registry.request_album(album, "tidal")
    assert registry.mark_synchronized(album.id) is True
    assert registry.mark_processing(album.id) is False
    assert registry.mark_synchronized(album.id) is False
    assert registry.state_of(album.id) is SyncState.SYNCHRONIZED


def test_mark_unknown_album_is_not_an_error(registry):
    assert registry.mark_processing("nope") is False
    assert registry.mark_synchronized("nope") is False
    assert registry.state_of("nope") is None


def test_stats_total_is_sum_of_states(registry):
    for n in range(4):
        registry.request_album(make_album(f"A{n}"), "tidal")
    stats = registry.stats()
    assert (stats.requested, stats.processing, stats.synchronized, stats.total) == (4, 0, 0, 4)

    registry.claim_next_requested()
    claimed = registry.claim_next_requested()
    registry.mark_synchronized(claimed.id)

    stats = registry.stats()
    assert stats.as_dict() == {"requested": 2, "processing": 1, "synchronized": 1, "total": 4}
    assert stats.requested + stats.processing + stats.synchronized == stats.total


def test_unreadable_snapshot_is_storage_error(registry, album):
    registry.request_album(album, "tidal")
    registry.conn.execute("UPDATE album_state SET details = ? WHERE id = ?", ('{"version": 99}', album.id))

    with pytest.raises(StorageError):
        registry.claim_next_requested()
    # The failed claim is rolled back
    assert registry.state_of(album.id) is SyncState.REQUESTED


def test_processing_survives_reopen(tmp_path: Path, album):
    db = tmp_path / "library.db"
    with SyncRegistry(db) as reg:
        reg.request_album(album, "tidal")
        reg.claim_next_requested()
        # simulated crash: no mark_synchronized

    with SyncRegistry(db) as reg:
        assert reg.state_of(album.id) is SyncState.PROCESSING
        assert reg.processing_ids() == [album.id]
        assert reg.claim_next_requested() is None


def test_storage_failure_is_wrapped(registry, album):
    registry.conn.execute("DROP TABLE album_state")
    with pytest.raises(StorageError):
        registry.exists(album.id)
    with pytest.raises(StorageError):
        registry.stats()
