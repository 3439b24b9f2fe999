"""Shared test helpers"""
from __future__ import annotations
import os
import tempfile
from datetime import date

# Keep test logs out of the user's cache directory
os.environ.setdefault("MELODYMAGNET_LOG_DIR", tempfile.mkdtemp(prefix="melodymagnet-logs-"))

import pytest

from melodymagnet.models import Album, Artist, Track


def make_album(album_id: str = "A1", title: str = "Album", tracks: int = 2, volumes: int = 1, cover: str | None = None) -> Album:
    return Album(
        id=album_id,
        artist=Artist(id="art-1", name="Max Richter"),
        title=title,
        release_date=date(2014, 1, 1),
        number_of_volumes=volumes,
        number_of_tracks=tracks,
        cover_url=cover,
    )


def make_tracks(album: Album, count: int | None = None) -> list[Track]:
    count = album.number_of_tracks if count is None else count
    return [
        Track(id=f"{album.id}-t{n}", title=f"Track {n}", track_number=n, volume_number=1, album=album)
        for n in range(1, count + 1)
    ]


@pytest.fixture
def album() -> Album:
    return make_album()
