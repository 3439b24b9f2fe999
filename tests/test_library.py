from __future__ import annotations
from pathlib import Path

import pytest
from mutagen import MutagenError

import melodymagnet.library as lib
from melodymagnet.errors import LibraryError
from melodymagnet.library import Library
from melodymagnet.models import Track

from conftest import make_album, make_tracks


class FakeFLAC(dict):
    saved: list["FakeFLAC"] = []

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        self.pictures = []

    def clear_pictures(self):
        self.pictures = []

    def add_picture(self, picture):
        self.pictures.append(picture)

    def save(self):
        FakeFLAC.saved.append(self)


class NotFLAC:
    def __init__(self, path):
        raise MutagenError("not a FLAC file")


@pytest.fixture(autouse=True)
def fake_flac(monkeypatch):
    FakeFLAC.saved = []
    monkeypatch.setattr(lib, "FLAC", FakeFLAC)


def test_track_path_single_and_multi_volume(tmp_path: Path):
    library = Library(tmp_path)
    single = make_tracks(make_album())[0]
    assert library.track_path(single) == tmp_path / "Max Richter" / "2014 Album" / "01 Track 1 - Max Richter.flac"

    double = make_album(volumes=2)
    track = Track(id="t", title="Coda", track_number=4, volume_number=2, album=double)
    assert library.track_path(track) == tmp_path / "Max Richter" / "2014 Album" / "CD02" / "04 Coda - Max Richter.flac"


def test_is_materialized_follows_album_directory(tmp_path: Path, album):
    library = Library(tmp_path)
    assert not library.is_materialized(album)
    library.album_path(album).mkdir(parents=True)
    assert library.is_materialized(album)


def test_write_track_writes_bytes_and_tags(tmp_path: Path):
    library = Library(tmp_path)
    track = make_tracks(make_album(tracks=12))[1]

    path = library.write_track(track, b"fLaC-bytes", cover=b"jpeg")

    assert path.read_bytes() == b"fLaC-bytes"
    assert not list(path.parent.glob("*.part"))
    tags = FakeFLAC.saved[-1]
    assert tags.path == path
    assert tags["tracknumber"] == "2"
    assert tags["tracktotal"] == "12"
    assert tags["title"] == "Track 2"
    assert tags["album"] == "Album"
    assert tags["artist"] == "Max Richter"
    assert tags["date"] == "2014-01-01"
    assert len(tags.pictures) == 1
    assert tags.pictures[0].data == b"jpeg"
    assert tags.pictures[0].mime == "image/jpeg"


def test_write_track_without_cover_has_no_picture(tmp_path: Path):
    library = Library(tmp_path)
    library.write_track(make_tracks(make_album())[0], b"x")
    assert FakeFLAC.saved[-1].pictures == []


def test_tagging_failure_is_library_error_but_file_stays(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(lib, "FLAC", NotFLAC)
    library = Library(tmp_path)
    track = make_tracks(make_album())[0]

    with pytest.raises(LibraryError):
        library.write_track(track, b"garbage")
    assert library.track_path(track).read_bytes() == b"garbage"


def test_unwritable_library_is_library_error(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    library = Library(blocker)
    with pytest.raises(LibraryError):
        library.write_cover(make_album(), b"jpeg")


def test_write_cover(tmp_path: Path, album):
    library = Library(tmp_path)
    path = library.write_cover(album, b"jpeg")
    assert path == library.album_path(album) / "cover.jpg"
    assert path.read_bytes() == b"jpeg"
    assert library.is_materialized(album)


class FakeMP4(dict):
    saved: list["FakeMP4"] = []

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)

    def save(self):
        FakeMP4.saved.append(self)


AAC = b"\x00\x00\x00\x20ftypM4A \x00\x00\x02\x00"


def test_container_of():
    assert lib.container_of(b"fLaC\x00\x00\x00\x22") == "flac"
    assert lib.container_of(AAC) == "m4a"


def test_aac_fallback_is_saved_as_m4a_with_mp4_tags(tmp_path: Path, monkeypatch):
    FakeMP4.saved = []
    monkeypatch.setattr(lib, "MP4", FakeMP4)
    library = Library(tmp_path)
    track = make_tracks(make_album(tracks=12, volumes=2))[2]

    path = library.write_track(track, AAC, cover=b"jpeg")

    assert path.name == "03 Track 3 - Max Richter.m4a"
    assert path.read_bytes() == AAC
    assert not library.track_path(track).exists()
    assert FakeFLAC.saved == []
    tags = FakeMP4.saved[-1]
    assert tags.path == path
    assert tags["\xa9nam"] == ["Track 3"]
    assert tags["\xa9ART"] == ["Max Richter"]
    assert tags["trkn"] == [(3, 12)]
    assert tags["disk"] == [(1, 2)]
    assert bytes(tags["covr"][0]) == b"jpeg"
