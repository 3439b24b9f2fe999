from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import date
from json import dumps, loads
from pathlib import Path
from typing import Optional
from .errors import SnapshotError
from .utils.path_utils import sanitize_name

SNAPSHOT_VERSION = 1


@dataclass(slots=True, frozen=True)
class Artist:
    id: str
    name: str

    def path_name(self) -> str:
        return sanitize_name(self.name, "Unknown Artist")


@dataclass(slots=True, frozen=True)
class Album:
    id: str
    artist: Artist
    title: str
    release_date: date
    number_of_volumes: int
    number_of_tracks: int
    cover_url: Optional[str] = None

    @property
    def is_multi_volume(self) -> bool:
        return self.number_of_volumes > 1

    def path_name(self) -> str:
        return f"{self.release_date.year} {sanitize_name(self.title, 'Unknown Album')}"

    def relative_path(self) -> Path:
        return Path(self.artist.path_name()) / self.path_name()


@dataclass(slots=True, frozen=True)
class Track:
    id: str
    title: str
    track_number: int
    volume_number: int
    album: Album

    def path_name(self, extension: str = "flac") -> str:
        return (
            f"{self.track_number:02} {sanitize_name(self.title, 'Untitled')}"
            f" - {self.album.artist.path_name()}.{extension}"
        )


def dump_snapshot(album: Album) -> str:
    payload = asdict(album)
    payload["release_date"] = album.release_date.isoformat()
    return dumps({"version": SNAPSHOT_VERSION, "album": payload}, sort_keys=True)


def load_snapshot(blob: str | bytes) -> Album:
    """Decode a snapshot written by :func:`dump_snapshot`.

    Raises SnapshotError for anything that is not a known snapshot version.
    """
    try:
        data = loads(blob)
    except (TypeError, ValueError) as e:
        raise SnapshotError(f"Album snapshot is not valid JSON: {e}") from e

    if not isinstance(data, dict) or data.get("version") != SNAPSHOT_VERSION:
        version = data.get("version") if isinstance(data, dict) else None
        raise SnapshotError(
            f"Unsupported album snapshot version: {version!r}",
            details={"version": version},
        )

    try:
        raw = data["album"]
        return Album(
            id=str(raw["id"]),
            artist=Artist(id=str(raw["artist"]["id"]), name=raw["artist"]["name"]),
            title=raw["title"],
            release_date=date.fromisoformat(raw["release_date"]),
            number_of_volumes=int(raw["number_of_volumes"]),
            number_of_tracks=int(raw["number_of_tracks"]),
            cover_url=raw.get("cover_url"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotError(f"Album snapshot is malformed: {e}") from e
