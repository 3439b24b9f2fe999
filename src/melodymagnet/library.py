from __future__ import annotations
from os import replace
from pathlib import Path
from typing import Optional
from mutagen import MutagenError
from mutagen.flac import FLAC, Picture
from mutagen.mp4 import MP4, MP4Cover
from .errors import LibraryError
from .models import Album, Track
from .utils.logging import setup_logging

logger = setup_logging(__name__)

COVER_FILE = "cover.jpg"
FRONT_COVER = 3


def container_of(data: bytes) -> str:
    """File extension for downloaded audio: lossless tiers are FLAC, HIGH is AAC in MP4."""
    if data[4:8] == b"ftyp":
        return "m4a"
    return "flac"


class Library:
    """Local library laid out as ``artist/year title/[CDnn/]nn title - artist.flac``.

    AAC downloads keep the same layout with an ``.m4a`` extension.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def album_path(self, album: Album) -> Path:
        return self.root / album.relative_path()

    def track_path(self, track: Track, extension: str = "flac") -> Path:
        path = self.album_path(track.album)
        if track.album.is_multi_volume:
            path = path / f"CD{track.volume_number:02}"
        return path / track.path_name(extension)

    def is_materialized(self, album: Album) -> bool:
        return self.album_path(album).is_dir()

    def _cleanup_partials(self, directory: Path) -> None:
        for p in directory.glob("*.part"):
            try:
                p.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove partial file {p}: {e}")

    def _write(self, target: Path, data: bytes) -> None:
        part = target.with_name(target.name + ".part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            part.write_bytes(data)
            replace(part, target)
        except OSError as e:
            if target.parent.is_dir():
                self._cleanup_partials(target.parent)
            raise LibraryError(
                f"Failed to write {target}: {e}", details={"path": str(target)}
            ) from e

    def write_cover(self, album: Album, data: bytes) -> Path:
        target = self.album_path(album) / COVER_FILE
        self._write(target, data)
        logger.info(f"Saved cover for album {album.id} to {target}")
        return target

    def write_track(self, track: Track, data: bytes, cover: Optional[bytes] = None) -> Path:
        extension = container_of(data)
        target = self.track_path(track, extension)
        self._write(target, data)
        logger.info(f"Path for track {track.id} is: {target}")
        if extension == "m4a":
            self._tag_mp4(target, track, cover)
        else:
            self._tag_flac(target, track, cover)
        return target

    def _tag_flac(self, path: Path, track: Track, cover: Optional[bytes]) -> None:
        album = track.album
        try:
            audio = FLAC(path)
            audio["tracknumber"] = str(track.track_number)
            audio["tracktotal"] = str(album.number_of_tracks)
            audio["discnumber"] = str(track.volume_number)
            audio["disctotal"] = str(album.number_of_volumes)
            audio["title"] = track.title
            audio["album"] = album.title
            audio["artist"] = album.artist.name
            audio["albumartist"] = album.artist.name
            audio["date"] = album.release_date.isoformat()

            if cover:
                picture = Picture()
                picture.type = FRONT_COVER
                picture.mime = "image/jpeg"
                picture.desc = "Cover"
                picture.data = cover
                audio.clear_pictures()
                audio.add_picture(picture)

            audio.save()
        except (MutagenError, OSError) as e:
            raise self._tag_error(path, track, e) from e

    def _tag_mp4(self, path: Path, track: Track, cover: Optional[bytes]) -> None:
        album = track.album
        try:
            audio = MP4(path)
            audio["\xa9nam"] = [track.title]
            audio["\xa9alb"] = [album.title]
            audio["\xa9ART"] = [album.artist.name]
            audio["aART"] = [album.artist.name]
            audio["\xa9day"] = [album.release_date.isoformat()]
            # Number and total share one atom
            audio["trkn"] = [(track.track_number, album.number_of_tracks)]
            audio["disk"] = [(track.volume_number, album.number_of_volumes)]
            if cover:
                audio["covr"] = [MP4Cover(cover, imageformat=MP4Cover.FORMAT_JPEG)]
            audio.save()
        except (MutagenError, OSError) as e:
            raise self._tag_error(path, track, e) from e

    @staticmethod
    def _tag_error(path: Path, track: Track, error: Exception) -> LibraryError:
        return LibraryError(
            f"Saved {path} but could not tag it: {error}",
            details={"path": str(path), "track_id": track.id},
        )
