from __future__ import annotations
from datetime import date
from enum import IntEnum
from typing import Any, List, Optional
from .. import BackendType, CatalogBackend, FavoritesPage
from ...errors import AuthorizationError, RequestError
from ...models import Album, Artist, Track
from ...utils.logging import setup_logging
from .session import TidalSession

logger = setup_logging(__name__)

# Best first; the first quality TIDAL hands out a URL for is downloaded
QUALITY_LADDER = ("HI_RES_LOSSLESS", "LOSSLESS", "HIGH")

TRACK_TIMEOUT = 300
COVER_TIMEOUT = 500


class CoverSize(IntEnum):
    SIZE_80 = 80
    SIZE_160 = 160
    SIZE_320 = 320
    SIZE_640 = 640
    SIZE_1280 = 1280


def cover_url(cover_id: str | None, size: CoverSize = CoverSize.SIZE_640) -> Optional[str]:
    if not cover_id:
        return None
    return (
        f"https://resources.tidal.com/images/{cover_id.replace('-', '/')}"
        f"/{int(size)}x{int(size)}.jpg"
    )


def _stream_ready(item: dict) -> bool:
    return bool(item.get("adSupportedStreamReady"))


def parse_album(item: dict) -> Album:
    """Build an Album from a TIDAL album object (the ``item`` of a favorite)."""
    return Album(
        id=str(item["id"]),
        artist=Artist(id=str(item["artist"]["id"]), name=item["artist"]["name"]),
        title=item["title"],
        release_date=date.fromisoformat(item["releaseDate"]),
        number_of_volumes=int(item.get("numberOfVolumes") or 1),
        number_of_tracks=int(item.get("numberOfTracks") or 0),
        cover_url=cover_url(item.get("cover")),
    )


def parse_track(item: dict, album: Album) -> Track:
    return Track(
        id=str(item["id"]),
        title=item.get("title") or "",
        track_number=int(item["trackNumber"]),
        volume_number=int(item.get("volumeNumber") or 1),
        album=album,
    )


class TidalBackend(CatalogBackend):
    backend_type = BackendType.TIDAL

    def __init__(self, session: TidalSession, quality_ladder: tuple[str, ...] = QUALITY_LADDER):
        self.session = session
        self.quality_ladder = quality_ladder

    @classmethod
    def login(cls, client_id: str, client_secret: str) -> "TidalBackend":
        return cls(TidalSession.login(client_id, client_secret))

    @property
    def is_valid(self) -> bool:
        return self.session.valid and bool(self.session.access_token)

    def fetch_favorites_page(self, limit: int, offset: int) -> FavoritesPage:
        logger.debug(f"TidalBackend.fetch_favorites_page: limit={limit} offset={offset}")
        data = self.session.get_json(
            f"/users/{self.session.user_id}/favorites/albums",
            {"limit": limit, "offset": offset},
        )
        items = self._items(data, "favorites")

        albums: List[Album] = []
        for entry in items:
            item = entry.get("item") if isinstance(entry, dict) else None
            if not isinstance(item, dict) or not _stream_ready(item):
                continue
            try:
                albums.append(parse_album(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping favorite with unexpected shape ({e}): {item.get('id')}")
        return FavoritesPage(albums=albums, size=len(items))

    def fetch_album_tracks(self, album: Album) -> List[Track]:
        data = self.session.get_json(f"/albums/{album.id}/tracks", {"deviceType": "BROWSER"})

        tracks: List[Track] = []
        for item in self._items(data, f"album {album.id} tracks"):
            if not isinstance(item, dict) or not _stream_ready(item):
                continue
            try:
                tracks.append(parse_track(item, album))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping track with unexpected shape ({e}): {item.get('id')}")
        return tracks

    def _track_url(self, track_id: str) -> str:
        for quality in self.quality_ladder:
            try:
                data = self.session.get_json(
                    f"/tracks/{track_id}/urlpostpaywall",
                    {
                        "sessionId": self.session.session_id,
                        "urlusagemode": "STREAM",
                        "audioquality": quality,
                        "assetpresentation": "FULL",
                    },
                )
            except AuthorizationError:
                raise
            except RequestError as e:
                logger.info(f"Track {track_id} unavailable in {quality}: {e}")
                continue

            urls = data.get("urls") if isinstance(data, dict) else None
            if urls:
                logger.info(f"Download track: {track_id}, quality {quality}")
                return urls[0]
            logger.info(f"Track {track_id} has no {quality} stream")

        raise RequestError(
            f"No playable stream for track {track_id}",
            details={"track_id": track_id, "qualities": list(self.quality_ladder)},
        )

    def download_track_bytes(self, track_id: str) -> bytes:
        return self.session.get_bytes(self._track_url(track_id), timeout=TRACK_TIMEOUT)

    def download_cover_bytes(self, url: str) -> bytes:
        return self.session.get_bytes(url, timeout=COVER_TIMEOUT)

    def refresh(self) -> None:
        self.session.refresh()

    def serialize(self) -> str:
        return self.session.serialize()

    @classmethod
    def restore(cls, blob: str) -> "TidalBackend":
        return cls(TidalSession.restore(blob))

    @staticmethod
    def _items(data: Any, what: str) -> list:
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise RequestError(f"TIDAL response for {what} has no item list")
        return items
