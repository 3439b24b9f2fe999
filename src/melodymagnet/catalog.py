from __future__ import annotations
from typing import List
from .backend import CatalogBackend
from .models import Album, Track
from .retry import RetryPolicy
from .utils.logging import setup_logging

logger = setup_logging(__name__)

FAVORITES_PAGE_SIZE = 100


class CatalogClient:
    """Retrying, paginating front for a :class:`CatalogBackend`."""

    def __init__(
        self,
        backend: CatalogBackend,
        page_size: int = FAVORITES_PAGE_SIZE,
        track_retry: RetryPolicy | None = None,
        cover_retry: RetryPolicy | None = None,
        metadata_retry: RetryPolicy | None = None,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.backend = backend
        self.page_size = page_size
        self.track_retry = track_retry or RetryPolicy(max_attempts=4)
        self.cover_retry = cover_retry or RetryPolicy(max_attempts=4)
        self.metadata_retry = metadata_retry or RetryPolicy(max_attempts=1)

    @property
    def backend_tag(self) -> str:
        return self.backend.backend_type.value

    def favorite_albums(self) -> List[Album]:
        """Every favorite album, in the order the catalog lists them.

        A failing page raises; no partial list is returned.
        """
        albums: List[Album] = []
        offset = 0
        while True:
            page = self.backend.fetch_favorites_page(self.page_size, offset)
            albums.extend(page.albums)
            if page.size < self.page_size:
                break
            offset += self.page_size
        logger.info(f"Fetched {len(albums)} favorite albums")
        return albums

    def album_tracks(self, album: Album) -> List[Track]:
        return self.metadata_retry.call(
            self.backend.fetch_album_tracks,
            album,
            description=f"track list of album {album.id}",
        )

    def track_bytes(self, track: Track) -> bytes:
        return self.track_retry.call(
            self.backend.download_track_bytes,
            track.id,
            description=f"download of track {track.id}",
        )

    def cover_bytes(self, album: Album) -> bytes:
        return self.cover_retry.call(
            self.backend.download_cover_bytes,
            album.cover_url,
            description=f"cover of album {album.id}",
        )

    def refresh_session(self) -> None:
        self.backend.refresh()
