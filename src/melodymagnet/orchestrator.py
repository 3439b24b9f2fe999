from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional, TypeVar
from tqdm import tqdm
from .backend import SessionStore
from .catalog import CatalogClient
from .errors import AuthorizationError, LibraryError, RequestError
from .library import Library
from .models import Album, Track
from .registry import RegistryStats, SyncRegistry
from .utils.logging import setup_logging

logger = setup_logging(__name__)

T = TypeVar("T")


@dataclass
class RunReport:
    albums_synchronized: int = 0
    albums_materialized: int = 0
    albums_skipped: int = 0
    albums_discovered: int = 0
    tracks_written: int = 0
    tracks_failed: int = 0
    refresh_attempted: bool = False
    session_refreshed: bool = False
    favorites_failed: bool = False
    stale_processing: List[str] = field(default_factory=list)
    stats_after_drain: Optional[RegistryStats] = None
    stats_after_discover: Optional[RegistryStats] = None

    def summary(self) -> str:
        return (
            f"{self.albums_synchronized} albums synchronized "
            f"({self.albums_materialized} already on disk, {self.albums_skipped} skipped), "
            f"{self.tracks_written} tracks written, {self.tracks_failed} failed, "
            f"{self.albums_discovered} new favorites requested"
        )


class Orchestrator:
    """One synchronization run: drain the ledger, then discover new favorites.

    Holds no state between runs; everything needed to resume lives in the
    registry and the session store.
    """

    def __init__(
        self,
        registry: SyncRegistry,
        catalog: CatalogClient,
        library: Library,
        session_store: SessionStore | None = None,
        verbose: bool = True,
    ):
        self.registry = registry
        self.catalog = catalog
        self.library = library
        self.session_store = session_store
        self.verbose = verbose

    def run(self) -> RunReport:
        report = RunReport()

        report.stale_processing = self.registry.processing_ids()
        if report.stale_processing:
            logger.warning(
                f"{len(report.stale_processing)} albums left in Processing by an earlier run: "
                + ", ".join(report.stale_processing)
            )

        self.drain(report)
        report.stats_after_drain = self._log_stats()

        self.discover(report)
        report.stats_after_discover = self._log_stats()

        logger.info(f"Run finished: {report.summary()}")
        if self.verbose:
            print(report.summary())
        return report

    def _log_stats(self) -> RegistryStats:
        stats = self.registry.stats()
        logger.info(f"Current sync stats: {stats}")
        return stats

    # -- drain ----------------------------------------------------------------

    def drain(self, report: RunReport) -> None:
        while (album := self.registry.claim_next_requested()) is not None:
            self._sync_album(album, report)

    def _sync_album(self, album: Album, report: RunReport) -> None:
        label = f"{album.artist.name} - {album.title}"

        if self.library.is_materialized(album):
            logger.info(f"Album {album.id} ({label}) already in library, skipping download")
            self.registry.mark_synchronized(album.id)
            report.albums_materialized += 1
            report.albums_synchronized += 1
            return

        try:
            tracks = self._recovering(self.catalog.album_tracks, album, report=report)
        except RequestError as e:
            logger.error(f"Skipping album {album.id} ({label}) for this run: {e}")
            report.albums_skipped += 1
            return

        cover = self._fetch_cover(album, report)

        written = failed = 0
        pbar = None
        if self.verbose:
            pbar = tqdm(total=len(tracks), desc=label[:40], unit="track", leave=True)
        try:
            for track in tracks:
                if self._sync_track(track, cover, report):
                    written += 1
                else:
                    failed += 1
                if pbar:
                    pbar.update(1)
        finally:
            if pbar:
                pbar.close()

        report.tracks_written += written
        report.tracks_failed += failed
        if not written:
            logger.error(
                f"No track of album {album.id} ({label}) was saved, leaving it in Processing"
            )
            report.albums_skipped += 1
            return
        if failed:
            logger.warning(
                f"Album {album.id} ({label}) marked synchronized with {failed}/{len(tracks)} tracks missing"
            )
        self.registry.mark_synchronized(album.id)
        report.albums_synchronized += 1
        logger.info(f"Album {album.id} ({label}) synchronized")

    def _fetch_cover(self, album: Album, report: RunReport) -> Optional[bytes]:
        if not album.cover_url:
            return None
        try:
            cover = self._recovering(self.catalog.cover_bytes, album, report=report)
            self.library.write_cover(album, cover)
            return cover
        except RequestError as e:
            logger.error(f"Cover of album {album.id} unavailable: {e}")
        except LibraryError as e:
            logger.error(f"Cover of album {album.id} not saved: {e}")
        return None

    def _sync_track(self, track: Track, cover: Optional[bytes], report: RunReport) -> bool:
        logger.info(f"track: {track.track_number:02} {track.title} ({track.id})")
        try:
            data = self._recovering(self.catalog.track_bytes, track, report=report)
        except RequestError as e:
            logger.error(f"Failed to download track {track.id}: {e}")
            return False
        try:
            self.library.write_track(track, data, cover)
        except LibraryError as e:
            logger.error(f"Failed to save track {track.id}: {e}")
            return False
        return True

    def _recovering(self, fn: Callable[..., T], *args, report: RunReport) -> T:
        try:
            return fn(*args)
        except AuthorizationError as e:
            if report.refresh_attempted:
                raise
            logger.warning(f"Authorization rejected ({e}), refreshing session")
            if not self._refresh_session(report):
                raise
        return fn(*args)

    # -- discover -------------------------------------------------------------

    def discover(self, report: RunReport) -> None:
        try:
            favorites = self.catalog.favorite_albums()
        except RequestError as err:
            report.favorites_failed = True
            if report.refresh_attempted:
                logger.error(f"Favorites unavailable, session already refreshed this run: {err}")
                return
            logger.warning(f"Probably token expired, refreshing... ({err})")
            self._refresh_session(report)
            return

        for album in favorites:
            if self.registry.exists(album.id):
                continue
            if self.registry.request_album(album, self.catalog.backend_tag):
                report.albums_discovered += 1
                logger.info(
                    f"Album requested to synchronize: {album.id} ({album.artist.name} - {album.title})"
                )

    # -- session --------------------------------------------------------------

    def _refresh_session(self, report: RunReport) -> bool:
        report.refresh_attempted = True
        try:
            self.catalog.refresh_session()
        except RequestError as e:
            logger.error(f"Session refresh failed, a new login will be needed: {e}")
            self._save_session()
            return False
        report.session_refreshed = True
        self._save_session()
        return True

    def _save_session(self) -> None:
        if self.session_store is None:
            return
        try:
            self.session_store.save(self.catalog.backend)
        except OSError as e:
            logger.error(f"Failed to persist session: {e}", exc_info=True)
