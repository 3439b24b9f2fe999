from __future__ import annotations
from argparse import (
    ArgumentParser,
    ArgumentDefaultsHelpFormatter,
    ArgumentTypeError,
    RawTextHelpFormatter,
)
from pathlib import Path
from dotenv import load_dotenv
from . import __version__
from .backend import BackendType, SessionStore
from .backend.tidal import TidalBackend
from .catalog import CatalogClient
from .config import Config
from .errors import ConfigError, RequestError, StorageError
from .library import Library
from .orchestrator import Orchestrator, RunReport
from .registry import SyncRegistry
from .retry import RetryPolicy
from .scheduler import RunGuard, run_once, watch
from .utils.logging import setup_logging

logger = setup_logging(__name__)


class HelpFormatter(ArgumentDefaultsHelpFormatter, RawTextHelpFormatter):
    pass


def interval_seconds(value: str) -> int:
    """Seconds between scheduled runs, at least one."""
    if not value.strip().isdigit() or int(value) < 1:
        raise ArgumentTypeError(f"invalid interval {value!r}: expected whole seconds >= 1")
    return int(value)


def get_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="melodymagnet",
        description=(
            "melodymagnet - mirror your TIDAL favorite albums into a local FLAC library\n\n"
            "Examples:\n"
            "  melodymagnet                      # one sync run\n"
            "  melodymagnet --watch --interval 600\n"
            "  melodymagnet --login\n"
            "  melodymagnet --stats\n"
        ),
        formatter_class=HelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"melodymagnet {__version__}",
        help="Show version and exit.",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running and sync periodically. A trigger is skipped while a run is still active.",
    )
    parser.add_argument(
        "--interval",
        type=interval_seconds,
        help="Seconds between runs in --watch mode. Defaults to the configured sync_interval.",
    )
    parser.add_argument(
        "--login",
        action="store_true",
        help="Authorize a new TIDAL session through the device link and store it.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print the sync ledger counts and exit.",
    )
    parser.add_argument(
        "--library",
        type=Path,
        help="Library root folder. Defaults to the configured library_path.",
    )
    parser.add_argument(
        "--database",
        type=Path,
        help="Sync ledger SQLite file. Defaults to the configured database_file_path.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="No progress bars or console summary; everything still goes to the log.",
    )
    return parser


def main() -> None:
    load_dotenv()
    parser = get_parser()
    args = parser.parse_args()

    try:
        config = Config()
    except ConfigError as e:
        logger.error(str(e))
        raise SystemExit(1)

    database = args.database or config.database_file_path
    library_path = args.library or config.library_path
    store = SessionStore(config.session_store_path, BackendType.TIDAL)

    try:
        if args.stats:
            print_stats(database)
            return

        if args.login:
            login(store, config)
            return

        guard = RunGuard(database.with_name(database.name + ".lock"))

        def job() -> RunReport:
            return sync_favourites(config, store, library_path, database, verbose=not args.quiet)

        if args.watch:
            watch(job, guard, args.interval or config.sync_interval, config.data.get("time_zone", "UTC"))
        else:
            run_once(job, guard)
    except StorageError as e:
        logger.error(f"Sync ledger failure, run aborted: {e}", exc_info=True)
        raise SystemExit(1)
    except RequestError as e:
        logger.error(f"TIDAL unreachable: {e}")
        raise SystemExit(1)
    except KeyboardInterrupt:
        logger.info("Cancelled by user.")
        if not args.quiet:
            print("\nCancelled by user.")


def print_stats(database: Path) -> None:
    with SyncRegistry(database) as registry:
        stats = registry.stats()
        stuck = registry.processing_ids()
    for key, value in stats.as_dict().items():
        print(f"{key:>13}: {value}")
    if stuck:
        print(f"stuck in Processing: {', '.join(stuck)}")


def login(store: SessionStore, config: Config) -> TidalBackend:
    backend = TidalBackend.login(config.data["tidal_client_id"], config.data["tidal_client_secret"])
    store.save(backend)
    logger.info("TIDAL session authorized and saved.")
    return backend


def load_backend(store: SessionStore, config: Config) -> TidalBackend:
    backend = store.load(TidalBackend)
    if backend is None or not backend.is_valid:
        logger.info("No usable TIDAL session stored, starting device authorization")
        backend = login(store, config)
    return backend


def sync_favourites(
    config: Config,
    store: SessionStore,
    library_path: Path,
    database: Path,
    verbose: bool = True,
) -> RunReport:
    logger.info("Sync favourites job started")
    backend = load_backend(store, config)
    retries = RetryPolicy(max_attempts=config.download_retries)
    catalog = CatalogClient(backend, track_retry=retries, cover_retry=retries)

    with SyncRegistry(database) as registry:
        orchestrator = Orchestrator(
            registry,
            catalog,
            Library(library_path),
            session_store=store,
            verbose=verbose,
        )
        return orchestrator.run()
