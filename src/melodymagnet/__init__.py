__version__ = "0.2.0"

from .config import Config
from .catalog import CatalogClient
from .library import Library
from .models import Album, Artist, Track
from .orchestrator import Orchestrator, RunReport
from .registry import RegistryStats, SyncRegistry, SyncState
from .retry import RetryPolicy


__all__ = [
    "Config",
    "CatalogClient",
    "Library",
    "Album",
    "Artist",
    "Track",
    "Orchestrator",
    "RunReport",
    "RegistryStats",
    "SyncRegistry",
    "SyncState",
    "RetryPolicy",
]
