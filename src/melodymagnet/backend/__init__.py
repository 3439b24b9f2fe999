from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from os import replace
from pathlib import Path
from typing import List, Type, TypeVar
from ..models import Album, Track
from ..utils.logging import setup_logging

logger = setup_logging(__name__)


class BackendType(str, Enum):
    TIDAL = "tidal"

    @property
    def session_file_name(self) -> str:
        return f"{self.value}_session.json"


@dataclass(slots=True)
class FavoritesPage:
    albums: List[Album] = field(default_factory=list)
    # Raw item count before the provider dropped unplayable entries
    size: int = 0


B = TypeVar("B", bound="CatalogBackend")


class CatalogBackend(ABC):
    """What a catalog provider must offer to be mirrored.

    Implementations raise ``RequestError`` (or ``AuthorizationError`` when the
    credential is rejected) and never retry on their own.
    """

    backend_type: BackendType

    @abstractmethod
    def fetch_favorites_page(self, limit: int, offset: int) -> FavoritesPage: ...

    @abstractmethod
    def fetch_album_tracks(self, album: Album) -> List[Track]: ...

    @abstractmethod
    def download_track_bytes(self, track_id: str) -> bytes: ...

    @abstractmethod
    def download_cover_bytes(self, url: str) -> bytes: ...

    @abstractmethod
    def refresh(self) -> None: ...

    @property
    def is_valid(self) -> bool:
        return True

    @abstractmethod
    def serialize(self) -> str: ...

    @classmethod
    @abstractmethod
    def restore(cls: Type[B], blob: str) -> B: ...


class SessionStore:
    def __init__(self, directory: Path, backend_type: BackendType):
        self.directory = Path(directory)
        self.backend_type = backend_type

    @property
    def file_path(self) -> Path:
        return self.directory / self.backend_type.session_file_name

    def exists(self) -> bool:
        return self.file_path.is_file()

    def load(self, backend_cls: Type[B]) -> B | None:
        if not self.exists():
            return None
        try:
            blob = self.file_path.read_text(encoding="utf-8")
            return backend_cls.restore(blob)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {self.file_path}: {e}")
            return None

    def save(self, backend: CatalogBackend) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.file_path.with_suffix(".tmp")
        tmp.write_text(backend.serialize(), encoding="utf-8")
        # Holds refresh tokens
        tmp.chmod(0o600)
        replace(tmp, self.file_path)
        logger.info(f"Session saved to {self.file_path}")
