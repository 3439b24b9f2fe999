from __future__ import annotations
from pathlib import Path
from json import JSONDecodeError, load, dump
from os import getenv
from .errors import ConfigError


def config_dir() -> Path:
    override = getenv("MELODYMAGNET_CONFIG_DIR")
    return Path(override) if override else Path.home() / ".config" / "melodymagnet"


class Config:
    def __init__(self, directory: Path | None = None) -> None:
        self.config_dir = Path(directory) if directory else config_dir()
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "config.json"
        self.default_config = {
            "library_path": getenv("LIBRARY_PATH", str(Path.home() / "Music")),
            "session_store_path": getenv("SESSION_STORE_PATH", str(self.config_dir)),
            "database_file_path": getenv(
                "DATABASE_FILE_PATH",
                str(Path.home() / ".cache" / "melodymagnet" / "library.db"),
            ),
            "sync_interval": int(getenv("SYNC_INTERVAL", "300")),  # seconds between runs in --watch
            "time_zone": getenv("TIME_ZONE", "UTC"),
            "download_retries": int(getenv("DOWNLOAD_RETRIES", "4")),
            "tidal_client_id": getenv("TIDAL_CLIENT_ID", "zU4XHVVkc2tDPo4t"),
            "tidal_client_secret": getenv(
                "TIDAL_CLIENT_SECRET", "VJKhDFqJPqvsPVNBV6ukXTJmwlvbttP7wlMlrc72se4="
            ),
        }
        self.data = self.load()

    def load(self) -> dict:
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    stored = load(f)
            except JSONDecodeError as e:
                raise ConfigError(
                    f"Config file {self.config_file} is not valid JSON: {e}",
                    details={"file_path": str(self.config_file)},
                ) from e
            if not isinstance(stored, dict):
                raise ConfigError(f"Config file {self.config_file} must hold a JSON object")
            return {**self.default_config, **stored}
        else:
            self.save(self.default_config)
            return dict(self.default_config)

    def save(self, data: dict) -> None:
        with open(self.config_file, "w", encoding="utf-8") as f:
            dump(data, f, indent=4)

    @property
    def library_path(self) -> Path:
        return Path(self.data["library_path"]).expanduser()

    @property
    def session_store_path(self) -> Path:
        return Path(self.data["session_store_path"]).expanduser()

    @property
    def database_file_path(self) -> Path:
        return Path(self.data["database_file_path"]).expanduser()

    @property
    def sync_interval(self) -> int:
        return int(self.data["sync_interval"])

    @property
    def download_retries(self) -> int:
        return int(self.data["download_retries"])
