from __future__ import annotations
import logging
import sys
from os import getenv
from pathlib import Path


def log_dir() -> Path:
    override = getenv("MELODYMAGNET_LOG_DIR")
    return Path(override) if override else Path.home() / ".cache" / "melodymagnet"


def setup_logging(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    # One set of handlers per logger
    if logger.handlers:
        return logger

    directory = log_dir()
    directory.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    file_handler = logging.FileHandler(directory / "melodymagnet.log")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    return logger
