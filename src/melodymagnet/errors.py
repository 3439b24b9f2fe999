"""
Exception classes for melodymagnet.

Hierarchy:
    MelodyMagnetError (base)
        ConfigError - configuration file issues
        StorageError - sync ledger failures, fatal for the current run
        SnapshotError - album snapshot cannot be decoded
        RequestError - a remote catalog call failed
            AuthorizationError - the remote rejected our credential
        LibraryError - writing files or tags into the local library failed
        RunInProgress - another run holds the run lock
"""
from __future__ import annotations


class MelodyMagnetError(Exception):
    """
    Base exception for all melodymagnet errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (album id, url...).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigError(MelodyMagnetError):
    pass


class StorageError(MelodyMagnetError):
    """
    Raised when the sync ledger cannot be read or written.

    This is a CRITICAL error: the orchestrator never catches it, so the
    current run aborts and the scheduler/operator sees the failure.
    """


class SnapshotError(MelodyMagnetError, ValueError):
    pass


class RequestError(MelodyMagnetError):
    """
    A call to the remote catalog failed.

    Recovered at the call site with a bounded retry; when retries are
    exhausted the album or track is skipped for this run.
    """


class AuthorizationError(RequestError):
    """
    The remote catalog rejected the credential (expired or revoked).

    Retry policies re-raise it on the first occurrence; the orchestrator
    refreshes the session instead.
    """


class LibraryError(MelodyMagnetError):
    pass


class RunInProgress(MelodyMagnetError):
    pass
