from __future__ import annotations
from dataclasses import dataclass
from time import sleep
from typing import Callable, TypeVar
from .errors import AuthorizationError, RequestError
from .utils.logging import setup_logging

logger = setup_logging(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-count retry for remote calls.

    ``delay`` is the pause before the second attempt and is multiplied by
    ``backoff`` after every failure. A delay of 0 retries immediately.
    """

    max_attempts: int = 4
    delay: float = 0.0
    backoff: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def call(self, fn: Callable[..., T], *args, description: str = "request") -> T:
        wait = self.delay
        last_error: RequestError | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args)
            except AuthorizationError:
                raise
            except RequestError as e:
                last_error = e
                logger.info(
                    f"Attempt {attempt}/{self.max_attempts} for {description} failed: {e}"
                )

            if attempt < self.max_attempts and wait > 0:
                sleep(wait)
                wait *= self.backoff

        raise RequestError(
            f"Failed {description} after {self.max_attempts} attempts: {last_error}",
            details={"attempts": self.max_attempts},
        ) from last_error
