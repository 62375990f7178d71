"""Exponential backoff policy for stream reconnects."""

from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a bounded number of retries.

    The delay before retry ``attempt`` (0-based) is
    ``initial_delay * multiplier ** attempt`` capped at ``max_delay``.
    """

    initial_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_retries: int = 5

    def __post_init__(self):
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must not be negative")
        if self.multiplier < 1:
            raise ValueError("Backoff multiplier must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")

    def delay(self, attempt: int) -> float:
        """Seconds to wait before the given retry attempt."""
        return min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)

    def delays(self) -> Iterator[float]:
        """Iterate over every delay the policy allows."""
        for attempt in range(self.max_retries):
            yield self.delay(attempt)
