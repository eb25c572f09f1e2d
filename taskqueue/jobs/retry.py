"""
Retry policy: attempt count to backoff delay and exhaustion.
"""

from dataclasses import dataclass

from taskqueue.config.settings import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff. Pure, so it can be tested without I/O."""

    base_delay_s: float = 1.0
    max_delay_s: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_s=settings.job_backoff_base_ms / 1000,
            max_delay_s=float(settings.job_max_backoff_s),
        )

    def delay(self, attempt: int) -> float:
        """Seconds to hide a job after its ``attempt``-th failure (0-based)."""
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got: {attempt}")
        if self.base_delay_s <= 0:
            return 0.0
        # Large exponents saturate at the cap
        if attempt >= 64 or self.base_delay_s * (2**attempt) >= self.max_delay_s:
            return self.max_delay_s
        return self.base_delay_s * (2**attempt)

    @staticmethod
    def is_exhausted(attempt: int, max_attempts: int) -> bool:
        return attempt >= max_attempts
