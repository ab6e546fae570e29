"""
Backoff configuration for background refresh retries.
"""
from dataclasses import dataclass
from typing import Any, Dict, List


# Defaults (in milliseconds)
BACKOFF_CONFIG: Dict[str, Any] = {
    "base_ms": 1000,          # First retry 1s after a failed refresh
    "factor": 3,              # Each failure triples the delay
    "ceiling_ms": 65536,      # Past this, refresh is abandoned for the key
}


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Multiplicative backoff with an abandonment ceiling.

    With the defaults a failing key is retried after 1s, 3s and 9s and
    abandoned on the fourth failure, since the next step (81s) is past
    the 65.536s ceiling.
    """
    base_ms: int = BACKOFF_CONFIG["base_ms"]
    factor: float = BACKOFF_CONFIG["factor"]
    ceiling_ms: int = BACKOFF_CONFIG["ceiling_ms"]

    def __post_init__(self):
        if self.base_ms <= 0:
            raise ValueError(f"base_ms must be positive, got {self.base_ms}")
        if self.factor <= 1:
            raise ValueError(f"factor must be greater than 1, got {self.factor}")
        if self.ceiling_ms < self.base_ms:
            raise ValueError(
                f"ceiling_ms ({self.ceiling_ms}) must not be below base_ms ({self.base_ms})"
            )

    def grow(self, backoff_ms: int) -> int:
        """Next backoff after a failure at `backoff_ms`."""
        return int(backoff_ms * self.factor)

    def exceeds_ceiling(self, backoff_ms: int) -> bool:
        return backoff_ms > self.ceiling_ms

    def schedule(self) -> List[int]:
        """
        Retry delays a continuously failing key goes through before abandonment.

        Returns:
            Delays in milliseconds, in order
        """
        delays = []
        backoff = self.base_ms
        while not self.exceeds_ceiling(self.grow(backoff)):
            delays.append(backoff)
            backoff = self.grow(backoff)
        return delays
