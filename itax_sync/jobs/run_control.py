"""Run control: stop conditions and limits."""
import time
import logging
from typing import Optional
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RunControl:
    """Controls run stopping conditions."""

    stop_after_minutes: Optional[int] = None
    max_failures: Optional[int] = None
    fail_fast: bool = False

    # Internal state
    start_time: float = field(default_factory=time.time)
    failure_count: int = 0
    consecutive_failures: int = 0
    last_failure_time: Optional[float] = None

    def should_stop(self) -> tuple[bool, Optional[str]]:
        """Check if run should stop. Returns (should_stop, reason)."""
        elapsed_minutes = (time.time() - self.start_time) / 60

        if self.fail_fast and self.failure_count > 0:
            return True, "Stopping on first failure (continue_on_error disabled)"

        if self.stop_after_minutes and elapsed_minutes >= self.stop_after_minutes:
            return True, f"Reached stop_after_minutes={self.stop_after_minutes}"

        if self.max_failures and self.failure_count >= self.max_failures:
            return True, f"Reached max_failures={self.max_failures}"

        return False, None

    def record_failure(self) -> None:
        """Record a company that failed after all retries."""
        self.failure_count += 1
        self.consecutive_failures += 1
        self.last_failure_time = time.time()

    def record_success(self) -> None:
        """Record a successful (or skipped) company."""
        self.consecutive_failures = 0

    def get_summary(self) -> dict:
        """Get summary statistics."""
        elapsed_minutes = (time.time() - self.start_time) / 60
        return {
            "elapsed_minutes": round(elapsed_minutes, 2),
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
        }
