"""Progress tracking for an extraction run."""
import time
import logging
from collections import defaultdict
from typing import Dict

logger = logging.getLogger(__name__)


class ExtractionRun:
    """Per-run company counters with rate and ETA."""

    def __init__(self, total: int):
        self.total = total
        self.start_time = time.time()
        self.counters: Dict[str, int] = defaultdict(int)

    def increment(self, key: str, amount: int = 1) -> None:
        """Increment a counter."""
        self.counters[key] += amount

    @property
    def processed(self) -> int:
        return self.counters["successful"] + self.counters["skipped"] + self.counters["failed"]

    def get_rate(self) -> float:
        """Companies per minute."""
        elapsed = time.time() - self.start_time
        if elapsed > 0:
            return self.processed / elapsed * 60
        return 0.0

    def format_eta(self) -> str:
        """Format ETA as human-readable string."""
        rate = self.get_rate()
        if rate <= 0:
            return "?"
        eta_minutes = (self.total - self.processed) / rate
        if eta_minutes < 60:
            return f"{eta_minutes:.1f}m"
        return f"{eta_minutes / 60:.1f}h"

    def report(self) -> None:
        """Log current progress."""
        processed = self.processed
        logger.info(
            f"Progress: {processed}/{self.total} ({processed * 100 // self.total if self.total > 0 else 0}%) | "
            f"Rate: {self.get_rate():.2f}/min | "
            f"ETA: {self.format_eta()} | "
            f"OK: {self.counters['successful']} | "
            f"Skipped: {self.counters['skipped']} | "
            f"Failed: {self.counters['failed']}"
        )

    def get_summary(self) -> Dict:
        """Get summary statistics."""
        return {
            "total": self.total,
            "successful": self.counters["successful"],
            "skipped": self.counters["skipped"],
            "failed": self.counters["failed"],
            "periods_processed": self.counters["periods_processed"],
            "periods_failed": self.counters["periods_failed"],
            "elapsed_seconds": round(time.time() - self.start_time, 1),
        }
