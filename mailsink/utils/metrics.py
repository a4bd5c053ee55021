"""
Metrics Collection Module
Tracks ingestion volume, policy substitutions and failures
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict


@dataclass
class Metrics:
    """
    Collects operational counters for the ingestion path.

    One instance is shared by a MessageSession factory; counters are only
    ever incremented, so a summary can be exported at any time.
    """

    messages_accepted: int = 0

    # Policy outcomes keyed by name: "oversized", "parse_failed", "redacted_attachment"
    outcomes: Counter = field(default_factory=Counter)

    # Bounded so a long-running process cannot grow this without limit
    processing_time_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=1000))

    errors_count: Counter = field(default_factory=Counter)

    start_time: datetime = field(default_factory=datetime.now)

    def record_message_accepted(self):
        """Record that a message was handed to storage."""
        self.messages_accepted += 1

    def record_outcome(self, outcome: str, count: int = 1):
        """
        Record a policy outcome.

        Example:
            metrics.record_outcome("oversized")
        """
        if count > 0:
            self.outcomes[outcome] += count

    def record_processing_time(self, time_ms: float):
        """Record how long one message took from DATA to storage."""
        self.processing_time_ms.append(time_ms)

    def record_error(self, error_type: str):
        """
        Record that an error occurred.

        Args:
            error_type: Type of error (e.g., "storage", "webhook")
        """
        self.errors_count[error_type] += 1

    def get_summary(self) -> Dict:
        """
        Get a summary of all metrics.

        Returns:
            Dictionary suitable for logging or export
        """
        stats = {}
        if self.processing_time_ms:
            sorted_times = sorted(self.processing_time_ms)
            n = len(sorted_times)
            stats = {
                "avg_ms": sum(sorted_times) / n,
                "min_ms": sorted_times[0],
                "max_ms": sorted_times[-1],
                "p50_ms": sorted_times[n // 2],
                "p95_ms": sorted_times[int(n * 0.95)] if n > 1 else sorted_times[0],
            }

        return {
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
            "messages_accepted": self.messages_accepted,
            "outcomes": dict(self.outcomes),
            "processing_time_stats": stats,
            "errors": dict(self.errors_count),
            "sample_count": len(self.processing_time_ms),
        }

    def reset(self):
        """Reset all metrics to initial state."""
        self.messages_accepted = 0
        self.outcomes.clear()
        self.processing_time_ms.clear()
        self.errors_count.clear()
        self.start_time = datetime.now()
