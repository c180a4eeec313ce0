"""
Bounded in-process prediction log.

Keeps the last 100 prediction outcomes for diagnostics. Entries carry only
method, reason, scores and timings: never raw ad content or embeddings.
Successful predictions are recorded only with ``enable_debug_logging``;
failures are always recorded.
"""

import logging
import threading
from collections import deque
from typing import Deque, List

from orbcast.core.config import DEFAULT_FEATURE_FLAGS, FeatureFlags
from orbcast.core.models import PredictionLog, PredictionStats

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 100


class PredictionLogger:
    """Ring buffer of PredictionLog entries."""

    def __init__(self, flags: FeatureFlags = DEFAULT_FEATURE_FLAGS, max_entries: int = MAX_LOG_ENTRIES):
        self.flags = flags
        self._lock = threading.Lock()
        self._logs: Deque[PredictionLog] = deque(maxlen=max_entries)

    def log_prediction(self, entry: PredictionLog) -> bool:
        """Record an entry. Returns True if it was kept."""
        is_failure = entry.error is not None or entry.fallback_reason is not None
        if entry.error is not None:
            logger.warning(
                f"Prediction for {entry.ad_id} fell back to {entry.method.value}: {entry.error}"
            )

        if not (entry.error is not None or self.flags.enable_debug_logging):
            return False

        with self._lock:
            self._logs.append(entry)

        if self.flags.enable_debug_logging:
            reason = entry.fallback_reason.value if entry.fallback_reason else "none"
            logger.debug(
                f"Prediction {entry.ad_id}: method={entry.method.value} reason={reason} "
                f"final={entry.scores.final:.1f} time={entry.compute_time_ms:.0f}ms"
                + (" (fallback)" if is_failure else "")
            )
        return True

    def get_recent_logs(self, limit: int = 20) -> List[PredictionLog]:
        with self._lock:
            logs = list(self._logs)
        return logs[-limit:] if limit > 0 else []

    def get_prediction_stats(self) -> PredictionStats:
        """Totals, per-method counts, mean compute time and fallback rate."""
        with self._lock:
            logs = list(self._logs)

        if not logs:
            return PredictionStats()

        by_method = {}
        for log in logs:
            by_method[log.method.value] = by_method.get(log.method.value, 0) + 1

        fallbacks = sum(1 for log in logs if log.fallback_reason is not None)
        return PredictionStats(
            total=len(logs),
            by_method=by_method,
            avg_compute_time_ms=round(sum(log.compute_time_ms for log in logs) / len(logs)),
            fallback_rate=round(fallbacks / len(logs), 2),
        )

    def clear_logs(self) -> None:
        with self._lock:
            self._logs.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._logs)
