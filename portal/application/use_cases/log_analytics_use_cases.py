# portal/application/use_cases/log_analytics_use_cases.py

"""
Anomaly detection over persisted request outcome logs.

The most recent window is compared against the preceding windows of the
same length. A metric whose current value lies ``threshold`` or more
standard deviations away from the baseline mean raises a warning alert.
"""

import logging
import statistics
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from portal.adapters.outbound.persistence.repositories.log_repository import log_repository
from portal.application.services.alert_service import AlertService
from portal.domain.models.analytics_domain_model import Anomaly, RequestWindowStats

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 2.0
ALERT_SOURCE = "anomaly-detection"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def detect(metric: str, current: Optional[float], history: Sequence[float], threshold: float) -> Optional[Anomaly]:
    """
    Compare ``current`` with the mean of ``history``.

    Returns:
        Anomaly when the deviation reaches ``threshold``, None otherwise or
        when there is not enough history to judge
    """
    if current is None or len(history) < 2:
        logger.info(f"Not enough historical data for {metric} anomaly detection")
        return None

    expected = statistics.mean(history)
    spread = statistics.stdev(history)
    if spread == 0:
        # flat baseline: any change at all stands out
        if current == expected:
            return None
        return Anomaly(metric=metric, value=current, expected=expected, deviation=float("inf"), threshold=threshold)

    deviation = abs(current - expected) / spread
    if deviation >= threshold:
        return Anomaly(metric=metric, value=current, expected=expected, deviation=deviation, threshold=threshold)
    return None


class AsyncLogAnalyticsService:

    def __init__(
            self,
            alert_service: AlertService,
            db_session: AsyncSession,
            repository=log_repository,
            clock: Callable[[], datetime] = _utcnow,
    ):
        self.alert_service = alert_service
        self.db = db_session
        self.repository = repository
        self.clock = clock

    async def collect(self, window: timedelta, baseline_windows: int) -> List[RequestWindowStats]:
        """
        Stats for the current window followed by ``baseline_windows``
        earlier windows, newest first.
        """
        now = self.clock()
        stats = []
        for i in range(baseline_windows + 1):
            end = now - window * i
            stats.append(await self.repository.window_stats(self.db, end - window, end))
        return stats

    async def detect_anomalies(
            self,
            window: timedelta = timedelta(hours=1),
            baseline_windows: int = 24,
            threshold: float = DEFAULT_THRESHOLD,
    ) -> List[Anomaly]:
        """
        Check error rate and mean response time of the latest window and
        raise a warning alert for each anomaly found.

        Args:
            window: Length of each window
            baseline_windows: Number of earlier windows forming the baseline
            threshold: Deviation, in standard deviations, that counts as an anomaly

        Returns:
            The anomalies found, possibly empty
        """
        logger.info(f"Starting anomaly detection | Window: {window} | Baseline windows: {baseline_windows}")
        current, *baseline = await self.collect(window, baseline_windows)

        anomalies = [
            anomaly for anomaly in (
                detect(
                    "error_rate",
                    current.error_rate,
                    [s.error_rate for s in baseline if s.error_rate is not None],
                    threshold,
                ),
                detect(
                    "response_time",
                    current.mean_duration_ms,
                    [s.mean_duration_ms for s in baseline if s.mean_duration_ms is not None],
                    threshold,
                ),
            )
            if anomaly is not None
        ]

        for anomaly in anomalies:
            await self.alert_service.alert_warning(self.describe(anomaly), source=ALERT_SOURCE,
                                                   metadata=anomaly.as_metadata())

        logger.info(f"Anomaly detection completed | Anomalies found: {len(anomalies)}")
        return anomalies

    @staticmethod
    def describe(anomaly: Anomaly) -> str:
        if anomaly.metric == "error_rate":
            return (f"Anomaly detected: Error rate is {anomaly.value:.2f}%, "
                    f"expected around {anomaly.expected:.2f}%")
        return (f"Anomaly detected: Response time is {anomaly.value:.0f}ms, "
                f"expected around {anomaly.expected:.0f}ms")
