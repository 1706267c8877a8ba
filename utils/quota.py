"""
Analysis Quota Tracking

Enforces the monthly cap on billable analyses. The queue driver asks
`can_submit_analysis()` before every advance and calls `record_usage()` once
an attempt turns out to be billable.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol

from config import MONTHLY_ANALYSIS_LIMIT

logger = logging.getLogger(__name__)

ANALYSIS_KIND = "analysis"


class QuotaAuthority(Protocol):
    def can_submit_analysis(self) -> bool:
        ...

    def record_usage(self, kind: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        ...


class UsageLog(Protocol):
    def record_usage(self, kind: str, metadata: Dict[str, Any], timestamp: datetime) -> None:
        ...

    def count_usage(self, kind: str, since: datetime) -> int:
        ...


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class MonthlyQuota:
    """
    Monthly analysis cap backed by a persistent usage log.

    Usage:
        quota = MonthlyQuota(store, monthly_limit=10)
        if quota.can_submit_analysis():
            ...
            quota.record_usage("analysis", {"job_id": job.id})
    """

    def __init__(
        self,
        usage_log: UsageLog,
        monthly_limit: int = MONTHLY_ANALYSIS_LIMIT,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.usage_log = usage_log
        self.monthly_limit = monthly_limit
        self._clock = clock
        self.denied_count = 0

    def used_this_month(self) -> int:
        return self.usage_log.count_usage(ANALYSIS_KIND, month_start(self._clock()))

    def remaining(self) -> int:
        return max(0, self.monthly_limit - self.used_this_month())

    def can_submit_analysis(self) -> bool:
        """True if another billable analysis fits in this month's cap"""
        used = self.used_this_month()
        if used >= self.monthly_limit:
            self.denied_count += 1
            logger.warning(f"[QUOTA] EXCEEDED: {used}/{self.monthly_limit} analyses this month")
            return False
        return True

    def record_usage(self, kind: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.usage_log.record_usage(kind, metadata or {}, self._clock())
        if kind == ANALYSIS_KIND:
            logger.info(f"[QUOTA] Recorded analysis ({self.used_this_month()}/{self.monthly_limit} this month)")

    def set_monthly_limit(self, limit: int) -> None:
        """Update the monthly limit (e.g. after a plan change)"""
        self.monthly_limit = limit

    def get_status(self) -> Dict[str, Any]:
        """Current quota status for the API"""
        used = self.used_this_month()
        return {
            "monthly_limit": self.monthly_limit,
            "used": used,
            "remaining": max(0, self.monthly_limit - used),
            "denied_count": self.denied_count,
        }
