"""Compliance statistics — read-only reduction over all retention flags.

``compute_stats`` is a pure function of the flag set and the reference
day, so identical inputs always produce identical output. The timeline
always has one entry per day (oldest first, today last) even when every
count is zero, so charts stay continuous.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.config import settings
from caretrack.errors import store_errors
from caretrack.models.enums import FlagAction
from caretrack.models.retention import RetentionFlag
from caretrack.schemas.compliance import DataTypeStats, RetentionStats, TimelineEntry

logger = logging.getLogger(__name__)

# Rough per-record footprint; storage savings are an estimate, not a measurement
STORAGE_ESTIMATES_KB: dict[str, int] = {
    "glucose_readings": 1,
    "meal_logs": 5,
    "exercise_logs": 2,
    "medication_logs": 1,
    "appointments": 2,
    "prescriptions": 3,
    "audit_logs": 1,
}
DEFAULT_RECORD_KB = 1


class FlagLike(Protocol):
    data_type: str
    action_taken: str
    flagged_at: datetime
    reviewed_at: datetime | None


def _utc_day(value: datetime | None) -> date | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(UTC).date()


def compute_stats(
    flags: Iterable[FlagLike],
    today: date | None = None,
    days: int | None = None,
) -> RetentionStats:
    """Reduce a flag set to dashboard totals, per-type counts and a daily timeline."""
    today = today or datetime.now(UTC).date()
    days = days or settings.retention.timeline_days

    totals: Counter[str] = Counter()
    by_type: dict[str, DataTypeStats] = {}
    flagged_per_day: Counter[date] = Counter()
    reviewed_per_day: dict[str, Counter[date]] = {
        FlagAction.DELETED.value: Counter(),
        FlagAction.RETAINED.value: Counter(),
    }
    storage_kb = 0

    for flag in flags:
        action = flag.action_taken
        totals[action] += 1

        type_stats = by_type.setdefault(flag.data_type, DataTypeStats())
        type_stats.flagged += 1
        if action == FlagAction.DELETED.value:
            type_stats.deleted += 1
            storage_kb += STORAGE_ESTIMATES_KB.get(flag.data_type, DEFAULT_RECORD_KB)
        elif action == FlagAction.RETAINED.value:
            type_stats.retained += 1

        flagged_day = _utc_day(flag.flagged_at)
        if flagged_day is not None:
            flagged_per_day[flagged_day] += 1
        reviewed_day = _utc_day(flag.reviewed_at)
        if reviewed_day is not None and action in reviewed_per_day:
            reviewed_per_day[action][reviewed_day] += 1

    timeline: list[TimelineEntry] = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        timeline.append(TimelineEntry(
            date=day.isoformat(),
            flagged=flagged_per_day[day],
            deleted=reviewed_per_day[FlagAction.DELETED.value][day],
            retained=reviewed_per_day[FlagAction.RETAINED.value][day],
        ))

    return RetentionStats(
        total_flagged=sum(totals.values()),
        total_deleted=totals[FlagAction.DELETED.value],
        total_retained=totals[FlagAction.RETAINED.value],
        total_pending=totals[FlagAction.PENDING.value],
        estimated_storage_saved=storage_kb,
        by_data_type=dict(sorted(by_type.items())),
        timeline=timeline,
    )


class ComplianceStatsAggregator:
    """Loads the flag set and reduces it with ``compute_stats``."""

    async def compute(self, db: AsyncSession, today: date | None = None) -> RetentionStats:
        with store_errors():
            result = await db.execute(
                select(
                    RetentionFlag.data_type,
                    RetentionFlag.action_taken,
                    RetentionFlag.flagged_at,
                    RetentionFlag.reviewed_at,
                ).order_by(RetentionFlag.flagged_at.desc())
            )
            rows: list[Any] = list(result.all())
        stats = compute_stats(rows, today=today)
        logger.debug("Computed retention stats over %d flags", stats.total_flagged)
        return stats


# Module-level singleton
stats_aggregator = ComplianceStatsAggregator()
