"""Pharmacy dashboard statistics.

Everything here is derived at query time from the pickup_requests table;
there are no stored counters to drift out of sync with the requests.

Completion windows are calendar-aligned in a configurable timezone:
- today: since local midnight
- week: since Monday 00:00 of the current ISO week
- month: since 00:00 on the 1st of the current month
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from pharmapickup.services.store import PickupRequestStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from pharmapickup.db.models.base import PickupStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PharmacyStats:
    """Snapshot of a pharmacy's pickup workload.

    Attributes:
        pharmacy_id: Pharmacy the figures belong to.
        count_per_status: Current number of requests in every status.
        today_completed: Requests completed since local midnight.
        week_completed: Requests completed since the start of the ISO week.
        month_completed: Requests completed since the 1st of the month.
        generated_at: Reference time the windows were computed from.
    """

    pharmacy_id: int
    count_per_status: dict[PickupStatus, int]
    today_completed: int
    week_completed: int
    month_completed: int
    generated_at: datetime


@dataclass(frozen=True, slots=True)
class CompletionWindows:
    """Start instants (UTC) of the three completion windows."""

    day_start: datetime
    week_start: datetime
    month_start: datetime


def completion_windows(now: datetime, tz: ZoneInfo) -> CompletionWindows:
    """Compute window starts for a reference time.

    Args:
        now: Aware reference time.
        tz: Timezone in which days, weeks and months are aligned.
    """
    local = now.astimezone(tz)
    day_start = datetime(local.year, local.month, local.day, tzinfo=tz)
    week_start_date = local.date() - timedelta(days=local.weekday())
    week_start = datetime(
        week_start_date.year, week_start_date.month, week_start_date.day, tzinfo=tz
    )
    month_start = datetime(local.year, local.month, 1, tzinfo=tz)
    return CompletionWindows(
        day_start=day_start.astimezone(UTC),
        week_start=week_start.astimezone(UTC),
        month_start=month_start.astimezone(UTC),
    )


class PharmacyStatsService:
    """Read-only aggregation over a pharmacy's requests."""

    def __init__(self, session: AsyncSession, *, timezone: str = "UTC") -> None:
        self._store = PickupRequestStore(session)
        self._tz = ZoneInfo(timezone)

    async def pharmacy_stats(self, pharmacy_id: int, now: datetime | None = None) -> PharmacyStats:
        """Build the stats snapshot for one pharmacy.

        Args:
            pharmacy_id: Pharmacy to aggregate.
            now: Reference time; defaults to the current UTC time.

        Returns:
            PharmacyStats with an entry for every status.
        """
        now = now or datetime.now(UTC)
        windows = completion_windows(now, self._tz)

        counts = await self._store.count_by_status(pharmacy_id)
        today = await self._store.count_completed_since(pharmacy_id, windows.day_start, now)
        week = await self._store.count_completed_since(pharmacy_id, windows.week_start, now)
        month = await self._store.count_completed_since(pharmacy_id, windows.month_start, now)

        logger.debug(
            "Pharmacy stats computed",
            extra={"pharmacy_id": pharmacy_id, "today": today, "week": week, "month": month},
        )

        return PharmacyStats(
            pharmacy_id=pharmacy_id,
            count_per_status=counts,
            today_completed=today,
            week_completed=week,
            month_completed=month,
            generated_at=now,
        )
