"""Dashboard views computed on demand from links and visit events.

Every method is a read: nothing is cached or persisted, so the same data
always yields the same result. Ownership is checked by the caller.

Views
=====
::
    summary(owner_id)
    ├─ total_urls, total_clicks      COUNT / SUM over the owner's links
    ├─ top_urls                       clicks desc, newest first on ties
    ├─ recent_events                  timestamp desc across the owner's links
    └─ device_breakdown               GROUP BY device

    clicks_over_time(link_id, window)
    └─ events with timestamp >= now - window, one bucket per UTC day,
       ascending, days without events omitted

    breakdown(link_id, dimension)
    └─ GROUP BY device | browser | os

Lookback windows: day = 1 day, week = 7 days, month and year are calendar
shifts (Mar 31 minus one month is Feb 28/29), anything else falls back to
DEFAULT_LOOKBACK_DAYS.
"""

import calendar
import datetime
from collections import Counter
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.clock import as_utc, utcnow
from app.config import Settings
from app.enums import Dimension, Window
from app.exceptions import InvalidInput
from app.models import Link, VisitEvent
from app.schemas import (
    AnalyticsSummary,
    CategoryCount,
    DailyClicks,
    TopLink,
    VisitEventResponse,
)

__all__ = ["AggregationEngine", "shift_months", "window_start"]

DIMENSION_COLUMNS = {
    Dimension.DEVICE: VisitEvent.device,
    Dimension.BROWSER: VisitEvent.browser,
    Dimension.OS: VisitEvent.os,
}


def shift_months(moment: datetime.datetime, months: int) -> datetime.datetime:
    """Move ``moment`` back ``months`` calendar months, clamping the day to the target month."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def window_start(window: str | None, now: datetime.datetime, default_days: int = 30) -> datetime.datetime:
    parsed = Window.from_str(window)
    if parsed is Window.DAY:
        return now - datetime.timedelta(days=1)
    if parsed is Window.WEEK:
        return now - datetime.timedelta(days=7)
    if parsed is Window.MONTH:
        return shift_months(now, 1)
    if parsed is Window.YEAR:
        return shift_months(now, 12)
    return now - datetime.timedelta(days=default_days)


class AggregationEngine:
    def __init__(
        self,
        db: AsyncSession,
        base_url: str = "",
        top_links: int = 5,
        recent_events: int = 10,
        default_lookback_days: int = 30,
        now: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._db = db
        self._base_url = base_url
        self._top_links = top_links
        self._recent_events = recent_events
        self._default_lookback_days = default_lookback_days
        self._now = now

    @classmethod
    def from_settings(cls, db: AsyncSession, settings: Settings) -> "AggregationEngine":
        return cls(
            db,
            base_url=settings.BASE_URL,
            top_links=settings.SUMMARY_TOP_LINKS,
            recent_events=settings.SUMMARY_RECENT_EVENTS,
            default_lookback_days=settings.DEFAULT_LOOKBACK_DAYS,
        )

    async def summary(self, owner_id: str) -> AnalyticsSummary:
        totals = await self._db.execute(
            select(func.count(Link.id), func.coalesce(func.sum(Link.clicks), 0)).where(Link.owner_id == owner_id)
        )
        total_urls, total_clicks = totals.one()

        top = await self._db.execute(
            select(Link)
            .where(Link.owner_id == owner_id)
            .order_by(Link.clicks.desc(), Link.created_at.desc(), Link.id.desc())
            .limit(self._top_links)
        )
        top_urls = [
            TopLink(
                id=link.id,
                code=link.code,
                short_url=f"{self._base_url}/{link.code}",
                destination_url=link.destination_url,
                clicks=link.clicks,
            )
            for link in top.scalars()
        ]

        recent = await self._db.execute(
            select(VisitEvent)
            .join(Link, VisitEvent.link_id == Link.id)
            .where(Link.owner_id == owner_id)
            .order_by(VisitEvent.timestamp.desc(), VisitEvent.id.desc())
            .limit(self._recent_events)
        )
        recent_events = [VisitEventResponse.model_validate(event) for event in recent.scalars()]

        devices = await self._db.execute(
            select(VisitEvent.device, func.count(VisitEvent.id))
            .join(Link, VisitEvent.link_id == Link.id)
            .where(Link.owner_id == owner_id)
            .group_by(VisitEvent.device)
        )
        device_breakdown = [CategoryCount(category=device, count=count) for device, count in devices.all()]

        return AnalyticsSummary(
            total_urls=total_urls,
            total_clicks=int(total_clicks),
            top_urls=top_urls,
            recent_events=recent_events,
            device_breakdown=device_breakdown,
        )

    async def clicks_over_time(self, link_id: int, window: str | None = None) -> list[DailyClicks]:
        start = window_start(window, self._now(), self._default_lookback_days)
        result = await self._db.execute(
            select(VisitEvent.timestamp).where(VisitEvent.link_id == link_id, VisitEvent.timestamp >= start)
        )
        # one bucket per UTC calendar day, whatever the dialect stores
        per_day = Counter(as_utc(timestamp).date() for timestamp in result.scalars())
        return [DailyClicks(date=day, clicks=per_day[day]) for day in sorted(per_day)]

    async def breakdown(self, link_id: int, dimension: str) -> list[CategoryCount]:
        try:
            column = DIMENSION_COLUMNS[Dimension(dimension)]
        except ValueError:
            raise InvalidInput(f"Unknown breakdown dimension '{dimension}'") from None
        result = await self._db.execute(
            select(column, func.count(VisitEvent.id)).where(VisitEvent.link_id == link_id).group_by(column)
        )
        return [CategoryCount(category=category, count=count) for category, count in result.all()]

    async def events_for_link(self, link_id: int) -> list[VisitEventResponse]:
        result = await self._db.execute(
            select(VisitEvent)
            .where(VisitEvent.link_id == link_id)
            .order_by(VisitEvent.timestamp.desc(), VisitEvent.id.desc())
        )
        return [VisitEventResponse.model_validate(event) for event in result.scalars()]
