"""AggregationEngine tests over hand-placed visit events."""

import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.aggregation import AggregationEngine, shift_months, window_start
from app.exceptions import InvalidInput
from app.models import Link, VisitEvent

UTC = datetime.timezone.utc
NOW = datetime.datetime(2024, 5, 20, 12, 0, tzinfo=UTC)


def _at(*args: int) -> datetime.datetime:
    return datetime.datetime(*args, tzinfo=UTC)


async def _link(db: AsyncSession, code: str, **fields) -> Link:
    link = Link(code=code, destination_url=f"https://example.com/{code}", **fields)
    db.add(link)
    await db.commit()
    return link


async def _events(db: AsyncSession, link: Link, *rows: dict) -> None:
    db.add_all([VisitEvent(link_id=link.id, **row) for row in rows])
    await db.commit()


@pytest.fixture
def engine(db_session: AsyncSession) -> AggregationEngine:
    return AggregationEngine(db_session, base_url="http://sho.rt", now=lambda: NOW)


def test_window_start_lengths() -> None:
    assert window_start("day", NOW) == NOW - datetime.timedelta(days=1)
    assert window_start("WEEK", NOW) == NOW - datetime.timedelta(days=7)
    assert window_start("month", NOW) == _at(2024, 4, 20, 12)
    assert window_start("year", NOW) == _at(2023, 5, 20, 12)
    assert window_start("fortnight", NOW) == NOW - datetime.timedelta(days=30)
    assert window_start(None, NOW, default_days=10) == NOW - datetime.timedelta(days=10)


def test_shift_months_clamps_to_month_end() -> None:
    assert shift_months(_at(2024, 3, 31), 1) == _at(2024, 2, 29)
    assert shift_months(_at(2024, 2, 29), 12) == _at(2023, 2, 28)
    assert shift_months(_at(2024, 1, 15), 1) == _at(2023, 12, 15)


@pytest.mark.asyncio
async def test_clicks_over_time_week_buckets_per_utc_day(db_session: AsyncSession, engine: AggregationEngine) -> None:
    link = await _link(db_session, "series")
    other = await _link(db_session, "other")
    await _events(
        db_session,
        link,
        {"timestamp": _at(2024, 5, 15, 0, 0)},
        {"timestamp": _at(2024, 5, 15, 9, 30)},
        {"timestamp": _at(2024, 5, 15, 23, 59, 59)},
        {"timestamp": _at(2024, 5, 16, 8, 0)},
        {"timestamp": _at(2024, 5, 16, 20, 0)},
        {"timestamp": _at(2024, 5, 13, 11, 59)},
        {"timestamp": _at(2024, 4, 1, 12, 0)},
    )
    await _events(db_session, other, {"timestamp": _at(2024, 5, 15, 12, 0)})

    series = await engine.clicks_over_time(link.id, "week")

    assert [(point.date, point.clicks) for point in series] == [
        (datetime.date(2024, 5, 15), 3),
        (datetime.date(2024, 5, 16), 2),
    ]


@pytest.mark.asyncio
async def test_clicks_over_time_unknown_window_uses_thirty_days(
    db_session: AsyncSession, engine: AggregationEngine
) -> None:
    link = await _link(db_session, "lookback")
    await _events(
        db_session,
        link,
        {"timestamp": _at(2024, 4, 21, 12, 0)},
        {"timestamp": _at(2024, 4, 20, 11, 0)},
        {"timestamp": _at(2024, 5, 19, 12, 0)},
    )

    series = await engine.clicks_over_time(link.id, "quarter")

    assert [point.date for point in series] == [datetime.date(2024, 4, 21), datetime.date(2024, 5, 19)]


@pytest.mark.asyncio
async def test_clicks_over_time_is_repeatable(db_session: AsyncSession, engine: AggregationEngine) -> None:
    link = await _link(db_session, "stable")
    await _events(db_session, link, {"timestamp": _at(2024, 5, 20, 1, 0)}, {"timestamp": _at(2024, 5, 19, 23, 0)})

    first = await engine.clicks_over_time(link.id, "day")
    second = await engine.clicks_over_time(link.id, "day")

    assert first == second
    assert [(point.date, point.clicks) for point in first] == [
        (datetime.date(2024, 5, 19), 1),
        (datetime.date(2024, 5, 20), 1),
    ]


@pytest.mark.asyncio
async def test_breakdown_by_dimension(db_session: AsyncSession, engine: AggregationEngine) -> None:
    link = await _link(db_session, "split")
    await _events(
        db_session,
        link,
        {"device": "mobile", "browser": "Safari", "os": "iOS"},
        {"device": "mobile", "browser": "Chrome", "os": "Android"},
        {"device": "desktop", "browser": "Chrome", "os": "Windows"},
        {},
    )

    devices = {item.category: item.count for item in await engine.breakdown(link.id, "device")}
    browsers = {item.category: item.count for item in await engine.breakdown(link.id, "browser")}
    systems = {item.category: item.count for item in await engine.breakdown(link.id, "os")}

    assert devices == {"mobile": 2, "desktop": 1, "unknown": 1}
    assert browsers == {"Safari": 1, "Chrome": 2, "unknown": 1}
    assert systems == {"iOS": 1, "Android": 1, "Windows": 1, "unknown": 1}


@pytest.mark.asyncio
async def test_breakdown_rejects_unknown_dimension(db_session: AsyncSession, engine: AggregationEngine) -> None:
    link = await _link(db_session, "dims")
    with pytest.raises(InvalidInput):
        await engine.breakdown(link.id, "country")


@pytest.mark.asyncio
async def test_events_for_link_newest_first(db_session: AsyncSession, engine: AggregationEngine) -> None:
    link = await _link(db_session, "raw")
    await _events(
        db_session,
        link,
        {"timestamp": _at(2024, 5, 1), "referrer": "https://a.example"},
        {"timestamp": _at(2024, 5, 3), "referrer": "https://c.example"},
        {"timestamp": _at(2024, 5, 2), "referrer": "https://b.example"},
    )

    events = await engine.events_for_link(link.id)

    assert [event.referrer for event in events] == ["https://c.example", "https://b.example", "https://a.example"]
    assert events[0].timestamp == _at(2024, 5, 3)


@pytest.mark.asyncio
async def test_summary_for_owner(db_session: AsyncSession, engine: AggregationEngine) -> None:
    base = _at(2024, 1, 1)
    links = {}
    for offset, (code, clicks) in enumerate([("a", 10), ("b", 10), ("c", 3), ("d", 0), ("e", 1), ("f", 2)]):
        links[code] = await _link(
            db_session, code, owner_id="alice", clicks=clicks, created_at=base + datetime.timedelta(days=offset)
        )
    foreign = await _link(db_session, "z", owner_id="bob", clicks=100)

    await _events(
        db_session,
        links["a"],
        *[{"timestamp": _at(2024, 5, 1, hour), "device": "mobile"} for hour in range(6)],
    )
    await _events(
        db_session,
        links["c"],
        *[{"timestamp": _at(2024, 5, 2, hour), "device": "desktop"} for hour in range(6)],
    )
    await _events(db_session, foreign, {"timestamp": _at(2024, 5, 10), "device": "tablet"})

    summary = await engine.summary("alice")

    assert summary.total_urls == 6
    assert summary.total_clicks == 26
    assert [link.code for link in summary.top_urls] == ["b", "a", "c", "f", "e"]
    assert summary.top_urls[0].short_url == "http://sho.rt/b"
    assert len(summary.recent_events) == 10
    timestamps = [event.timestamp for event in summary.recent_events]
    assert timestamps == sorted(timestamps, reverse=True)
    assert timestamps[0] == _at(2024, 5, 2, 5)
    assert all(event.link_id != foreign.id for event in summary.recent_events)
    assert {item.category: item.count for item in summary.device_breakdown} == {"mobile": 6, "desktop": 6}


@pytest.mark.asyncio
async def test_summary_for_owner_without_links(engine: AggregationEngine) -> None:
    summary = await engine.summary("nobody")
    assert summary.total_urls == 0
    assert summary.total_clicks == 0
    assert summary.top_urls == []
    assert summary.recent_events == []
    assert summary.device_breakdown == []
