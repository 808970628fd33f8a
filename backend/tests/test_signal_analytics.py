from datetime import date, datetime, timedelta

import pytest

from personaflow.services.signal_analytics import DateRange, SignalAnalyticsService, parse_date_range


TODAY = date(2026, 3, 1)


def emit(store, event_type, at, visitor_hash="v1", session_id="s1", post_id=0, value=None, meta=None):
    return store.add(
        visitor_hash=visitor_hash,
        session_id=session_id,
        event_type=event_type,
        target_id=post_id,
        event_value=value,
        meta=meta,
        created_at=at,
    )


@pytest.fixture
def day_range() -> DateRange:
    return DateRange(TODAY, TODAY)


@pytest.fixture
def analytics(event_store) -> SignalAnalyticsService:
    return SignalAnalyticsService(event_store)


def test_preset_period_counts_today():
    assert parse_date_range("7d", today=TODAY) == DateRange(date(2026, 2, 23), TODAY)
    assert parse_date_range("1d", today=TODAY) == DateRange(TODAY, TODAY)


@pytest.mark.parametrize("period", [None, "", "weekly", "0d", "-5d"])
def test_unrecognized_period_defaults_to_thirty_days(period):
    assert parse_date_range(period, today=TODAY) == DateRange(date(2026, 1, 31), TODAY)


def test_custom_range_and_fallbacks():
    assert parse_date_range("7d", "2026-01-01", "2026-01-10", today=TODAY) == DateRange(
        date(2026, 1, 1), date(2026, 1, 10)
    )
    assert parse_date_range(None, "2026-01-10", "2026-01-01", today=TODAY).start == date(2026, 1, 31)
    assert parse_date_range(None, "yesterday", "2026-01-01", today=TODAY).start == date(2026, 1, 31)
    # 只给一端时按 period 处理
    assert parse_date_range("7d", "2026-01-01", None, today=TODAY).start == date(2026, 2, 23)


def test_range_covers_whole_days():
    r = DateRange(date(2026, 2, 27), TODAY)
    assert r.since == datetime(2026, 2, 27)
    assert r.until.date() == TODAY
    assert r.until > datetime(2026, 3, 1, 23, 59, 59)
    assert r.days() == [date(2026, 2, 27), date(2026, 2, 28), TODAY]


@pytest.mark.asyncio
async def test_engagement_funnel(event_store, analytics, day_range, now):
    emit(event_store, "page_view", now)
    emit(event_store, "page_view", now)
    emit(event_store, "page_view", now - timedelta(days=1))
    emit(event_store, "dwell_time", now, value=15)
    emit(event_store, "dwell_time", now, value=14.9)
    emit(event_store, "scroll_depth", now, value=75)
    emit(event_store, "scroll_depth", now, value=25)
    emit(event_store, "read_completion", now)
    emit(event_store, "like", now)
    emit(event_store, "related_post_click", now)

    funnel = await analytics.get_funnel(day_range)

    assert funnel["steps"] == [
        {"label": "Page Views", "count": 2},
        {"label": "15s+ Dwell Time", "count": 1},
        {"label": "50%+ Scroll Depth", "count": 1},
        {"label": "Read Completion", "count": 1},
        {"label": "Rec Click / Action", "count": 2},
    ]


@pytest.mark.asyncio
async def test_commerce_funnel_and_top_products(event_store, analytics, day_range, now):
    for visitor in ("a", "b", "c", "d"):
        emit(event_store, "product_view", now, visitor_hash=visitor, post_id=500)
        emit(event_store, "add_to_cart", now, visitor_hash=visitor, post_id=500)
    emit(event_store, "checkout_start", now, visitor_hash="a", post_id=500)
    emit(event_store, "purchase_complete", now, visitor_hash="a", post_id=500)
    emit(event_store, "product_view", now, visitor_hash="b", post_id=501)

    report = await analytics.get_commerce(day_range)

    assert [step["count"] for step in report["funnel"]] == [5, 4, 1, 1]
    assert report["cart_abandonment_rate"] == 0.75
    # 只有 a 下单，区间内共 4 条事件
    assert report["avg_order_signals"] == 4.0
    assert report["top_products"] == [
        {"post_id": 500, "signals": 9, "purchases": 1},
        {"post_id": 501, "signals": 1, "purchases": 0},
    ]


@pytest.mark.asyncio
async def test_abandonment_rate_is_clamped(event_store, analytics, day_range, now):
    emit(event_store, "add_to_cart", now, post_id=500)
    emit(event_store, "purchase_complete", now, post_id=500)
    emit(event_store, "checkout_complete", now, post_id=500)

    report = await analytics.get_commerce(day_range)
    assert report["cart_abandonment_rate"] == 0.0

    empty = await analytics.get_commerce(DateRange(date(2025, 1, 1), date(2025, 1, 1)))
    assert empty["cart_abandonment_rate"] == 0.0
    assert empty["avg_order_signals"] == 0.0
    assert empty["top_products"] == []


@pytest.mark.asyncio
async def test_session_insights(event_store, analytics, day_range, now):
    emit(event_store, "device_type", now, visitor_hash="a", session_id="s1", meta={"device": "Mobile"})
    emit(event_store, "device_type", now, visitor_hash="b", session_id="s2", meta={"device": "desktop"})
    emit(event_store, "device_type", now, visitor_hash="c", session_id="s3", meta={"device": "console"})
    emit(event_store, "referral_source", now, visitor_hash="a", session_id="s1", meta={"source": "organic"})
    emit(event_store, "session_depth", now, visitor_hash="a", session_id="s1", value=3)
    emit(event_store, "session_depth", now, visitor_hash="b", session_id="s2", value=4)
    emit(event_store, "return_visitor", now, visitor_hash="a", session_id="s1")
    emit(event_store, "return_visitor", now, visitor_hash="a", session_id="s1")

    insights = await analytics.get_sessions(day_range)

    assert insights["devices"] == {"desktop": 1, "mobile": 1, "tablet": 0}
    assert insights["referrals"]["organic"] == 1
    assert insights["referrals"]["email"] == 0
    assert insights["avg_session_depth"] == 3.5
    assert insights["return_visitor_pct"] == round(1 / 3, 4)
    assert insights["total_sessions"] == 3
    assert insights["avg_signals_per_session"] == round(8 / 3, 2)


@pytest.mark.asyncio
async def test_session_insights_empty_range(analytics, day_range):
    insights = await analytics.get_sessions(day_range)
    assert insights["total_sessions"] == 0
    assert insights["avg_signals_per_session"] == 0.0
    assert insights["return_visitor_pct"] == 0.0


@pytest.mark.asyncio
async def test_content_ranking_and_sorts(event_store, analytics, day_range, now):
    # 101: 3 条信号、1 个访客；102: 2 条信号、2 个访客、读完率 1.0
    emit(event_store, "page_view", now, visitor_hash="a", post_id=101)
    emit(event_store, "page_view", now, visitor_hash="a", post_id=101)
    emit(event_store, "dwell_time", now, visitor_hash="a", post_id=101, value=40)
    emit(event_store, "page_view", now, visitor_hash="a", post_id=102)
    emit(event_store, "read_completion", now, visitor_hash="b", post_id=102)
    emit(event_store, "page_view", now, visitor_hash="a", post_id=0)

    by_signals = await analytics.get_content(day_range)
    assert [p["post_id"] for p in by_signals["posts"]] == [101, 102]
    assert by_signals["posts"][0] == {
        "post_id": 101,
        "total_signals": 3,
        "unique_visitors": 1,
        "avg_dwell_time": 40.0,
        "read_completion_rate": 0.0,
    }

    by_visitors = await analytics.get_content(day_range, sort="visitors")
    assert [p["post_id"] for p in by_visitors["posts"]] == [102, 101]

    by_read_rate = await analytics.get_content(day_range, sort="read_rate")
    assert by_read_rate["posts"][0]["read_completion_rate"] == 1.0

    with pytest.raises(ValueError):
        await analytics.get_content(day_range, sort="random")


@pytest.mark.asyncio
async def test_timeline_zero_fills_missing_days(event_store, analytics, now):
    emit(event_store, "page_view", now, visitor_hash="a")
    emit(event_store, "page_view", now, visitor_hash="a")
    emit(event_store, "page_view", now, visitor_hash="b")
    emit(event_store, "page_view", now - timedelta(days=2), visitor_hash="a")

    timeline = await analytics.get_timeline(DateRange(date(2026, 2, 27), TODAY))

    assert timeline["labels"] == ["2026-02-27", "2026-02-28", "2026-03-01"]
    assert timeline["datasets"]["events"] == [1, 0, 3]
    assert timeline["datasets"]["visitors"] == [1, 0, 2]
