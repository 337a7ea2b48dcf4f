"""
Unit tests for history statistics aggregation (recency buckets, topic summaries, domains).
"""

from datetime import datetime, timedelta

import pytest

from history_rag.services.history_stats import DAY_MS, bucket_boundaries, compute_history_stats


def record(timestamp, domain="example.com", topic="Technology"):
    return {"timestamp": timestamp, "domain": domain, "topic": topic}


@pytest.mark.unit
def test_bucket_boundaries_start_at_local_midnight(now, ms):
    boundaries = bucket_boundaries(now)

    midnight = ms(datetime(2024, 5, 15))
    assert boundaries["today"] == midnight
    assert boundaries["yesterday"] == midnight - DAY_MS
    assert boundaries["last_week"] == midnight - 7 * DAY_MS
    assert boundaries["last_month"] == midnight - 30 * DAY_MS


@pytest.mark.unit
def test_each_entry_lands_in_exactly_one_bucket(now, ms):
    records = [
        record(ms(now - timedelta(hours=1))),  # today
        record(ms(datetime(2024, 5, 15, 0, 0))),  # today, exactly midnight
        record(ms(datetime(2024, 5, 14, 18, 0))),  # yesterday
        record(ms(now - timedelta(days=2))),  # last week
        record(ms(now - timedelta(days=10))),  # last month
        record(ms(now - timedelta(days=40))),  # older
        record(0),  # older
    ]

    stats = compute_history_stats(records, now)

    assert stats.time_ranges.today == 2
    assert stats.time_ranges.yesterday == 1
    assert stats.time_ranges.last_week == 1
    assert stats.time_ranges.last_month == 1
    assert stats.time_ranges.older == 2
    assert stats.time_ranges.total() == stats.total_entries == len(records)


@pytest.mark.unit
def test_three_entries_one_hour_two_days_forty_days(now, ms):
    stats = compute_history_stats(
        [
            record(ms(now - timedelta(hours=1))),
            record(ms(now - timedelta(days=2))),
            record(ms(now - timedelta(days=40))),
        ],
        now,
    )

    assert stats.total_entries == 3
    assert stats.time_ranges.model_dump() == {
        "today": 1,
        "yesterday": 0,
        "last_week": 1,
        "last_month": 0,
        "older": 1,
    }


@pytest.mark.unit
def test_domain_counts_sum_to_total():
    records = [
        record(1, domain="a.com"),
        record(2, domain="b.com"),
        record(3, domain="a.com"),
        {"timestamp": 4, "topic": "News"},
    ]

    stats = compute_history_stats(records, datetime(2024, 5, 15, 12))

    assert stats.domains == {"a.com": 2, "b.com": 1, "unknown-domain": 1}
    assert sum(stats.domains.values()) == stats.total_entries


@pytest.mark.unit
def test_topic_summaries_sorted_by_count_with_visit_bounds():
    records = [
        record(500, topic="News"),
        record(100, topic="Technology"),
        record(300, topic="Technology"),
        record(200, topic="Technology"),
        record(400, topic="Finance"),
        record(50, topic="News"),
    ]

    stats = compute_history_stats(records, datetime(2024, 5, 15, 12))

    assert [t.topic for t in stats.topics] == ["Technology", "News", "Finance"]

    technology = stats.topics[0]
    assert technology.count == 3
    assert technology.first_visit == 100
    assert technology.last_visit == 300

    news = stats.topics[1]
    assert (news.first_visit, news.last_visit) == (50, 500)
    assert sum(t.count for t in stats.topics) == stats.total_entries


@pytest.mark.unit
def test_topic_ties_keep_first_seen_order():
    records = [record(1, topic="Sports"), record(2, topic="Food"), record(3, topic="Travel")]

    stats = compute_history_stats(records, datetime(2024, 5, 15, 12))

    assert [t.topic for t in stats.topics] == ["Sports", "Food", "Travel"]


@pytest.mark.unit
def test_missing_topic_counted_as_uncategorized():
    stats = compute_history_stats([{"timestamp": 1, "domain": "a.com"}], datetime(2024, 5, 15, 12))

    assert stats.topics[0].topic == "Uncategorized"


@pytest.mark.unit
def test_empty_history():
    stats = compute_history_stats([], datetime(2024, 5, 15, 12))

    assert stats.total_entries == 0
    assert stats.domains == {}
    assert stats.topics == []
    assert stats.time_ranges.total() == 0
