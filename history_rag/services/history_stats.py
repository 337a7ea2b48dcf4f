"""
History statistics aggregation.

Reduces a user's stored entry metadata into domain counts, per-topic summaries
and recency buckets. Buckets are relative to local midnight of `now` and are
exclusive: each entry is counted once, in the most recent bucket it falls in.
"""

from datetime import datetime
from typing import Any, Dict, Iterable

from history_rag.models.history import HistoryStats, TimeRangeCounts, TopicSummary, UNCATEGORIZED_TOPIC
from history_rag.services.url_classifier import UNKNOWN_DOMAIN

DAY_MS = 24 * 60 * 60 * 1000


def bucket_boundaries(now: datetime) -> Dict[str, int]:
    """
    Compute bucket start times (epoch ms) for a given "now".

    Naive datetimes are interpreted in local time.
    """
    today_start = int(now.replace(hour=0, minute=0, second=0, microsecond=0).timestamp() * 1000)
    return {
        "today": today_start,
        "yesterday": today_start - DAY_MS,
        "last_week": today_start - 7 * DAY_MS,
        "last_month": today_start - 30 * DAY_MS,
    }


def compute_history_stats(records: Iterable[Dict[str, Any]], now: datetime) -> HistoryStats:
    """
    Aggregate entry metadata into HistoryStats.

    Args:
        records: Entry metadata dicts with domain, topic and timestamp keys
        now: Reference time for the recency buckets

    Returns:
        HistoryStats with topics sorted by count (ties keep first-seen order)
    """
    boundaries = bucket_boundaries(now)

    total = 0
    domains: Dict[str, int] = {}
    topics_map: Dict[str, Dict[str, int]] = {}
    time_ranges = TimeRangeCounts()

    for metadata in records:
        total += 1
        timestamp = int(metadata.get("timestamp") or 0)

        domain = metadata.get("domain") or UNKNOWN_DOMAIN
        domains[domain] = domains.get(domain, 0) + 1

        topic = metadata.get("topic") or UNCATEGORIZED_TOPIC
        summary = topics_map.get(topic)
        if summary is None:
            topics_map[topic] = {"count": 1, "first_visit": timestamp, "last_visit": timestamp}
        else:
            summary["count"] += 1
            summary["first_visit"] = min(summary["first_visit"], timestamp)
            summary["last_visit"] = max(summary["last_visit"], timestamp)

        if timestamp >= boundaries["today"]:
            time_ranges.today += 1
        elif timestamp >= boundaries["yesterday"]:
            time_ranges.yesterday += 1
        elif timestamp >= boundaries["last_week"]:
            time_ranges.last_week += 1
        elif timestamp >= boundaries["last_month"]:
            time_ranges.last_month += 1
        else:
            time_ranges.older += 1

    topics = [TopicSummary(topic=topic, **summary) for topic, summary in topics_map.items()]
    # sorted() is stable, so equal counts keep insertion order
    topics = sorted(topics, key=lambda t: -t.count)

    return HistoryStats(
        total_entries=total,
        domains=domains,
        topics=topics,
        time_ranges=time_ranges,
    )
