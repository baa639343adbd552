"""In-memory rollups over UsageRecords.

These mirror the GROUP BY queries of the SQLite store and are used wherever
records are already in memory (display-group consolidation, client caches).
"""
from __future__ import annotations

from typing import Iterable

from tokenviz.models import ModelAggregate, SessionAggregate, TokenTotals, UsageRecord

_TOKEN_FIELDS = ("inputTokens", "outputTokens", "cacheCreatedTokens", "cacheReadTokens")


def sum_totals(items: Iterable[TokenTotals]) -> TokenTotals:
    """Sum counts and token fields of any TokenTotals (or subclasses)."""
    sums = {"messageCount": 0, **{name: 0 for name in _TOKEN_FIELDS}}
    for item in items:
        sums["messageCount"] += item.messageCount
        for name in _TOKEN_FIELDS:
            sums[name] += getattr(item, name)
    return TokenTotals(**sums)


def aggregate_sessions(records: Iterable[UsageRecord]) -> list[SessionAggregate]:
    """Per-session aggregates in first-seen order."""
    buckets: dict[str, dict] = {}
    for record in records:
        bucket = buckets.get(record.sessionId)
        if bucket is None:
            bucket = {
                "sessionId": record.sessionId,
                "firstTimestamp": record.timestamp,
                "lastTimestamp": record.timestamp,
                "representativePath": "",
                "messageCount": 0,
                **{name: 0 for name in _TOKEN_FIELDS},
            }
            buckets[record.sessionId] = bucket
        bucket["messageCount"] += 1
        for name in _TOKEN_FIELDS:
            bucket[name] += getattr(record, name)
        if record.timestamp:
            if not bucket["firstTimestamp"] or record.timestamp < bucket["firstTimestamp"]:
                bucket["firstTimestamp"] = record.timestamp
            if record.timestamp > bucket["lastTimestamp"]:
                bucket["lastTimestamp"] = record.timestamp
        if not bucket["representativePath"] and record.workingDirectory:
            bucket["representativePath"] = record.workingDirectory
    return [SessionAggregate(**bucket) for bucket in buckets.values()]


def aggregate_models(records: Iterable[UsageRecord]) -> list[ModelAggregate]:
    """Per-model aggregates in first-seen order."""
    buckets: dict[str, dict] = {}
    for record in records:
        bucket = buckets.setdefault(
            record.model,
            {"model": record.model, "messageCount": 0, **{name: 0 for name in _TOKEN_FIELDS}},
        )
        bucket["messageCount"] += 1
        for name in _TOKEN_FIELDS:
            bucket[name] += getattr(record, name)
    return [ModelAggregate(**bucket) for bucket in buckets.values()]
