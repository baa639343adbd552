"""Group sessions that share a display name and sum their usage.

Everything here is a pure function of the records and the alias map it
is handed; nothing is cached between calls.
"""
from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence

from tokenviz.aggregation import aggregate_sessions, sum_totals
from tokenviz.aliases import resolve_display_name
from tokenviz.models import DisplayGroup, SessionAggregate, UsageRecord, UsageStats


def build_display_groups(records: Iterable[UsageRecord], aliases: Mapping[str, str]) -> list[DisplayGroup]:
    """Partition every session in ``records`` into display groups.

    Groups come out in the order their first session was first seen.
    """
    members: dict[str, list[SessionAggregate]] = {}
    for session in aggregate_sessions(records):
        name = resolve_display_name(session.sessionId, aliases, session.representativePath)
        members.setdefault(name, []).append(session)

    return [
        DisplayGroup(
            name=name,
            sessionIds=frozenset(s.sessionId for s in sessions),
            aggregate=sum_totals(sessions),
        )
        for name, sessions in members.items()
    ]


def find_group(groups: Sequence[DisplayGroup], key: str) -> Optional[DisplayGroup]:
    """Look a group up by its composite ID or its display name."""
    for group in groups:
        if group.id == key:
            return group
    for group in groups:
        if group.name == key:
            return group
    return None


def records_for_group(records: Iterable[UsageRecord], group: DisplayGroup) -> list[UsageRecord]:
    return [r for r in records if r.sessionId in group.sessionIds]


def calculate_usage_stats(records: Iterable[UsageRecord]) -> UsageStats:
    stats = UsageStats()
    for record in records:
        stats.inputTokens += record.inputTokens
        stats.outputTokens += record.outputTokens
        stats.cacheCreatedTokens += record.cacheCreatedTokens
        stats.cacheReadTokens += record.cacheReadTokens
        stats.totalTokens += record.totalTokens
        stats.requestCount += 1
    return stats


def group_usage_stats(
    records: Sequence[UsageRecord],
    groups: Sequence[DisplayGroup],
) -> list[tuple[DisplayGroup, UsageStats]]:
    """Per-group stats for groups with records, heaviest first."""
    by_session: dict[str, list[UsageRecord]] = {}
    for record in records:
        by_session.setdefault(record.sessionId, []).append(record)

    rows = []
    for group in groups:
        group_records = [r for sid in sorted(group.sessionIds) for r in by_session.get(sid, [])]
        if not group_records:
            continue
        rows.append((group, calculate_usage_stats(group_records)))
    rows.sort(key=lambda row: (-row[1].totalTokens, row[0].name))
    return rows
