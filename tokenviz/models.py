"""Pydantic models matching the dashboard's TypeScript types."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer

TimeRange = Literal["day", "week", "month", "year"]


# ── Usage records ──────────────────────────────────────────────────

class UsageRecord(BaseModel):
    """One model invocation parsed from a transcript line. Immutable."""

    model_config = ConfigDict(frozen=True)

    recordId: str
    sessionId: str
    timestamp: str = ""
    model: str = "unknown"
    inputTokens: int = Field(default=0, ge=0)
    outputTokens: int = Field(default=0, ge=0)
    cacheCreatedTokens: int = Field(default=0, ge=0)
    cacheReadTokens: int = Field(default=0, ge=0)
    requestId: Optional[str] = None
    messageId: Optional[str] = None
    role: Optional[str] = None
    workingDirectory: Optional[str] = None

    @computed_field
    @property
    def totalTokens(self) -> int:
        return self.inputTokens + self.outputTokens + self.cacheCreatedTokens + self.cacheReadTokens


class CachedUsage(BaseModel):
    """A usage entry held by the client-local cache."""

    id: str
    sessionId: str
    recordId: Optional[str] = None
    timestamp: str = ""
    model: str = "unknown"
    inputTokens: int = 0
    outputTokens: int = 0
    cacheCreatedTokens: int = 0
    cacheReadTokens: int = 0
    requestId: Optional[str] = None
    messageId: Optional[str] = None
    role: Optional[str] = None
    workingDirectory: Optional[str] = None

    @computed_field
    @property
    def totalTokens(self) -> int:
        return self.inputTokens + self.outputTokens + self.cacheCreatedTokens + self.cacheReadTokens


# ── Aggregates ─────────────────────────────────────────────────────

class TokenTotals(BaseModel):
    messageCount: int = 0
    inputTokens: int = 0
    outputTokens: int = 0
    cacheCreatedTokens: int = 0
    cacheReadTokens: int = 0

    @computed_field
    @property
    def totalTokens(self) -> int:
        return self.inputTokens + self.outputTokens + self.cacheCreatedTokens + self.cacheReadTokens


class SessionAggregate(TokenTotals):
    sessionId: str
    firstTimestamp: str = ""
    lastTimestamp: str = ""
    representativePath: str = ""

    def to_stats_entry(self) -> dict:
        return {
            "sessionId": self.sessionId,
            "path": self.representativePath,
            "messageCount": self.messageCount,
            "totalTokens": self.totalTokens,
            "firstMessage": self.firstTimestamp,
            "lastMessage": self.lastTimestamp,
        }


class ModelAggregate(TokenTotals):
    model: str


class DisplayGroup(BaseModel):
    """Sessions that share one resolved display name."""

    model_config = ConfigDict(frozen=True)

    name: str
    sessionIds: frozenset[str]
    aggregate: TokenTotals = Field(default_factory=TokenTotals)

    @computed_field
    @property
    def id(self) -> str:
        return ",".join(sorted(self.sessionIds))

    @field_serializer("sessionIds")
    def _serialize_session_ids(self, value: frozenset[str]) -> list[str]:
        return sorted(value)


# ── Client-facing rollups ──────────────────────────────────────────

class UsageStats(BaseModel):
    totalTokens: int = 0
    inputTokens: int = 0
    outputTokens: int = 0
    cacheCreatedTokens: int = 0
    cacheReadTokens: int = 0
    requestCount: int = 0


class ChartBucket(BaseModel):
    label: str
    start: str
    inputTokens: int = 0
    outputTokens: int = 0
    totalTokens: int = 0


# ── Scan reporting ─────────────────────────────────────────────────

class FileScanFailure(BaseModel):
    path: str
    error: str


class ScanReport(BaseModel):
    root: str = ""
    sourceMissing: bool = False
    filesScanned: int = 0
    filesFailed: list[FileScanFailure] = Field(default_factory=list)
    linesRead: int = 0
    malformedLines: int = 0
    skippedLines: int = 0
    recordsParsed: int = 0


RescanPhase = Literal["queued", "scanning", "storing", "completed", "failed", "cancelled"]


class RescanOperation(BaseModel):
    """A tracked rescan, from being queued until its rebuild finishes."""

    id: str
    trigger: str = "api"
    phase: RescanPhase = "queued"
    queuedAt: str = ""
    finishedAt: str = ""
    durationMs: int = 0
    stats: dict = Field(default_factory=dict)
    error: str = ""

    @property
    def is_finished(self) -> bool:
        return self.phase in ("completed", "failed", "cancelled")
