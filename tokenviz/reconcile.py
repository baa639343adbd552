"""Reconcile a client-local usage cache with the server's records.

Cache entries are keyed by an ID derived from the server record, so
merging the same server snapshot any number of times adds nothing new.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence, Union

from pydantic import ValidationError

from tokenviz.models import CachedUsage, UsageRecord

logger = logging.getLogger("tokenviz.cache")

CACHE_ID_PREFIX = "remote"

RemoteRecord = Union[UsageRecord, Mapping[str, Any]]


def _ordinal_from_record_id(session_id: str, record_id: Any) -> str | None:
    if not isinstance(record_id, str):
        return None
    prefix = f"{session_id}:"
    if not record_id.startswith(prefix):
        return None
    suffix = record_id[len(prefix):]
    scope, _, ordinal = suffix.rpartition("/")
    if not ordinal.isdigit():
        return None
    return f"{scope}/{ordinal}" if scope else ordinal


def cache_entry_id(session_id: str, record_id: Any, position: int) -> str:
    """Stable cache key for a server record.

    Uses the server-assigned ordinal carried in ``record_id`` (including its
    directory scope, if any); the record's position within its session's
    batch is used only when that is missing.
    """
    ordinal = _ordinal_from_record_id(session_id, record_id)
    if ordinal is None:
        ordinal = str(position)
    return f"{CACHE_ID_PREFIX}-{session_id}-{ordinal}"


def to_cache_entries(remote: Iterable[RemoteRecord]) -> list[CachedUsage]:
    """Convert server records (models or decoded JSON) into cache entries."""
    entries: list[CachedUsage] = []
    positions: dict[str, int] = {}
    for item in remote:
        payload = item.model_dump() if isinstance(item, UsageRecord) else dict(item)
        session_id = payload.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            logger.warning("Skipping remote record without a sessionId")
            continue
        position = positions.get(session_id, 0)
        positions[session_id] = position + 1
        payload["id"] = cache_entry_id(session_id, payload.get("recordId"), position)
        try:
            entries.append(CachedUsage.model_validate(payload))
        except ValidationError as exc:
            logger.warning(f"Skipping invalid remote record {payload['id']}: {exc}")
    return entries


def merge_usage(local: Sequence[CachedUsage], remote: Iterable[RemoteRecord]) -> list[CachedUsage]:
    """Local entries in order, followed by remote entries not yet present."""
    merged = list(local)
    seen = {entry.id for entry in merged}
    for entry in to_cache_entries(remote):
        if entry.id in seen:
            continue
        seen.add(entry.id)
        merged.append(entry)
    return merged


def replace_with_remote(remote: Iterable[RemoteRecord]) -> list[CachedUsage]:
    """The cache contents after a full rescan: exactly the remote set."""
    entries: list[CachedUsage] = []
    seen: set[str] = set()
    for entry in to_cache_entries(remote):
        if entry.id not in seen:
            seen.add(entry.id)
            entries.append(entry)
    return entries


@dataclass
class RefreshResult:
    entries: list[CachedUsage] = field(default_factory=list)
    added: int = 0
    replaced: bool = False


class LocalUsageCache:
    """A JSON file holding the client's copy of the usage records."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> list[CachedUsage]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read local cache {self.path}: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"Local cache {self.path} is not a JSON list, ignoring")
            return []

        entries: list[CachedUsage] = []
        for item in data:
            try:
                entries.append(CachedUsage.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping unreadable cache entry: {e}")
        return entries

    def save(self, entries: Sequence[CachedUsage]) -> None:
        payload = [entry.model_dump() for entry in entries]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".usages-", suffix=".json", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def refresh(self, remote: Iterable[RemoteRecord], replace: bool = False) -> RefreshResult:
        """Merge (or, with ``replace``, swap in) the remote records and persist."""
        if replace:
            entries = replace_with_remote(remote)
            self.save(entries)
            logger.info(f"Replaced local cache with {len(entries)} server records")
            return RefreshResult(entries=entries, added=len(entries), replaced=True)

        local = self.load()
        entries = merge_usage(local, remote)
        added = len(entries) - len(local)
        if added > 0:
            self.save(entries)
            logger.info(f"Added {added} new records from server")
        return RefreshResult(entries=entries, added=added)
