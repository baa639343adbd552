"""Scan a directory tree of JSONL transcripts into UsageRecords."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from tokenviz.models import FileScanFailure, ScanReport, UsageRecord
from tokenviz.parsers.usage import Parsed, Rejected, make_record_id, normalize_line

logger = logging.getLogger("tokenviz.scanner")

DEFAULT_PATTERN = "**/*.jsonl"


@dataclass
class ScanResult:
    records: list[UsageRecord] = field(default_factory=list)
    report: ScanReport = field(default_factory=ScanReport)


@dataclass
class _FileScan:
    path: Path
    session_id: str
    hint: str = ""
    records: list[UsageRecord] = field(default_factory=list)
    lines_read: int = 0
    malformed: int = 0
    skipped: int = 0
    error: str = ""


def session_id_from_path(path: Path) -> str:
    """Session IDs are the transcript's base name without extension."""
    return path.stem


def directory_hint(path: Path, root: Path) -> str:
    """Parent directory of ``path`` relative to ``root`` in POSIX form."""
    try:
        relative = path.parent.relative_to(root)
    except ValueError:
        return path.parent.as_posix()
    hint = relative.as_posix()
    return "" if hint == "." else hint


def _scan_file(path: Path, root: Path) -> _FileScan:
    session_id = session_id_from_path(path)
    result = _FileScan(path=path, session_id=session_id)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        result.error = str(exc)
        return result

    hint = directory_hint(path, root)
    result.hint = hint
    for line_number, raw in enumerate(content.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        result.lines_read += 1
        try:
            parsed = normalize_line(
                line,
                session_id,
                ordinal=len(result.records),
                line_number=line_number,
                working_directory=hint,
            )
        except Exception as exc:
            parsed = Rejected("malformed", line_number, f"{type(exc).__name__}: {exc}")
        if isinstance(parsed, Parsed):
            result.records.append(parsed.record)
        elif parsed.is_malformed:
            result.malformed += 1
            logger.debug("Skipping malformed line %s:%d (%s)", path, line_number, parsed.detail)
        else:
            result.skipped += 1
    return result


def discover_log_files(root: Path, pattern: str = DEFAULT_PATTERN) -> list[Path]:
    """Return candidate log files under ``root`` in stable path order."""
    return sorted((p for p in root.glob(pattern) if p.is_file()), key=lambda p: p.as_posix())


def scan_usage_logs(root: Path | str, pattern: str = DEFAULT_PATTERN, workers: int = 4) -> ScanResult:
    """Scan every log file under ``root`` and collect usage records.

    A missing root yields an empty result flagged ``sourceMissing``. Files
    that cannot be read are listed in the report and skipped. Files are read
    in parallel but concatenated in sorted path order. Ordinals count the
    records within one file, so appending to a transcript never renumbers
    records of another file. When several files share a session stem, the
    first in path order keeps plain ``<session>:<n>`` IDs and the others
    are scoped by their directory.
    """
    root_path = Path(root).expanduser()
    report = ScanReport(root=str(root_path))
    if not root_path.is_dir():
        logger.warning("Usage log directory not found: %s", root_path)
        report.sourceMissing = True
        return ScanResult(report=report)

    files = discover_log_files(root_path, pattern)
    logger.info("Found %d log files under %s", len(files), root_path)
    if not files:
        return ScanResult(report=report)

    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(files)))) as executor:
        scans = list(executor.map(lambda p: _scan_file(p, root_path), files))

    records: list[UsageRecord] = []
    seen_sessions: set[str] = set()
    for scan in scans:
        scoped = scan.session_id in seen_sessions
        seen_sessions.add(scan.session_id)
        if scan.error:
            logger.warning("Skipping unreadable log file %s: %s", scan.path, scan.error)
            report.filesFailed.append(FileScanFailure(path=str(scan.path), error=scan.error))
            continue
        report.filesScanned += 1
        report.linesRead += scan.lines_read
        report.malformedLines += scan.malformed
        report.skippedLines += scan.skipped

        if scoped:
            # Same stem in another directory: scope its IDs by that directory.
            scope = scan.hint or "."
            records.extend(
                record.model_copy(update={"recordId": make_record_id(scan.session_id, idx, scope)})
                for idx, record in enumerate(scan.records)
            )
        else:
            records.extend(scan.records)

    report.recordsParsed = len(records)
    if report.malformedLines:
        logger.warning("Skipped %d malformed lines while scanning %s", report.malformedLines, root_path)
    logger.info("Parsed %d usage records from %d files", len(records), report.filesScanned)
    return ScanResult(records=records, report=report)
