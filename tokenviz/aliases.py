"""Session → display-name resolution and the alias document on disk."""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Mapping

from tokenviz import config
from tokenviz.errors import AliasDocumentError

logger = logging.getLogger("tokenviz.aliases")

SHORT_ID_LENGTH = 8

_SEPARATORS = re.compile(r"[\\/]+")

DEFAULT_DOCUMENT: dict[str, Any] = {
    "_comment": "Map session IDs (UUIDs) to human-readable project names",
    "_example": {
        "01e028c5-a812-4f58-a398-e4ca23f00e7c": "Game Development",
        "d5b037ec-35ca-4fab-a1be-7b0694a18e89": "React Dashboard Project",
    },
    "aliases": {},
}


def short_session_id(session_id: str) -> str:
    return session_id[:SHORT_ID_LENGTH]


def guess_name_from_path(path: str | None) -> str:
    """Last non-empty segment of ``path``; either separator is accepted."""
    if not path:
        return ""
    parts = [part for part in _SEPARATORS.split(path.strip()) if part]
    return parts[-1] if parts else ""


def resolve_display_name(session_id: str, aliases: Mapping[str, str], fallback_path: str | None = "") -> str:
    """Alias first, then the path-derived guess, then the short session ID."""
    alias = aliases.get(session_id)
    if alias:
        return alias
    guessed = guess_name_from_path(fallback_path)
    if guessed:
        return guessed
    return short_session_id(session_id)


def normalize_aliases(raw: Any) -> dict[str, str]:
    """Keep only non-empty string → string pairs, values stripped."""
    if not isinstance(raw, dict):
        return {}
    result: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        name = value.strip()
        if key.strip() and name:
            result[key.strip()] = name
    return result


class AliasStore:
    """Reads and writes the alias JSON document.

    Only the ``aliases`` member is owned here; any other top-level fields
    in the document are carried through saves untouched.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_document(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            content = self.path.read_text(encoding="utf-8")
            data = json.loads(content) if content.strip() else {}
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read alias document {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Alias document {self.path} is not a JSON object, ignoring")
            return None
        return data

    def document(self) -> dict[str, Any]:
        """The full document as stored, or the default template."""
        data = self._read_document()
        if data is None:
            return json.loads(json.dumps(DEFAULT_DOCUMENT))
        return data

    def load(self) -> dict[str, str]:
        """Current alias map; empty when the document is missing or unusable."""
        data = self._read_document()
        if data is None:
            return {}
        return normalize_aliases(data.get("aliases"))

    def save(self, aliases: Mapping[str, str]) -> dict[str, str]:
        """Replace the alias map, preserving the document's other fields.

        Raises AliasDocumentError if the document cannot be written.
        """
        cleaned = normalize_aliases(dict(aliases))
        with self._lock:
            document = self.document()
            document["aliases"] = cleaned
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=".aliases-", suffix=".json", dir=self.path.parent)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        json.dump(document, handle, indent=2, ensure_ascii=False)
                        handle.write("\n")
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise AliasDocumentError(f"Failed to write alias document {self.path}: {e}") from e
        logger.info(f"Saved {len(cleaned)} aliases to {self.path}")
        return cleaned


alias_store = AliasStore(config.ALIASES_PATH)
