"""
Snapshot export and import.

A snapshot is a JSON object::

    {"version": 1, "exportedAt": <ms>, "snippets": [...], "subjects": [...],
     "settings": {...}, "tags": [...]}

Partial exports add ``exportType`` ("selected" or "subject", plus the
``subject`` name) and carry ``settings`` and ``tags`` as null. Import only
reads ``snippets`` and ``subjects``; tag counts are rebuilt from the
imported snippets.
"""

import json
import logging
import re
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from .errors import ConfirmationRequired, ValidationError
from .protocol import SnippetStoreProtocol
from .types import SNAPSHOT_VERSION, ImportStats, now_ms, validate_snapshot

logger = logging.getLogger(__name__)


class ImportMode(str, Enum):
    """How an import reconciles with existing data."""
    REPLACE = "replace"   # clear everything, then insert
    MERGE = "merge"       # insert new ids, overwrite when the incoming copy is newer
    ADD = "add"           # insert new ids, never touch existing ones


def export_all(store: SnippetStoreProtocol) -> dict:
    """Full snapshot of the store."""
    return store.export_database()


def export_selected(store: SnippetStoreProtocol, ids: Iterable[str]) -> dict:
    """
    Snapshot of the given snippets and the subjects they refer to.

    Unknown ids are dropped.
    """
    snippets = []
    for id in ids:
        snippet = store.get_snippet(id)
        if snippet is not None:
            snippets.append(snippet)

    names = {s.subject for s in snippets if s.subject}
    subjects = [s for s in store.get_all_subjects() if s.name in names]
    return {
        "version": SNAPSHOT_VERSION,
        "exportedAt": now_ms(),
        "exportType": "selected",
        "snippets": [s.to_dict() for s in snippets],
        "subjects": [s.to_dict() for s in subjects],
        "settings": None,
        "tags": None,
    }


def export_by_subject(store: SnippetStoreProtocol, name: str) -> dict:
    """Snapshot of the snippets filed under one subject."""
    snippets = store.get_all_snippets({"subject": name})
    subject = store.get_subject_by_name(name)
    return {
        "version": SNAPSHOT_VERSION,
        "exportedAt": now_ms(),
        "exportType": "subject",
        "subject": name,
        "snippets": [s.to_dict() for s in snippets],
        "subjects": [subject.to_dict()] if subject is not None else [],
        "settings": None,
        "tags": None,
    }


def import_snapshot(
    store: SnippetStoreProtocol,
    data: Mapping[str, Any],
    mode: Union[ImportMode, str] = ImportMode.MERGE,
    *,
    confirm: bool = False,
) -> ImportStats:
    """
    Import a snapshot under one of the reconciliation policies.

    - replace: deletes all snippets, subjects and tags, then inserts the
      snapshot. Needs ``confirm=True``. Clear and insert share one
      transaction, so a failed import leaves the old data in place.
    - merge: new ids are inserted; an existing snippet is overwritten only
      when the incoming ``updatedAt`` is strictly newer.
    - add: new ids are inserted, existing ids are skipped.

    Subjects are always inserted or skipped, never updated.

    Raises:
        ValidationError: if the snapshot or the mode is invalid (nothing written)
        ConfirmationRequired: for replace without confirm
    """
    try:
        mode = ImportMode(mode)
    except ValueError:
        raise ValidationError(f"Unknown import mode: {mode!r}", field="mode") from None

    validate_snapshot(data)

    if mode is ImportMode.REPLACE:
        if not confirm:
            raise ConfirmationRequired(
                "Replace deletes all existing snippets, subjects and tags; "
                "confirm to proceed",
                field="confirm",
            )
        with store.transaction():
            store.clear_all_data()
            stats = store.import_database(data, merge=False)
    elif mode is ImportMode.MERGE:
        stats = store.import_database(data, merge=True)
    else:
        # Without merge the store inserts absent ids and skips present ones
        stats = store.import_database(data, merge=False)

    logger.info("Imported snapshot (%s): %s", mode.value, stats.to_dict())
    return stats


# -----------------------------------------------------------------------------
# Files
# -----------------------------------------------------------------------------

def snapshot_filename(
    kind: str = "export",
    when: Optional[datetime] = None,
    *,
    prefix: str = "ryana",
) -> str:
    """
    Default file name for a snapshot, e.g. ``ryana-export-20250101-0930.json``.

    ``kind`` is "export", "selected", or a subject name (slugified).
    """
    when = when or datetime.now()
    slug = re.sub(r"\s+", "-", kind.strip().lower()) or "export"
    return f"{prefix}-{slug}-{when.strftime('%Y%m%d-%H%M')}.json"


def write_snapshot(data: Mapping[str, Any], path: Union[str, Path]) -> None:
    """Write a snapshot as indented UTF-8 JSON. ``-`` writes to stdout."""
    if str(path) == "-":
        json.dump(data, sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")
        return
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    logger.info("Wrote %d snippets to %s", len(data.get("snippets") or []), path)


def read_snapshot(path: Union[str, Path]) -> dict:
    """
    Read a snapshot file. ``-`` reads from stdin.

    Raises:
        ValidationError: if the content is not a JSON object
    """
    try:
        if str(path) == "-":
            data = json.load(sys.stdin)
        else:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Snapshot in {path} must be a JSON object")
    return data
