"""
Data types for the snippet notebook.

Dataclass attributes are snake_case. The portable form used by snapshot
files and by record dicts handed to the store keeps the camelCase keys of
the export format (``colorCode``, ``createdAt``, ``timesCopied``, ...).
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .errors import ValidationError


SNIPPET_TYPES = ("code", "error")
THEMES = ("light", "dark")

DEFAULT_TITLE = "Untitled Snippet"
DEFAULT_LANGUAGE = "plaintext"

# Singleton key of the settings collection
SETTINGS_ID = "user-settings"

# Highest snapshot format version this package reads and writes
SNAPSHOT_VERSION = 1

# Subject colours, selected by Subject.color_index (1-10)
SUBJECT_PALETTE = (
    "#e74c3c",
    "#e67e22",
    "#f1c40f",
    "#2ecc71",
    "#1abc9c",
    "#3498db",
    "#9b59b6",
    "#e84393",
    "#795548",
    "#607d8b",
)

MS_PER_DAY = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current time in milliseconds since the Unix epoch.

    All stored timestamps use this unit.
    """
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def generate_id() -> str:
    """Unique record id: creation time plus a random suffix."""
    return f"{now_ms()}-{uuid.uuid4().hex[:9]}"


def ms_to_datetime(ms: int) -> datetime:
    """Convert a stored millisecond timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def local_date(ms: Optional[int]) -> str:
    """Local-timezone date string (YYYY-MM-DD) for display. Empty for None."""
    if ms is None:
        return ""
    try:
        return ms_to_datetime(ms).astimezone().strftime("%Y-%m-%d")
    except (OverflowError, OSError, ValueError):
        return ""


def _dedupe(values) -> list[str]:
    """Drop repeated entries, keeping the first occurrence order."""
    seen: set[str] = set()
    result = []
    for v in values or []:
        if v not in seen:
            seen.add(v)
            result.append(v)
    return result


# ---------------------------------------------------------------------------
# Snippet and its parts
# ---------------------------------------------------------------------------

@dataclass
class ErrorEntry:
    """One error message recorded on an error-type snippet."""
    message: str = ""
    solution: str = ""
    links: list[str] = field(default_factory=list)
    created_at: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "solution": self.solution,
            "links": list(self.links),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ErrorEntry":
        return cls(
            message=data.get("message") or "",
            solution=data.get("solution") or "",
            links=list(data.get("links") or []),
            created_at=data.get("createdAt"),
        )


@dataclass
class Usage:
    """When, where and how a snippet is meant to be used."""
    when: str = ""
    where: str = ""
    how: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Usage":
        data = data or {}
        return cls(
            when=data.get("when") or "",
            where=data.get("where") or "",
            how=data.get("how") or "",
        )


@dataclass
class Analytics:
    """View/copy counters maintained by the store."""
    times_copied: int = 0
    times_viewed: int = 0
    last_copied: Optional[int] = None
    last_viewed: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "timesCopied": self.times_copied,
            "timesViewed": self.times_viewed,
            "lastCopied": self.last_copied,
            "lastViewed": self.last_viewed,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Analytics":
        data = data or {}
        return cls(
            times_copied=int(data.get("timesCopied") or 0),
            times_viewed=int(data.get("timesViewed") or 0),
            last_copied=data.get("lastCopied"),
            last_viewed=data.get("lastViewed"),
        )


@dataclass
class SyncInfo:
    """Reserved for remote sync. Always local for now."""
    source: str = "local"
    last_synced: Optional[int] = None
    remote_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "lastSynced": self.last_synced,
            "remoteId": self.remote_id,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SyncInfo":
        data = data or {}
        return cls(
            source=data.get("source") or "local",
            last_synced=data.get("lastSynced"),
            remote_id=data.get("remoteId"),
        )


@dataclass
class Snippet:
    """
    A stored code sample or error log.

    ``score`` is not persisted; ranked search fills it in.
    """
    id: str
    code: str
    title: str = DEFAULT_TITLE
    description: str = ""
    language: str = DEFAULT_LANGUAGE
    subject: str = ""
    tags: list[str] = field(default_factory=list)
    type: str = "code"
    errors: list[ErrorEntry] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    favourite: bool = False
    color_code: str = ""
    analytics: Analytics = field(default_factory=Analytics)
    versions: list = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    sync: SyncInfo = field(default_factory=SyncInfo)
    score: Optional[float] = None

    @property
    def is_error(self) -> bool:
        return self.type == "error"

    def to_dict(self) -> dict:
        """Portable (export format) representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "language": self.language,
            "subject": self.subject,
            "tags": list(self.tags),
            "code": self.code,
            "type": self.type,
            "errors": [e.to_dict() for e in self.errors],
            "usage": self.usage.to_dict(),
            "favourite": self.favourite,
            "colorCode": self.color_code,
            "analytics": self.analytics.to_dict(),
            "versions": list(self.versions),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "sync": self.sync.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snippet":
        """Build from the portable form, filling defaults for missing fields."""
        return cls(
            id=data["id"],
            title=data.get("title") or DEFAULT_TITLE,
            description=data.get("description") or "",
            language=data.get("language") or DEFAULT_LANGUAGE,
            subject=data.get("subject") or "",
            tags=_dedupe(data.get("tags")),
            code=data.get("code") or "",
            type=data.get("type") or "code",
            errors=[ErrorEntry.from_dict(e) for e in data.get("errors") or []],
            usage=Usage.from_dict(data.get("usage")),
            favourite=bool(data.get("favourite", False)),
            color_code=data.get("colorCode") or "",
            analytics=Analytics.from_dict(data.get("analytics")),
            versions=list(data.get("versions") or []),
            created_at=int(data.get("createdAt") or 0),
            updated_at=int(data.get("updatedAt") or 0),
            sync=SyncInfo.from_dict(data.get("sync")),
        )


# ---------------------------------------------------------------------------
# Subjects, tags, settings
# ---------------------------------------------------------------------------

@dataclass
class Subject:
    """An organizational category (e.g., a course). Names are unique."""
    id: str
    name: str
    color_index: int = 1
    color_code: str = ""
    description: str = ""
    year: int = 1
    semester: int = 1
    created_at: int = 0

    @property
    def color(self) -> str:
        """Palette colour for color_index, clamped to the palette range."""
        index = min(max(int(self.color_index or 1), 1), len(SUBJECT_PALETTE))
        return SUBJECT_PALETTE[index - 1]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "colorIndex": self.color_index,
            "colorCode": self.color_code,
            "description": self.description,
            "year": self.year,
            "semester": self.semester,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Subject":
        return cls(
            id=data["id"],
            name=data["name"],
            color_index=int(data.get("colorIndex") or 1),
            color_code=data.get("colorCode") or "",
            description=data.get("description") or "",
            year=int(data.get("year") or 1),
            semester=int(data.get("semester") or 1),
            created_at=int(data.get("createdAt") or 0),
        )


@dataclass
class Tag:
    """Usage-count aggregate for a tag name. Maintained by the store only."""
    id: str
    name: str
    count: int
    last_used: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "count": self.count,
            "lastUsed": self.last_used,
        }


@dataclass
class Settings:
    """Global user settings (singleton record)."""
    theme: str = "light"
    sync_enabled: bool = False
    sync_provider: Optional[str] = None
    auth_token: Optional[str] = None
    default_language: str = "javascript"
    auto_save: bool = True
    keyboard_shortcuts: bool = True
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict:
        return {
            "id": SETTINGS_ID,
            "theme": self.theme,
            "syncEnabled": self.sync_enabled,
            "syncProvider": self.sync_provider,
            "authToken": self.auth_token,
            "defaultLanguage": self.default_language,
            "autoSave": self.auto_save,
            "keyboardShortcuts": self.keyboard_shortcuts,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Settings":
        defaults = cls()
        return cls(
            theme=data.get("theme", defaults.theme),
            sync_enabled=bool(data.get("syncEnabled", defaults.sync_enabled)),
            sync_provider=data.get("syncProvider"),
            auth_token=data.get("authToken"),
            default_language=data.get("defaultLanguage", defaults.default_language),
            auto_save=bool(data.get("autoSave", defaults.auto_save)),
            keyboard_shortcuts=bool(data.get("keyboardShortcuts", defaults.keyboard_shortcuts)),
            created_at=int(data.get("createdAt") or 0),
            updated_at=int(data.get("updatedAt") or 0),
        )


# ---------------------------------------------------------------------------
# Import / statistics results
# ---------------------------------------------------------------------------

@dataclass
class ImportCounts:
    added: int = 0
    updated: int = 0
    skipped: int = 0


@dataclass
class ImportStats:
    """
    Outcome of an import.

    ``subjects.updated`` stays 0: existing subjects are never merged,
    only added or skipped.
    """
    snippets: ImportCounts = field(default_factory=ImportCounts)
    subjects: ImportCounts = field(default_factory=ImportCounts)

    def to_dict(self) -> dict:
        return {"snippets": asdict(self.snippets), "subjects": asdict(self.subjects)}


@dataclass
class StoreStatistics:
    """Aggregate figures over the whole notebook."""
    total: int = 0
    code: int = 0
    errors: int = 0
    favourites: int = 0
    subjects: int = 0
    unique_tags: int = 0
    languages: int = 0
    most_used_language: Optional[str] = None
    most_used_subject: Optional[str] = None
    top_tags: list[dict] = field(default_factory=list)
    total_views: int = 0
    total_copies: int = 0
    created_this_week: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Snapshot validation
# ---------------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_subject_fields(
    fields: Mapping[str, Any],
    *,
    creating: bool,
    prefix: str = "",
) -> None:
    """
    Check the fields of a subject draft, partial update or imported record.

    ``prefix`` is prepended to the field named in the error, e.g.
    "subjects[2]." for a snapshot entry.
    """
    if creating or "name" in fields:
        name = fields.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Subject name is required",
                                  field=f"{prefix}name")
    index = fields.get("colorIndex")
    if index is not None and not (_is_int(index) and 1 <= index <= 10):
        raise ValidationError(f"{prefix}colorIndex must be 1-10: {index!r}",
                              field=f"{prefix}colorIndex")
    for key in ("year", "semester"):
        value = fields.get(key)
        if value is not None and not (_is_int(value) and value >= 1):
            raise ValidationError(f"{prefix}{key} must be a positive integer: {value!r}",
                                  field=f"{prefix}{key}")


def _check_snippet_lists(snippet: Mapping[str, Any], i: int) -> None:
    tags = snippet.get("tags")
    if tags is not None:
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValidationError(f"Snippet #{i} 'tags' must be a list of strings",
                                  field=f"snippets[{i}].tags")
    errors = snippet.get("errors")
    if errors is None:
        return
    if not isinstance(errors, list):
        raise ValidationError(f"Snippet #{i} 'errors' must be a list",
                              field=f"snippets[{i}].errors")
    for j, entry in enumerate(errors):
        if not isinstance(entry, Mapping) or not all(
            isinstance(entry.get(key) or "", str) for key in ("message", "solution")
        ):
            raise ValidationError(
                f"Snippet #{i} error #{j} must be an object with text message and solution",
                field=f"snippets[{i}].errors[{j}]",
            )


def validate_snapshot(data: Any) -> None:
    """
    Check an import snapshot before anything is written.

    Requires numeric ``version`` and ``exportedAt``, a ``snippets`` list
    whose entries all have non-empty ``id``, ``title`` and ``code`` (with
    string tags and object errors), and (when present) a ``subjects`` list
    of named subjects whose colorIndex, year and semester are in range.

    Raises:
        ValidationError: naming the first offending field
    """
    if not isinstance(data, Mapping):
        raise ValidationError("Snapshot must be a JSON object")

    version = data.get("version")
    if not _is_number(version):
        raise ValidationError("Snapshot has no numeric 'version'", field="version")
    if version > SNAPSHOT_VERSION:
        raise ValidationError(
            f"Snapshot version {version} is not supported "
            f"(this version supports up to {SNAPSHOT_VERSION})",
            field="version",
        )
    if not _is_number(data.get("exportedAt")):
        raise ValidationError("Snapshot has no numeric 'exportedAt'", field="exportedAt")

    snippets = data.get("snippets")
    if not isinstance(snippets, list):
        raise ValidationError("Snapshot 'snippets' must be a list", field="snippets")
    for i, snippet in enumerate(snippets):
        if not isinstance(snippet, Mapping):
            raise ValidationError(f"Snippet #{i} is not an object", field=f"snippets[{i}]")
        for key in ("id", "title", "code"):
            value = snippet.get(key)
            if not isinstance(value, str) or not value:
                raise ValidationError(
                    f"Snippet #{i} ({snippet.get('id', '?')}) has no {key!r}",
                    field=f"snippets[{i}].{key}",
                )
        kind = snippet.get("type")
        if kind is not None and kind not in SNIPPET_TYPES:
            raise ValidationError(f"Snippet #{i} has unknown type {kind!r}",
                                  field=f"snippets[{i}].type")
        _check_snippet_lists(snippet, i)

    subjects = data.get("subjects")
    if subjects is None:
        return
    if not isinstance(subjects, list):
        raise ValidationError("Snapshot 'subjects' must be a list", field="subjects")
    for i, subject in enumerate(subjects):
        if not isinstance(subject, Mapping):
            raise ValidationError(f"Subject #{i} is not an object", field=f"subjects[{i}]")
        validate_subject_fields(subject, creating=True, prefix=f"subjects[{i}].")
