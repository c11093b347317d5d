"""
Snippet store using SQLite.

Four collections, one table each:
- snippets: code samples and error logs. The full record is kept as JSON;
  the fields used for filtering are mirrored into indexed columns.
- subjects: organizational categories, unique by name.
- settings: the single user-settings record.
- tags: usage count per tag name, a cache over snippet tags.

``snippet_tags`` is a multi-entry index with one row per (snippet, tag).

The store is the only writer of tag counts. Each write runs in one
transaction together with its tag-count maintenance, so a failure leaves
both untouched. For every tag: count == number of snippets carrying it,
and a tag whose count drops to zero is deleted.
"""

import json
import logging
import random
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Union

from .errors import DuplicateName, NotFound, StorageUnavailable, ValidationError
from .types import (
    SETTINGS_ID,
    SNAPSHOT_VERSION,
    SNIPPET_TYPES,
    THEMES,
    Analytics,
    ImportStats,
    Settings,
    Snippet,
    Subject,
    SyncInfo,
    Tag,
    _dedupe,
    generate_id,
    now_ms,
    validate_snapshot,
    validate_subject_fields,
)

logger = logging.getLogger(__name__)

# Schema history (PRAGMA user_version):
#   1: snippets, subjects, settings, tags
#   2: snippet_tags multi-entry index
SCHEMA_VERSION = 2

SNIPPET_FILTER_KEYS = ("type", "subject", "language", "favourite", "tag")

# Record fields a partial update never changes
_IMMUTABLE_FIELDS = frozenset({"id", "createdAt"})

MAX_TAG_SUGGESTIONS = 10


def _as_record(value: Any, entity: str) -> dict:
    """Accept a dataclass with to_dict() or a mapping in export-format keys."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Mapping):
        return dict(value)
    raise ValidationError(f"Expected a {entity} record, got {type(value).__name__}")


def _validate_snippet_fields(fields: Mapping[str, Any], *, creating: bool) -> None:
    """Check the fields of a snippet draft or partial update."""
    if creating or "code" in fields:
        code = fields.get("code")
        if code is None:
            raise ValidationError("Snippet code is required", field="code")
        if not isinstance(code, str):
            raise ValidationError("Snippet code must be a string", field="code")
    kind = fields.get("type")
    if kind is not None and kind not in SNIPPET_TYPES:
        raise ValidationError(
            f"Snippet type must be one of {', '.join(SNIPPET_TYPES)}: {kind!r}",
            field="type",
        )
    tags = fields.get("tags")
    if tags is not None:
        if not isinstance(tags, (list, tuple)) or not all(isinstance(t, str) for t in tags):
            raise ValidationError("Snippet tags must be a list of strings", field="tags")


def _random_color() -> str:
    hue = random.randrange(360)
    return f"hsl({hue}, 65%, 55%)"


def _naive_match(snippet: Snippet, needle: str) -> bool:
    """Untokenized case-insensitive substring match over the searchable fields."""
    if (needle in snippet.title.lower()
            or needle in snippet.description.lower()
            or needle in snippet.code.lower()
            or needle in snippet.subject.lower()
            or needle in snippet.language.lower()):
        return True
    if any(needle in tag.lower() for tag in snippet.tags):
        return True
    return any(
        needle in e.message.lower() or needle in e.solution.lower()
        for e in snippet.errors
    )


class SnippetStore:
    """
    SQLite-backed store for snippets, subjects, settings and tags.

    Reads run in autocommit mode (each read sees one consistent state of
    its table). Writes go through transaction(); the outermost level holds
    BEGIN IMMEDIATE, nested levels are savepoints, so batch operations can
    group many writes while each single write stays all-or-nothing.
    """

    def __init__(
        self,
        store_path: Path,
        *,
        settings_defaults: Optional[Mapping[str, Any]] = None,
    ):
        """
        Args:
            store_path: Path to SQLite database file
            settings_defaults: Export-format settings fields used when the
                settings record is first created
        """
        self._db_path = Path(store_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self._settings_defaults = dict(settings_defaults or {})
        self._init_db()

    def _init_db(self) -> None:
        """Open the database and bring its schema up to date."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None gives us manual transaction control
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._migrate()
        except (sqlite3.Error, OSError) as e:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            raise StorageUnavailable(f"Cannot open database {self._db_path}: {e}") from e

    def _migrate(self) -> None:
        """Additive schema upgrade from the stored user_version."""
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version >= SCHEMA_VERSION:
            return

        with self.transaction():
            if version < 1:
                self._create_collections()
            if version < 2:
                self._create_tag_index()
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

        logger.info("Schema of %s upgraded from v%d to v%d",
                    self._db_path.name, version, SCHEMA_VERSION)

    def _create_collections(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS snippets (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                language TEXT NOT NULL,
                subject TEXT NOT NULL DEFAULT '',
                type TEXT NOT NULL DEFAULT 'code',
                favourite INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                data_json TEXT NOT NULL
            )
        """)
        for column in ("title", "language", "subject", "type", "favourite",
                       "created_at", "updated_at"):
            self._conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_snippets_{column}
                ON snippets({column})
            """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS subjects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                year INTEGER NOT NULL DEFAULT 1,
                semester INTEGER NOT NULL DEFAULT 1,
                created_at INTEGER NOT NULL,
                data_json TEXT NOT NULL
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_subjects_year ON subjects(year)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_subjects_semester ON subjects(semester)")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                id TEXT PRIMARY KEY,
                data_json TEXT NOT NULL
            )
        """)
        now = now_ms()
        defaults = Settings.from_dict({
            **self._settings_defaults, "createdAt": now, "updatedAt": now,
        })
        self._conn.execute(
            "INSERT OR IGNORE INTO settings (id, data_json) VALUES (?, ?)",
            (SETTINGS_ID, json.dumps(defaults.to_dict())),
        )

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS tags (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                count INTEGER NOT NULL CHECK (count >= 0),
                last_used INTEGER NOT NULL
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_tags_count ON tags(count)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_tags_last_used ON tags(last_used)")

    def _create_tag_index(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS snippet_tags (
                snippet_id TEXT NOT NULL,
                tag TEXT NOT NULL,
                PRIMARY KEY (snippet_id, tag)
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_snippet_tags_tag
            ON snippet_tags(tag)
        """)
        # Backfill from snippets stored before the index existed
        rows = self._conn.execute("SELECT id, data_json FROM snippets").fetchall()
        for row in rows:
            tags = _dedupe(json.loads(row["data_json"]).get("tags"))
            self._conn.executemany(
                "INSERT OR IGNORE INTO snippet_tags (snippet_id, tag) VALUES (?, ?)",
                [(row["id"], t) for t in tags],
            )

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageUnavailable(f"Store is closed: {self._db_path}")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Group writes into one atomic unit.

        Re-entrant: the outermost call opens BEGIN IMMEDIATE and commits or
        rolls back; inner calls use savepoints and roll back only their own
        writes when they raise.

        Raises:
            StorageUnavailable: if the transaction cannot be opened
        """
        with self._lock:
            conn = self._require_conn()
            if self._depth:
                savepoint = f"sp_{self._depth}"
                conn.execute(f"SAVEPOINT {savepoint}")
                self._depth += 1
                try:
                    yield
                except BaseException:
                    conn.execute(f"ROLLBACK TO {savepoint}")
                    conn.execute(f"RELEASE {savepoint}")
                    raise
                else:
                    conn.execute(f"RELEASE {savepoint}")
                finally:
                    self._depth -= 1
                return

            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageUnavailable(f"Cannot open transaction: {e}") from e
            self._depth = 1
            try:
                yield
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()
            finally:
                self._depth = 0

    # -------------------------------------------------------------------------
    # Snippets
    # -------------------------------------------------------------------------

    def add_snippet(self, draft: Union[Mapping[str, Any], Snippet]) -> str:
        """
        Create a snippet from a draft and count its tags.

        Missing fields get defaults (title "Untitled Snippet", language
        "plaintext", type "code"); analytics start at zero.

        Args:
            draft: Export-format fields; ``code`` is required

        Returns:
            The new snippet id

        Raises:
            ValidationError: if code is missing or a field is malformed
        """
        fields = _as_record(draft, "snippet")
        _validate_snippet_fields(fields, creating=True)

        now = now_ms()
        fields.update(
            id=generate_id(),
            createdAt=now,
            updatedAt=now,
            analytics=Analytics().to_dict(),
            sync=SyncInfo().to_dict(),
        )
        snippet = Snippet.from_dict(fields)

        with self.transaction():
            self._write_snippet(snippet, insert=True)
            self._apply_tag_delta([], snippet.tags, now)

        logger.info("Added snippet %s (%s)", snippet.id, snippet.title)
        return snippet.id

    def get_snippet(self, id: str) -> Optional[Snippet]:
        """Get a snippet by ID, or None."""
        row = self._require_conn().execute(
            "SELECT data_json FROM snippets WHERE id = ?", (id,)
        ).fetchone()
        if row is None:
            return None
        return Snippet.from_dict(json.loads(row["data_json"]))

    def get_all_snippets(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> list[Snippet]:
        """
        List snippets in storage order, optionally narrowed.

        Filters are equality predicates on type, subject, language and
        favourite, plus tag membership. Empty or missing filters don't
        narrow. Callers needing an order must sort.
        """
        criteria = dict(filters or {})
        criteria.update(kwargs)
        unknown = set(criteria) - set(SNIPPET_FILTER_KEYS)
        if unknown:
            raise ValidationError(f"Unknown snippet filter: {', '.join(sorted(unknown))}")

        clauses: list[str] = []
        params: list[Any] = []
        for key in ("type", "subject", "language"):
            if criteria.get(key):
                clauses.append(f"{key} = ?")
                params.append(criteria[key])
        if criteria.get("favourite") is not None:
            clauses.append("favourite = ?")
            params.append(int(bool(criteria["favourite"])))
        if criteria.get("tag"):
            clauses.append("id IN (SELECT snippet_id FROM snippet_tags WHERE tag = ?)")
            params.append(criteria["tag"])

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = self._require_conn().execute(
            f"SELECT data_json FROM snippets{where} ORDER BY rowid", params
        )
        results = [Snippet.from_dict(json.loads(row["data_json"])) for row in cursor]
        logger.debug("get_all_snippets(%s): %d results", criteria, len(results))
        return results

    def update_snippet(self, id: str, fields: Union[Mapping[str, Any], Snippet]) -> None:
        """
        Merge fields over a stored snippet and bump updatedAt.

        ``id`` and ``createdAt`` are never changed. When the tag set differs
        from the stored one, counts move by the difference.

        Raises:
            NotFound: if no snippet has this id
            ValidationError: if a field is malformed
        """
        fields = _as_record(fields, "snippet")
        _validate_snippet_fields(fields, creating=False)

        with self.transaction():
            existing = self.get_snippet(id)
            if existing is None:
                raise NotFound("snippet", id)

            record = existing.to_dict()
            for key, value in fields.items():
                if key not in _IMMUTABLE_FIELDS:
                    record[key] = value
            now = now_ms()
            record["updatedAt"] = now
            updated = Snippet.from_dict(record)

            self._write_snippet(updated, insert=False)
            self._apply_tag_delta(existing.tags, updated.tags, now)

        logger.info("Updated snippet %s", id)

    def delete_snippet(self, id: str) -> None:
        """
        Delete a snippet and release its tags.

        Raises:
            NotFound: if no snippet has this id
        """
        with self.transaction():
            existing = self.get_snippet(id)
            if existing is None:
                raise NotFound("snippet", id)
            conn = self._require_conn()
            conn.execute("DELETE FROM snippets WHERE id = ?", (id,))
            conn.execute("DELETE FROM snippet_tags WHERE snippet_id = ?", (id,))
            self._apply_tag_delta(existing.tags, [], now_ms())

        logger.info("Deleted snippet %s", id)

    def search_snippets(self, query: str) -> list[Snippet]:
        """
        Snippets where any searchable field contains the whole query.

        Case-insensitive, untokenized and unranked; see search.search_by_text
        for the ranked variant.
        """
        needle = query.lower()
        return [s for s in self.get_all_snippets() if _naive_match(s, needle)]

    def update_analytics(self, id: str, action: str) -> None:
        """
        Record a view or copy of a snippet.

        Raises:
            NotFound: if no snippet has this id
            ValidationError: if action is not "view" or "copy"
        """
        if action not in ("view", "copy"):
            raise ValidationError(f"Unknown analytics action: {action!r}", field="action")

        with self.transaction():
            snippet = self.get_snippet(id)
            if snippet is None:
                raise NotFound("snippet", id)
            analytics = snippet.analytics
            now = now_ms()
            if action == "view":
                analytics.times_viewed += 1
                analytics.last_viewed = now
            else:
                analytics.times_copied += 1
                analytics.last_copied = now
            self.update_snippet(id, {"analytics": analytics.to_dict()})

    def count_snippets(self) -> int:
        """Count stored snippets."""
        return self._require_conn().execute("SELECT COUNT(*) FROM snippets").fetchone()[0]

    def _write_snippet(self, snippet: Snippet, *, insert: bool) -> None:
        """Store the record and refresh its rows in the tag index."""
        conn = self._require_conn()
        params = (
            snippet.title,
            snippet.language,
            snippet.subject,
            snippet.type,
            int(snippet.favourite),
            snippet.created_at,
            snippet.updated_at,
            json.dumps(snippet.to_dict(), ensure_ascii=False),
            snippet.id,
        )
        if insert:
            conn.execute("""
                INSERT INTO snippets
                (title, language, subject, type, favourite, created_at,
                 updated_at, data_json, id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, params)
        else:
            conn.execute("""
                UPDATE snippets
                SET title = ?, language = ?, subject = ?, type = ?,
                    favourite = ?, created_at = ?, updated_at = ?, data_json = ?
                WHERE id = ?
            """, params)

        conn.execute("DELETE FROM snippet_tags WHERE snippet_id = ?", (snippet.id,))
        conn.executemany(
            "INSERT INTO snippet_tags (snippet_id, tag) VALUES (?, ?)",
            [(snippet.id, tag) for tag in snippet.tags],
        )

    # -------------------------------------------------------------------------
    # Tag counts
    # -------------------------------------------------------------------------

    def _apply_tag_delta(self, old_tags, new_tags, now: int) -> None:
        """
        Move tag counts from old_tags to new_tags.

        removed = old - new are decremented (and deleted at zero), added =
        new - old are incremented (and created at one). Must run inside the
        transaction of the snippet write that caused it.
        """
        conn = self._require_conn()
        old_set, new_set = set(old_tags), set(new_tags)
        removed = [t for t in _dedupe(old_tags) if t not in new_set]
        added = [t for t in _dedupe(new_tags) if t not in old_set]

        for name in removed:
            row = conn.execute(
                "SELECT id, count FROM tags WHERE name = ?", (name,)
            ).fetchone()
            if row is None:
                logger.debug("Tag %r missing during decrement", name)
                continue
            count = row["count"] - 1
            if count <= 0:
                conn.execute("DELETE FROM tags WHERE id = ?", (row["id"],))
            else:
                conn.execute(
                    "UPDATE tags SET count = ?, last_used = ? WHERE id = ?",
                    (count, now, row["id"]),
                )

        for name in added:
            row = conn.execute(
                "SELECT id, count FROM tags WHERE name = ?", (name,)
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO tags (id, name, count, last_used) VALUES (?, ?, 1, ?)",
                    (generate_id(), name, now),
                )
            else:
                conn.execute(
                    "UPDATE tags SET count = ?, last_used = ? WHERE id = ?",
                    (row["count"] + 1, now, row["id"]),
                )

    def get_all_tags(self) -> list[Tag]:
        """All tags, most used first."""
        cursor = self._require_conn().execute("""
            SELECT id, name, count, last_used FROM tags
            ORDER BY count DESC, id ASC
        """)
        return [
            Tag(id=row["id"], name=row["name"], count=row["count"], last_used=row["last_used"])
            for row in cursor
        ]

    def get_tag_suggestions(self, prefix: str) -> list[Tag]:
        """Up to 10 tags whose name starts with prefix (case-insensitive), by count."""
        lower = prefix.lower()
        matches = [t for t in self.get_all_tags() if t.name.lower().startswith(lower)]
        return matches[:MAX_TAG_SUGGESTIONS]

    def tag_count_mismatches(self) -> dict[str, tuple[int, int]]:
        """
        Compare stored tag counts with the snippets that carry each tag.

        Returns:
            Dict mapping tag name -> (stored count, actual count) for every
            tag where they differ; empty when the cache is consistent
        """
        conn = self._require_conn()
        stored = {row["name"]: row["count"] for row in conn.execute("SELECT name, count FROM tags")}
        actual = {
            row["tag"]: row["n"] for row in conn.execute(
                "SELECT tag, COUNT(*) AS n FROM snippet_tags GROUP BY tag"
            )
        }
        return {
            name: (stored.get(name, 0), actual.get(name, 0))
            for name in set(stored) | set(actual)
            if stored.get(name, 0) != actual.get(name, 0)
        }

    # -------------------------------------------------------------------------
    # Subjects
    # -------------------------------------------------------------------------

    def add_subject(self, draft: Union[Mapping[str, Any], Subject]) -> str:
        """
        Create a subject.

        Returns:
            The new subject id

        Raises:
            DuplicateName: if a subject with this name exists
            ValidationError: if the name is missing or a field is malformed
        """
        fields = _as_record(draft, "subject")
        validate_subject_fields(fields, creating=True)

        subject = Subject(
            id=generate_id(),
            name=fields["name"],
            color_index=fields.get("colorIndex") or 1,
            color_code=fields.get("colorCode") or _random_color(),
            description=fields.get("description") or "",
            year=fields.get("year") or 1,
            semester=fields.get("semester") or 1,
            created_at=now_ms(),
        )
        with self.transaction():
            self._insert_subject(subject)

        logger.info("Added subject %s (%s)", subject.id, subject.name)
        return subject.id

    def get_subject(self, id: str) -> Optional[Subject]:
        """Get a subject by ID, or None."""
        row = self._require_conn().execute(
            "SELECT data_json FROM subjects WHERE id = ?", (id,)
        ).fetchone()
        if row is None:
            return None
        return Subject.from_dict(json.loads(row["data_json"]))

    def get_subject_by_name(self, name: str) -> Optional[Subject]:
        """Get a subject by its unique name, or None."""
        row = self._require_conn().execute(
            "SELECT data_json FROM subjects WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            return None
        return Subject.from_dict(json.loads(row["data_json"]))

    def get_all_subjects(self) -> list[Subject]:
        """All subjects in storage order."""
        cursor = self._require_conn().execute(
            "SELECT data_json FROM subjects ORDER BY rowid"
        )
        return [Subject.from_dict(json.loads(row["data_json"])) for row in cursor]

    def update_subject(self, id: str, fields: Union[Mapping[str, Any], Subject]) -> None:
        """
        Merge fields over a stored subject.

        Snippets keep referring to the old name if the name changes.

        Raises:
            NotFound: if no subject has this id
            DuplicateName: if renamed to another subject's name
        """
        fields = _as_record(fields, "subject")
        validate_subject_fields(fields, creating=False)

        with self.transaction():
            existing = self.get_subject(id)
            if existing is None:
                raise NotFound("subject", id)
            record = existing.to_dict()
            for key, value in fields.items():
                if key not in _IMMUTABLE_FIELDS:
                    record[key] = value
            updated = Subject.from_dict(record)
            try:
                self._require_conn().execute("""
                    UPDATE subjects
                    SET name = ?, year = ?, semester = ?, data_json = ?
                    WHERE id = ?
                """, (updated.name, updated.year, updated.semester,
                      json.dumps(updated.to_dict(), ensure_ascii=False), id))
            except sqlite3.IntegrityError as e:
                raise DuplicateName(updated.name) from e

        logger.info("Updated subject %s", id)

    def delete_subject(self, id: str) -> None:
        """
        Delete a subject. Snippets naming it are left as they are.

        Raises:
            NotFound: if no subject has this id
        """
        with self.transaction():
            cursor = self._require_conn().execute(
                "DELETE FROM subjects WHERE id = ?", (id,)
            )
            if cursor.rowcount == 0:
                raise NotFound("subject", id)

        logger.info("Deleted subject %s", id)

    def _insert_subject(self, subject: Subject) -> None:
        if self.get_subject_by_name(subject.name) is not None:
            raise DuplicateName(subject.name)
        try:
            self._require_conn().execute("""
                INSERT INTO subjects (id, name, year, semester, created_at, data_json)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (subject.id, subject.name, subject.year, subject.semester,
                  subject.created_at, json.dumps(subject.to_dict(), ensure_ascii=False)))
        except sqlite3.IntegrityError as e:
            raise DuplicateName(subject.name) from e

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_settings(self) -> Settings:
        """The settings record."""
        row = self._require_conn().execute(
            "SELECT data_json FROM settings WHERE id = ?", (SETTINGS_ID,)
        ).fetchone()
        if row is None:
            raise StorageUnavailable(f"Settings record missing from {self._db_path}")
        return Settings.from_dict(json.loads(row["data_json"]))

    def update_settings(self, fields: Mapping[str, Any]) -> None:
        """Merge fields over the settings record and bump updatedAt."""
        fields = _as_record(fields, "settings")
        theme = fields.get("theme")
        if theme is not None and theme not in THEMES:
            raise ValidationError(f"Theme must be one of {', '.join(THEMES)}: {theme!r}",
                                  field="theme")

        with self.transaction():
            record = self.get_settings().to_dict()
            for key, value in fields.items():
                if key not in _IMMUTABLE_FIELDS:
                    record[key] = value
            record["updatedAt"] = now_ms()
            settings = Settings.from_dict(record)
            self._require_conn().execute(
                "UPDATE settings SET data_json = ? WHERE id = ?",
                (json.dumps(settings.to_dict()), SETTINGS_ID),
            )

        logger.info("Updated settings: %s", ", ".join(sorted(fields)))

    # -------------------------------------------------------------------------
    # Export / Import
    # -------------------------------------------------------------------------

    def export_database(self) -> dict:
        """
        Point-in-time copy of all four collections in snapshot format.

        Each collection is read in one statement, so each is internally
        consistent; the four reads are not one transaction.
        """
        return {
            "version": SNAPSHOT_VERSION,
            "exportedAt": now_ms(),
            "snippets": [s.to_dict() for s in self.get_all_snippets()],
            "subjects": [s.to_dict() for s in self.get_all_subjects()],
            "settings": self.get_settings().to_dict(),
            "tags": [t.to_dict() for t in self.get_all_tags()],
        }

    def import_database(self, snapshot: Mapping[str, Any], merge: bool = True) -> ImportStats:
        """
        Load snippets and subjects from a snapshot.

        Validation runs before any write. All writes share one transaction.

        With merge, a snippet whose id exists is overwritten only when the
        incoming updatedAt is strictly newer (ties keep the local copy).
        Without merge, every snippet is inserted as new and ids that already
        exist are skipped. Subjects are only ever inserted: an existing name
        or id counts as skipped, never as updated.

        Imported records keep their ids, timestamps and analytics. Tag
        counts are derived from the imported snippets, not from the
        snapshot's tags list.

        Raises:
            ValidationError: if the snapshot is malformed (nothing written)
        """
        validate_snapshot(snapshot)
        stats = ImportStats()

        with self.transaction():
            for record in snapshot["snippets"]:
                incoming = Snippet.from_dict(record)
                existing = self.get_snippet(incoming.id)
                if existing is None:
                    self._insert_imported(incoming)
                    stats.snippets.added += 1
                elif merge and incoming.updated_at > existing.updated_at:
                    self._overwrite_imported(existing, incoming)
                    stats.snippets.updated += 1
                else:
                    stats.snippets.skipped += 1

            for record in snapshot.get("subjects") or []:
                if self._import_subject(record):
                    stats.subjects.added += 1
                else:
                    stats.subjects.skipped += 1

        logger.info("Import (%s): %s", "merge" if merge else "insert", stats.to_dict())
        return stats

    def _insert_imported(self, snippet: Snippet) -> None:
        now = now_ms()
        snippet.created_at = snippet.created_at or now
        snippet.updated_at = snippet.updated_at or snippet.created_at
        with self.transaction():
            self._write_snippet(snippet, insert=True)
            self._apply_tag_delta([], snippet.tags, now)

    def _overwrite_imported(self, existing: Snippet, incoming: Snippet) -> None:
        incoming.created_at = existing.created_at
        with self.transaction():
            self._write_snippet(incoming, insert=False)
            self._apply_tag_delta(existing.tags, incoming.tags, now_ms())

    def _import_subject(self, record: Mapping[str, Any]) -> bool:
        """Insert a subject from a snapshot, keeping its id. False if skipped."""
        fields = dict(record)
        fields.setdefault("id", generate_id())
        fields["createdAt"] = fields.get("createdAt") or now_ms()
        subject = Subject.from_dict(fields)
        if self.get_subject(subject.id) is not None:
            return False
        try:
            with self.transaction():
                self._insert_subject(subject)
        except DuplicateName:
            logger.debug("Skipped subject %r: name exists", subject.name)
            return False
        return True

    def clear_all_data(self) -> None:
        """Empty snippets, subjects and tags in one transaction. Settings stay."""
        with self.transaction():
            conn = self._require_conn()
            conn.execute("DELETE FROM snippet_tags")
            conn.execute("DELETE FROM snippets")
            conn.execute("DELETE FROM subjects")
            conn.execute("DELETE FROM tags")

        logger.info("Cleared all snippets, subjects and tags")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        if getattr(self, "_conn", None) is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
