"""
Core API for the snippet notebook.

Notebook is what callers (the CLI, scripts, tests) talk to. It owns a
SnippetStore and a Search bound to it, and answers list queries with the
view/filter/sort combinations the notebook offers.

Storage failures propagate unchanged; a query never substitutes an empty
or partial result for an error.
"""

import logging
from dataclasses import dataclass, fields as dataclass_fields
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .errors import NotFound, ValidationError
from .protocol import SnippetStoreProtocol
from .search import Search, SearchCriteria, search_by_text
from .store import SnippetStore
from .transfer import (
    ImportMode,
    export_all,
    export_by_subject,
    export_selected,
    import_snapshot,
)
from .types import ImportStats, Settings, Snippet, StoreStatistics, Subject, Tag

logger = logging.getLogger(__name__)


# Which snippets each view starts from
VIEWS = ("all", "favourites", "errors", "everything")


def _by_updated(snippets: list[Snippet]) -> list[Snippet]:
    return sorted(snippets, key=lambda s: -s.updated_at)


def _by_created(snippets: list[Snippet]) -> list[Snippet]:
    return sorted(snippets, key=lambda s: -s.created_at)


def _by_title(snippets: list[Snippet]) -> list[Snippet]:
    return sorted(snippets, key=lambda s: s.title.lower())


def _by_copied(snippets: list[Snippet]) -> list[Snippet]:
    return sorted(snippets, key=lambda s: -s.analytics.times_copied)


def _by_viewed(snippets: list[Snippet]) -> list[Snippet]:
    return sorted(snippets, key=lambda s: -s.analytics.times_viewed)


def _unsorted(snippets: list[Snippet]) -> list[Snippet]:
    return snippets


# "relevance" keeps the ranked order (or storage order when not ranked)
SORT_ORDERS = {
    "updated": _by_updated,
    "created": _by_created,
    "title": _by_title,
    "copied": _by_copied,
    "viewed": _by_viewed,
    "relevance": _unsorted,
}


@dataclass
class QueryFilters:
    """
    A list query: a view, optional free text, equality filters and a sort.

    With ``ranked`` the text is matched term by term and scored; otherwise
    the whole text must occur in one field.
    """
    view: str = "all"
    text: str = ""
    ranked: bool = False
    language: Optional[str] = None
    subject: Optional[str] = None
    tag: Optional[str] = None
    favourite: Optional[bool] = None
    sort: str = "updated"

    def validate(self) -> None:
        if self.view not in VIEWS:
            raise ValidationError(f"Unknown view {self.view!r} (choose from {', '.join(VIEWS)})",
                                  field="view")
        if self.sort not in SORT_ORDERS:
            raise ValidationError(
                f"Unknown sort order {self.sort!r} (choose from {', '.join(SORT_ORDERS)})",
                field="sort",
            )


class Notebook:
    """
    Snippet notebook backed by a local store.

    Usage::

        with Notebook() as nb:
            id = nb.add_snippet({"title": "Bubble Sort", "code": "...", "tags": ["sorting"]})
            for s in nb.query(text="sort", ranked=True, sort="relevance"):
                print(s.title, s.score)
    """

    def __init__(
        self,
        store_path: Optional[Union[str, Path]] = None,
        *,
        config: Optional[StoreConfig] = None,
        store: Optional[SnippetStoreProtocol] = None,
    ) -> None:
        """
        Open (or create) a notebook.

        Args:
            store_path: Store directory. Uses RYANA_STORE_PATH or ~/.ryana
                if not specified.
            config: Pre-loaded StoreConfig (skips config file discovery).
            store: Injected store (skips opening the SQLite database).
        """
        if config is not None:
            self._config: Optional[StoreConfig] = config
            self._store_path: Optional[Path] = Path(config.path)
        elif store is None:
            self._store_path = Path(store_path).resolve() if store_path else get_default_store_path()
            self._config = load_or_create_config(self._store_path)
        else:
            self._config = None
            self._store_path = Path(store_path) if store_path else None

        self._ops_log_handler = None
        if self._store_path is not None:
            from .logging_config import configure_ops_log
            self._store_path.mkdir(parents=True, exist_ok=True)
            self._ops_log_handler = configure_ops_log(self._store_path)

        if store is not None:
            self._store = store
            self._owns_store = False
        else:
            self._store = SnippetStore(
                self._config.database_path,
                settings_defaults=self._config.defaults.to_record(),
            )
            self._owns_store = True

        self._search = Search(self._store)
        logger.debug("Notebook opened at %s", self._store_path)

    @property
    def store(self) -> SnippetStoreProtocol:
        return self._store

    @property
    def store_path(self) -> Optional[Path]:
        return self._store_path

    @property
    def config(self) -> Optional[StoreConfig]:
        return self._config

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def query(self, filters: Optional[QueryFilters] = None, **kwargs: Any) -> list[Snippet]:
        """
        List snippets for a view, narrowed by text and filters, then sorted.

        Views: "all" (code snippets), "favourites", "errors" (error logs),
        "everything". Pass a QueryFilters or its fields as keywords.

        Raises:
            ValidationError: for an unknown view, sort order or keyword
        """
        if filters is None:
            known = {f.name for f in dataclass_fields(QueryFilters)}
            unknown = set(kwargs) - known
            if unknown:
                raise ValidationError(f"Unknown query filter: {', '.join(sorted(unknown))}")
            filters = QueryFilters(**kwargs)
        elif kwargs:
            raise ValidationError("Pass either a QueryFilters or keyword filters, not both")
        filters.validate()

        criteria: dict[str, Any] = {
            "language": filters.language,
            "subject": filters.subject,
            "tag": filters.tag,
            "favourite": filters.favourite,
        }
        if filters.view == "all":
            criteria["type"] = "code"
        elif filters.view == "errors":
            criteria["type"] = "error"
        elif filters.view == "favourites":
            criteria["favourite"] = True
        results = self._store.get_all_snippets(criteria)

        if filters.text:
            if filters.ranked:
                results = search_by_text(results, filters.text)
            else:
                matched = {s.id for s in self._store.search_snippets(filters.text)}
                results = [s for s in results if s.id in matched]

        return SORT_ORDERS[filters.sort](results)

    def get(self, id: str) -> Optional[Snippet]:
        """Get a snippet by ID, or None."""
        return self._store.get_snippet(id)

    def search(self, text: str, *, limit: Optional[int] = None) -> list[Snippet]:
        """Ranked search over every snippet."""
        results = search_by_text(self._store.get_all_snippets(), text)
        return results[:limit] if limit else results

    def advanced_search(self, criteria: Union[SearchCriteria, Mapping[str, Any], None] = None) -> list[Snippet]:
        return self._search.advanced_search(criteria)

    def list_languages(self) -> list[str]:
        """Distinct snippet languages, sorted."""
        return sorted({s.language for s in self._store.get_all_snippets()})

    def related(self, id: str, limit: int = 5) -> list[Snippet]:
        return self._search.find_related_snippets(id, limit)

    def suggestions(self, partial: str) -> dict[str, list[dict]]:
        return self._search.get_search_suggestions(partial)

    def statistics(self) -> StoreStatistics:
        return self._search.get_statistics()

    def by_category(self, category: str) -> list[Snippet]:
        return self._search.get_by_category(category)

    def most_popular(self, limit: int = 10) -> list[Snippet]:
        return self._search.get_most_popular(limit)

    def recently_added(self, days: int = 7, limit: int = 10) -> list[Snippet]:
        return self._search.get_recently_added(days, limit)

    def frequent_errors(self, limit: int = 10) -> list[Snippet]:
        return self._search.get_frequent_errors(limit)

    # -------------------------------------------------------------------------
    # Snippet writes
    # -------------------------------------------------------------------------

    def add_snippet(self, draft: Optional[Mapping[str, Any]] = None, **fields: Any) -> str:
        """Create a snippet from a draft dict and/or keyword fields. Returns its id."""
        record = dict(draft or {})
        record.update(fields)
        return self._store.add_snippet(record)

    def update(self, id: str, changes: Optional[Mapping[str, Any]] = None, **fields: Any) -> Snippet:
        """Apply a partial update and return the stored result."""
        record = dict(changes or {})
        record.update(fields)
        self._store.update_snippet(id, record)
        return self._require(id)

    def delete(self, id: str) -> None:
        self._store.delete_snippet(id)

    def toggle_favourite(self, id: str) -> bool:
        """Flip the favourite flag. Returns the new value."""
        snippet = self._require(id)
        favourite = not snippet.favourite
        self._store.update_snippet(id, {"favourite": favourite})
        return favourite

    def record_view(self, id: str) -> None:
        self._store.update_analytics(id, "view")

    def record_copy(self, id: str) -> Snippet:
        """Count a copy and return the snippet whose code was copied."""
        self._store.update_analytics(id, "copy")
        return self._require(id)

    def _require(self, id: str) -> Snippet:
        snippet = self._store.get_snippet(id)
        if snippet is None:
            raise NotFound("snippet", id)
        return snippet

    # -------------------------------------------------------------------------
    # Subjects, tags, settings
    # -------------------------------------------------------------------------

    def add_subject(self, name: str, **fields: Any) -> str:
        """Create a subject. Extra fields use export-format keys (colorIndex, year, ...)."""
        return self._store.add_subject({"name": name, **fields})

    def list_subjects(self) -> list[Subject]:
        return self._store.get_all_subjects()

    def update_subject(self, id: str, **fields: Any) -> None:
        self._store.update_subject(id, fields)

    def delete_subject(self, id: str) -> None:
        self._store.delete_subject(id)

    def list_tags(self) -> list[Tag]:
        return self._store.get_all_tags()

    def tag_suggestions(self, prefix: str) -> list[Tag]:
        return self._store.get_tag_suggestions(prefix)

    def get_settings(self) -> Settings:
        return self._store.get_settings()

    def update_settings(self, **fields: Any) -> Settings:
        """Update settings (export-format keys) and return the result."""
        self._store.update_settings(fields)
        return self._store.get_settings()

    # -------------------------------------------------------------------------
    # Export / Import
    # -------------------------------------------------------------------------

    def export_data(self) -> dict:
        return export_all(self._store)

    def export_selected(self, ids: Iterable[str]) -> dict:
        return export_selected(self._store, ids)

    def export_by_subject(self, name: str) -> dict:
        return export_by_subject(self._store, name)

    def import_data(
        self,
        data: Mapping[str, Any],
        *,
        mode: Union[ImportMode, str] = ImportMode.MERGE,
        confirm: bool = False,
    ) -> ImportStats:
        return import_snapshot(self._store, data, mode, confirm=confirm)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the store (if opened here) and detach the operations log."""
        if self._owns_store and self._store is not None:
            self._store.close()
        self._owns_store = False
        if self._ops_log_handler is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close resources."""
        self.close()
        return False
