"""
Protocol definitions for snippet storage.

SnippetStoreProtocol is what Search and the transfer functions need from a
store. SnippetStore (SQLite) implements it; tests can pass any object that
does.
"""

from contextlib import AbstractContextManager
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from .types import ImportStats, Settings, Snippet, Subject, Tag


@runtime_checkable
class SnippetStoreProtocol(Protocol):
    """
    Storage operations over the four collections.

    Implemented by:
    - SnippetStore (local SQLite file)
    """

    # -- Snippets --

    def add_snippet(self, draft: Mapping[str, Any]) -> str: ...

    def get_snippet(self, id: str) -> Optional[Snippet]: ...

    def get_all_snippets(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> list[Snippet]: ...

    def update_snippet(self, id: str, fields: Mapping[str, Any]) -> None: ...

    def delete_snippet(self, id: str) -> None: ...

    def search_snippets(self, query: str) -> list[Snippet]: ...

    def update_analytics(self, id: str, action: str) -> None: ...

    # -- Subjects, settings, tags --

    def add_subject(self, draft: Mapping[str, Any]) -> str: ...

    def get_subject(self, id: str) -> Optional[Subject]: ...

    def get_all_subjects(self) -> list[Subject]: ...

    def get_subject_by_name(self, name: str) -> Optional[Subject]: ...

    def update_subject(self, id: str, fields: Mapping[str, Any]) -> None: ...

    def delete_subject(self, id: str) -> None: ...

    def get_settings(self) -> Settings: ...

    def update_settings(self, fields: Mapping[str, Any]) -> None: ...

    def get_all_tags(self) -> list[Tag]: ...

    def get_tag_suggestions(self, prefix: str) -> list[Tag]: ...

    # -- Bulk --

    def export_database(self) -> dict: ...

    def import_database(self, snapshot: Mapping[str, Any], merge: bool = True) -> ImportStats: ...

    def clear_all_data(self) -> None: ...

    def transaction(self) -> AbstractContextManager: ...

    def close(self) -> None: ...
