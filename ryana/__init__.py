"""
ryana: a local notebook for code snippets and error logs.

    from ryana import Notebook

    with Notebook() as nb:
        nb.add_snippet(title="Bubble Sort", code="...", language="python", tags=["sorting"])
        results = nb.query(text="sort", ranked=True, sort="relevance", view="everything")
"""

from .api import Notebook, QueryFilters
from .errors import (
    ConfirmationRequired,
    DuplicateName,
    NotFound,
    RyanaError,
    StorageUnavailable,
    ValidationError,
)
from .search import Search, SearchCriteria
from .store import SnippetStore
from .transfer import ImportMode
from .types import ImportStats, Settings, Snippet, StoreStatistics, Subject, Tag

__version__ = "0.1.0"

__all__ = [
    "Notebook",
    "QueryFilters",
    "Search",
    "SearchCriteria",
    "SnippetStore",
    "ImportMode",
    "Snippet",
    "Subject",
    "Tag",
    "Settings",
    "ImportStats",
    "StoreStatistics",
    "RyanaError",
    "NotFound",
    "DuplicateName",
    "ValidationError",
    "ConfirmationRequired",
    "StorageUnavailable",
]
