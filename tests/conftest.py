"""
Shared pytest fixtures for ryana tests.

Every fixture works on its own tmp_path store, so tests never touch
~/.ryana or each other.
"""

import pytest

from ryana.api import Notebook
from ryana.store import SnippetStore
from ryana.types import MS_PER_DAY, now_ms


@pytest.fixture(autouse=True)
def isolated_store_env(tmp_path, monkeypatch):
    """Point the default store (and the error log) at tmp_path."""
    monkeypatch.setenv("RYANA_STORE_PATH", str(tmp_path / "default-store"))


@pytest.fixture
def store(tmp_path):
    """A bare SnippetStore on a fresh SQLite file."""
    s = SnippetStore(tmp_path / "ryana.db")
    yield s
    s.close()


@pytest.fixture
def notebook(tmp_path):
    """A Notebook with its own store directory."""
    nb = Notebook(tmp_path / "notebook")
    yield nb
    nb.close()


def make_record(id, title="Untitled", code="pass", *, tags=None, subject="",
                language="python", type="code", favourite=False,
                created_at=None, updated_at=None, **extra):
    """Build an export-format snippet record for seeding or import."""
    now = now_ms()
    record = {
        "id": id,
        "title": title,
        "code": code,
        "tags": tags or [],
        "subject": subject,
        "language": language,
        "type": type,
        "favourite": favourite,
        "createdAt": created_at if created_at is not None else now - MS_PER_DAY,
        "updatedAt": updated_at if updated_at is not None else now - MS_PER_DAY,
    }
    record.update(extra)
    return record


def make_snapshot(snippets=(), subjects=(), version=1):
    """Build an import snapshot."""
    return {
        "version": version,
        "exportedAt": now_ms(),
        "snippets": list(snippets),
        "subjects": list(subjects),
        "settings": None,
        "tags": None,
    }


@pytest.fixture
def seeded(notebook):
    """A notebook with a few snippets across two subjects."""
    notebook.add_subject("Algorithms", colorIndex=2, year=1, semester=2)
    notebook.add_subject("Web")
    ids = {
        "bubble": notebook.add_snippet(
            title="Bubble Sort", code="def bubble(xs): ...", language="python",
            subject="Algorithms", tags=["sorting", "beginner"], favourite=True,
        ),
        "quick": notebook.add_snippet(
            title="Quick Sort", code="def quick(xs): ...", language="python",
            subject="Algorithms", tags=["sorting"],
        ),
        "fetch": notebook.add_snippet(
            title="Fetch JSON", code="fetch(url).then(r => r.json())",
            language="javascript", subject="Web", tags=["http"],
        ),
        "keyerror": notebook.add_snippet(
            title="KeyError on dict access", code="d['x']", language="python",
            type="error", tags=["python-errors"],
            errors=[{"message": "KeyError: 'x'", "solution": "use d.get('x')"}],
        ),
    }
    return notebook, ids
