"""Tests for the Notebook facade: views, filters, sorting and pass-throughs."""

import logging

import pytest

from conftest import make_record, make_snapshot
from ryana.api import SORT_ORDERS, Notebook, QueryFilters
from ryana.config import StoreConfig, SettingsDefaults
from ryana.errors import ConfirmationRequired, NotFound, StorageUnavailable, ValidationError
from ryana.protocol import SnippetStoreProtocol
from ryana.store import SnippetStore


def _ids(snippets):
    return [s.id for s in snippets]


class TestViews:

    def test_all_is_code_only(self, seeded):
        nb, ids = seeded
        assert set(_ids(nb.query())) == {ids["bubble"], ids["quick"], ids["fetch"]}

    def test_everything(self, seeded):
        nb, ids = seeded
        assert len(nb.query(view="everything")) == 4

    def test_errors(self, seeded):
        nb, ids = seeded
        assert _ids(nb.query(view="errors")) == [ids["keyerror"]]

    def test_favourites(self, seeded):
        nb, ids = seeded
        assert _ids(nb.query(view="favourites")) == [ids["bubble"]]

    def test_unknown_view(self, notebook):
        with pytest.raises(ValidationError) as exc:
            notebook.query(view="archived")
        assert exc.value.field == "view"


class TestFilters:

    def test_language_subject_tag(self, seeded):
        nb, ids = seeded
        assert set(_ids(nb.query(view="everything", language="python"))) == {
            ids["bubble"], ids["quick"], ids["keyerror"]}
        assert _ids(nb.query(subject="Web")) == [ids["fetch"]]
        assert set(_ids(nb.query(tag="sorting"))) == {ids["bubble"], ids["quick"]}
        assert _ids(nb.query(tag="sorting", favourite=False)) == [ids["quick"]]

    def test_naive_text(self, seeded):
        nb, ids = seeded
        assert _ids(nb.query(view="everything", text="d.get")) == [ids["keyerror"]]
        # Naive search does not split terms
        assert nb.query(text="bubble quick") == []

    def test_ranked_text(self, seeded):
        nb, ids = seeded
        results = nb.query(text="sort", ranked=True, sort="relevance")
        assert _ids(results) == [ids["bubble"], ids["quick"]]
        assert results[0].score > results[1].score

    def test_ranked_text_respects_view(self, seeded):
        nb, ids = seeded
        assert nb.query(view="errors", text="sort", ranked=True) == []

    def test_query_filters_object(self, seeded):
        nb, ids = seeded
        filters = QueryFilters(view="everything", language="javascript")
        assert _ids(nb.query(filters)) == [ids["fetch"]]

    def test_unknown_keyword(self, notebook):
        with pytest.raises(ValidationError):
            notebook.query(colour="red")


class TestSorting:

    @pytest.fixture
    def sortable(self, notebook):
        notebook.import_data(make_snapshot([
            make_record("b", "banana", created_at=1000, updated_at=3000,
                        analytics={"timesCopied": 1, "timesViewed": 9}),
            make_record("a", "Apple", created_at=3000, updated_at=1000,
                        analytics={"timesCopied": 5, "timesViewed": 1}),
            make_record("c", "cherry", created_at=2000, updated_at=2000),
        ]))
        return notebook

    @pytest.mark.parametrize("sort, expected", [
        ("updated", ["b", "c", "a"]),
        ("created", ["a", "c", "b"]),
        ("title", ["a", "b", "c"]),
        ("copied", ["a", "b", "c"]),
        ("viewed", ["b", "a", "c"]),
        ("relevance", ["b", "a", "c"]),
    ])
    def test_orders(self, sortable, sort, expected):
        assert _ids(sortable.query(sort=sort)) == expected

    def test_all_orders_covered(self):
        assert set(SORT_ORDERS) == {"updated", "created", "title", "copied", "viewed", "relevance"}

    def test_unknown_sort(self, notebook):
        with pytest.raises(ValidationError) as exc:
            notebook.query(sort="random")
        assert exc.value.field == "sort"


class TestWrites:

    def test_add_update_delete(self, notebook):
        id = notebook.add_snippet({"code": "x"}, title="T", tags=["a"])
        updated = notebook.update(id, tags=["b"], language="go")
        assert updated.tags == ["b"]
        assert updated.language == "go"
        assert [t.name for t in notebook.list_tags()] == ["b"]
        notebook.delete(id)
        assert notebook.get(id) is None
        assert notebook.list_tags() == []

    def test_toggle_favourite(self, notebook):
        id = notebook.add_snippet(code="x")
        assert notebook.toggle_favourite(id) is True
        assert notebook.get(id).favourite is True
        assert notebook.toggle_favourite(id) is False
        with pytest.raises(NotFound):
            notebook.toggle_favourite("ghost")

    def test_view_and_copy_counters(self, notebook):
        id = notebook.add_snippet(code="x = 1")
        notebook.record_view(id)
        copied = notebook.record_copy(id)
        assert copied.code == "x = 1"
        assert copied.analytics.times_viewed == 1
        assert copied.analytics.times_copied == 1

    def test_languages(self, seeded):
        nb, ids = seeded
        assert nb.list_languages() == ["javascript", "python"]

    def test_subjects(self, notebook):
        id = notebook.add_subject("OS", year=2)
        notebook.update_subject(id, semester=2)
        [subject] = notebook.list_subjects()
        assert (subject.name, subject.year, subject.semester) == ("OS", 2, 2)
        notebook.delete_subject(id)
        assert notebook.list_subjects() == []

    def test_settings(self, notebook):
        settings = notebook.update_settings(theme="dark")
        assert settings.theme == "dark"
        assert notebook.get_settings().theme == "dark"

    def test_import_replace_needs_confirm(self, seeded):
        nb, ids = seeded
        with pytest.raises(ConfirmationRequired):
            nb.import_data(nb.export_data(), mode="replace")

    def test_export_variants(self, seeded):
        nb, ids = seeded
        assert nb.export_selected([ids["fetch"]])["snippets"][0]["id"] == ids["fetch"]
        assert len(nb.export_by_subject("Algorithms")["snippets"]) == 2
        assert len(nb.export_data()["snippets"]) == 4

    def test_discovery_passthroughs(self, seeded):
        nb, ids = seeded
        assert nb.related(ids["bubble"])[0].id == ids["quick"]
        assert nb.suggestions("fetch")["snippets"][0]["id"] == ids["fetch"]
        assert nb.statistics().total == 4
        assert nb.search("sort", limit=1)[0].id == ids["bubble"]
        assert nb.advanced_search({"type": "error"})[0].id == ids["keyerror"]
        assert nb.frequent_errors()[0].id == ids["keyerror"]
        assert len(nb.recently_added()) == 4
        assert len(nb.most_popular(2)) == 2
        assert len(nb.by_category("sorting")) == 2


class TestLifecycle:

    def test_creates_config_and_database(self, tmp_path):
        with Notebook(tmp_path / "nb") as nb:
            nb.add_snippet(code="x")
        assert (tmp_path / "nb" / "ryana.toml").exists()
        assert (tmp_path / "nb" / "ryana.db").exists()
        assert (tmp_path / "nb" / "ryana-ops.log").exists()

    def test_default_store_from_env(self, tmp_path):
        with Notebook() as nb:
            assert nb.store_path == tmp_path / "default-store"

    def test_config_defaults_seed_settings(self, tmp_path):
        config = StoreConfig(path=tmp_path / "cfg",
                             defaults=SettingsDefaults(theme="dark", default_language="rust"))
        with Notebook(config=config) as nb:
            assert nb.get_settings().theme == "dark"
            assert nb.get_settings().default_language == "rust"

    def test_store_satisfies_protocol(self, store):
        assert isinstance(store, SnippetStoreProtocol)

    def test_injected_store_not_closed(self, tmp_path):
        store = SnippetStore(tmp_path / "shared.db")
        with Notebook(store=store) as nb:
            nb.add_snippet(code="x")
        assert store.count_snippets() == 1
        store.close()

    def test_ops_log_detached_on_close(self, tmp_path):
        nb = Notebook(tmp_path / "nb")
        handler = nb._ops_log_handler
        assert handler in logging.getLogger("ryana").handlers
        nb.close()
        assert handler not in logging.getLogger("ryana").handlers

    def test_storage_errors_propagate(self, tmp_path):
        store = SnippetStore(tmp_path / "closed.db")
        nb = Notebook(store=store)
        store.close()
        with pytest.raises(StorageUnavailable):
            nb.query()
        nb.close()
