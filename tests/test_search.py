"""Tests for ranking, similarity and the store-bound Search queries."""

import pytest

from conftest import make_record, make_snapshot
from ryana.errors import NotFound, ValidationError
from ryana.search import (
    Search,
    SearchCriteria,
    calculate_relevance,
    calculate_similarity,
    most_common,
    search_by_text,
)
from ryana.types import MS_PER_DAY, ErrorEntry, Snippet

NOW = 1_750_000_000_000


def snip(id, title="", *, tags=(), subject="", description="", code="",
         language="python", favourite=False, age_days=100, **kw):
    return Snippet(
        id=id, title=title, tags=list(tags), subject=subject,
        description=description, code=code, language=language,
        favourite=favourite, updated_at=NOW - int(age_days * MS_PER_DAY),
        created_at=NOW - int(age_days * MS_PER_DAY), **kw,
    )


class TestRelevance:

    def test_sort_scenario(self):
        a = snip("A", "Bubble Sort", tags=["sorting", "beginner"], favourite=True, age_days=0)
        b = snip("B", "Quick Sort", tags=["sorting"], age_days=40)

        results = search_by_text([b, a], "sort", now=NOW)

        assert [s.id for s in results] == ["A", "B"]
        assert results[0].score == 20
        assert results[1].score == 15

    def test_fields_score_additively(self):
        s = snip("x", "parse json", tags=["json-tools"], subject="JSON class",
                 description="json helpers", code="json.loads")
        assert calculate_relevance(s, ["json"], now=NOW) == 10 + 5 + 3 + 2 + 1

    def test_recency_bands(self):
        assert calculate_relevance(snip("a", age_days=6.9), [], now=NOW) == 3
        assert calculate_relevance(snip("b", age_days=7), [], now=NOW) == 1
        assert calculate_relevance(snip("c", age_days=29), [], now=NOW) == 1
        assert calculate_relevance(snip("d", age_days=30), [], now=NOW) == 0

    def test_all_terms_must_match(self):
        foo_bar = snip("1", "foo", code="bar")
        foo_only = snip("2", "foo")
        results = search_by_text([foo_bar, foo_only], "FOO  bar", now=NOW)
        assert [s.id for s in results] == ["1"]

    def test_terms_match_error_text_and_language(self):
        err = snip("e", "Trace", language="rust", type="error",
                   errors=[ErrorEntry(message="borrow checker", solution="clone it")])
        assert [s.id for s in search_by_text([err], "rust clone", now=NOW)] == ["e"]

    def test_ties_broken_by_updated_then_input_order(self):
        old = snip("old", "sort", age_days=50)
        new = snip("new", "sort", age_days=40)
        same1 = snip("s1", "sort", age_days=60)
        same2 = snip("s2", "sort", age_days=60)
        results = search_by_text([same1, old, same2, new], "sort", now=NOW)
        assert [s.id for s in results] == ["new", "old", "s1", "s2"]

    def test_input_not_mutated(self):
        s = snip("x", "sort")
        search_by_text([s], "sort", now=NOW)
        assert s.score is None


class TestSimilarity:

    def test_components(self):
        a = snip("a", "Binary Search Tree", subject="DSA", language="python", tags=["tree", "bst"])
        b = snip("b", "Binary tree traversal", subject="DSA", language="python", tags=["tree"])
        # subject 10, language 5, one shared tag 3, "binary" 2 ("tree" is 4 chars too)
        assert calculate_similarity(a, b) == 10 + 5 + 3 + 2 + 2

    def test_empty_subject_does_not_count(self):
        a = snip("a", language="c")
        b = snip("b", language="go")
        assert calculate_similarity(a, b) == 0

    def test_repeated_words_counted_per_occurrence(self):
        a = snip("a", "sort sort", language="x")
        b = snip("b", "sort", language="y")
        assert calculate_similarity(a, b) == 4


class TestMostCommon:

    def test_first_seen_wins_ties(self):
        assert most_common(["b", "a", "a", "b", "c"]) == "b"

    def test_empty_values_ignored(self):
        assert most_common(["", None, "", "x"]) == "x"
        assert most_common(["", None]) is None
        assert most_common([]) is None


class TestSearchService:

    def test_advanced_search_filters_keep_rank_order(self, seeded):
        nb, ids = seeded
        search = Search(nb.store)
        results = search.advanced_search({"query": "sort", "language": "PYTHON"})
        assert [s.id for s in results] == [ids["bubble"], ids["quick"]]
        results = search.advanced_search(SearchCriteria(query="sort", favourite=False))
        assert [s.id for s in results] == [ids["quick"]]

    def test_advanced_search_tags_any_and_type(self, seeded):
        nb, ids = seeded
        search = Search(nb.store)
        results = search.advanced_search({"tags": ["http", "python-errors"]})
        assert {s.id for s in results} == {ids["fetch"], ids["keyerror"]}
        assert [s.id for s in search.advanced_search({"type": "error"})] == [ids["keyerror"]]

    def test_advanced_search_date_range_inclusive(self, store):
        store.import_database(make_snapshot([
            make_record("early", created_at=1000),
            make_record("mid", created_at=2000),
            make_record("late", created_at=3000),
        ]))
        search = Search(store)
        results = search.advanced_search({"dateFrom": 2000, "dateTo": 3000})
        assert [s.id for s in results] == ["mid", "late"]

    def test_advanced_search_unknown_key(self, store):
        with pytest.raises(ValidationError):
            Search(store).advanced_search({"colour": "red"})

    def test_related(self, seeded):
        nb, ids = seeded
        related = Search(nb.store).find_related_snippets(ids["bubble"])
        assert related[0].id == ids["quick"]
        assert ids["bubble"] not in {s.id for s in related}
        assert all(s.score > 0 for s in related)

    def test_related_unknown_id(self, store):
        with pytest.raises(NotFound):
            Search(store).find_related_snippets("ghost")

    def test_suggestions(self, seeded):
        nb, ids = seeded
        suggestions = Search(nb.store).get_search_suggestions("SOR")
        assert [e["title"] for e in suggestions["snippets"]] == ["Bubble Sort", "Quick Sort"]
        assert {e["type"] for e in suggestions["snippets"]} == {"snippet"}
        assert suggestions["tags"] == [{"name": "sorting", "type": "tag"}]
        assert suggestions["subjects"] == []
        py = Search(nb.store).get_search_suggestions("py")
        assert py["languages"] == [{"name": "python", "type": "language"}]

    def test_statistics(self, seeded):
        nb, ids = seeded
        nb.record_view(ids["fetch"])
        nb.record_copy(ids["fetch"])
        stats = Search(nb.store).get_statistics()
        assert stats.total == 4
        assert stats.code == 3
        assert stats.errors == 1
        assert stats.favourites == 1
        assert stats.subjects == 2
        assert stats.unique_tags == 4
        assert stats.languages == 2
        assert stats.most_used_language == "python"
        assert stats.most_used_subject == "Algorithms"
        assert stats.top_tags[0] == {"name": "sorting", "count": 2}
        assert (stats.total_views, stats.total_copies) == (1, 1)
        assert stats.created_this_week == 4

    def test_statistics_empty(self, store):
        stats = Search(store).get_statistics()
        assert stats.total == 0
        assert stats.most_used_language is None

    def test_popular_recent_errors_category(self, seeded):
        nb, ids = seeded
        search = Search(nb.store)
        nb.record_view(ids["quick"])
        nb.record_copy(ids["fetch"])
        assert [s.id for s in search.get_most_popular(2)] == [ids["fetch"], ids["quick"]]
        assert len(search.get_recently_added()) == 4
        assert search.get_recently_added(limit=1)[0].id == search.get_recently_added()[0].id
        assert [s.id for s in search.get_frequent_errors()] == [ids["keyerror"]]
        assert {s.id for s in search.get_by_category("SORTING")} == {ids["bubble"], ids["quick"]}
