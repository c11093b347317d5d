"""
Search and ranking over snippets.

The module-level functions are pure: they take snippet lists and return
new lists. Search binds them to a store for the queries that need fresh
data. Nothing here writes to the store.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional, Union

from .errors import NotFound, ValidationError
from .protocol import SnippetStoreProtocol
from .types import MS_PER_DAY, Snippet, StoreStatistics, now_ms

logger = logging.getLogger(__name__)

SUGGESTION_LIMIT = 5
TOP_TAGS = 5

# Relevance weights per matching term
TITLE_WEIGHT = 10
TAG_WEIGHT = 5
SUBJECT_WEIGHT = 3
DESCRIPTION_WEIGHT = 2
CODE_WEIGHT = 1

FAVOURITE_BONUS = 2
RECENT_WEEK_BONUS = 3
RECENT_MONTH_BONUS = 1


def _searchable_text(snippet: Snippet) -> str:
    parts = [
        snippet.title,
        snippet.description,
        snippet.code,
        snippet.language,
        snippet.subject,
        *snippet.tags,
        *(f"{e.message} {e.solution}" for e in snippet.errors),
    ]
    return " ".join(parts).lower()


def _terms(query: str) -> list[str]:
    return query.lower().split()


def calculate_relevance(snippet: Snippet, terms: Iterable[str], *, now: Optional[int] = None) -> int:
    """
    Heuristic match quality of a snippet for lowercase query terms.

    Per term, additively: title +10, any tag +5, subject +3,
    description +2, code +1. Then +2 for a favourite, and +3 when updated
    within the last 7 days (else +1 within 30 days).
    """
    title = snippet.title.lower()
    tags = [t.lower() for t in snippet.tags]
    subject = snippet.subject.lower()
    description = snippet.description.lower()
    code = snippet.code.lower()

    score = 0
    for term in terms:
        if term in title:
            score += TITLE_WEIGHT
        if any(term in tag for tag in tags):
            score += TAG_WEIGHT
        if term in subject:
            score += SUBJECT_WEIGHT
        if term in description:
            score += DESCRIPTION_WEIGHT
        if term in code:
            score += CODE_WEIGHT

    if snippet.favourite:
        score += FAVOURITE_BONUS

    now = now_ms() if now is None else now
    days_since_update = (now - snippet.updated_at) / MS_PER_DAY
    if days_since_update < 7:
        score += RECENT_WEEK_BONUS
    elif days_since_update < 30:
        score += RECENT_MONTH_BONUS
    return score


def search_by_text(snippets: Iterable[Snippet], query: str, *, now: Optional[int] = None) -> list[Snippet]:
    """
    Ranked term search.

    The query is split on whitespace into lowercase terms. A snippet
    matches when every term is a substring of its combined searchable text
    (title, description, code, language, subject, tags, error messages and
    solutions). Matches are returned as copies with ``score`` set, ordered
    by score, then most recently updated, then input order.
    """
    terms = _terms(query)
    now = now_ms() if now is None else now

    matches = []
    for snippet in snippets:
        text = _searchable_text(snippet)
        if all(term in text for term in terms):
            matches.append(replace(snippet, score=calculate_relevance(snippet, terms, now=now)))

    # sorted() is stable, so equal keys keep input order
    return sorted(matches, key=lambda s: (-s.score, -s.updated_at))


def calculate_similarity(a: Snippet, b: Snippet) -> int:
    """
    How related b is to a.

    +10 same non-empty subject, +5 same language, +3 per tag of a also on
    b, +2 per word of a's title longer than 3 characters that also occurs
    in b's title. Title words are counted as often as they occur in a.
    """
    score = 0
    if a.subject and a.subject == b.subject:
        score += 10
    if a.language == b.language:
        score += 5

    b_tags = set(b.tags)
    score += 3 * sum(1 for tag in a.tags if tag in b_tags)

    b_words = set(b.title.lower().split())
    score += 2 * sum(1 for word in a.title.lower().split() if len(word) > 3 and word in b_words)
    return score


def most_common(values: Iterable[Optional[str]]) -> Optional[str]:
    """Most frequent non-empty value; the first one seen wins a tie. None if there is none."""
    counts: dict[str, int] = {}
    for value in values:
        if value:
            counts[value] = counts.get(value, 0) + 1

    best, best_count = None, 0
    for value, count in counts.items():
        if count > best_count:
            best, best_count = value, count
    return best


@dataclass
class SearchCriteria:
    """Criteria for advanced_search. Unset fields don't narrow."""
    query: str = ""
    type: Optional[str] = None
    language: Optional[str] = None
    subject: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    favourite: Optional[bool] = None
    date_from: Optional[int] = None
    date_to: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SearchCriteria":
        """Accept snake_case or export-style camelCase keys."""
        known = {
            "query": "query", "type": "type", "language": "language",
            "subject": "subject", "tags": "tags", "favourite": "favourite",
            "date_from": "date_from", "dateFrom": "date_from",
            "date_to": "date_to", "dateTo": "date_to",
        }
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                raise ValidationError(f"Unknown search criterion: {key}", field=key)
            kwargs[known[key]] = value
        if kwargs.get("tags") is None:
            kwargs.pop("tags", None)
        return cls(**kwargs)


class Search:
    """Ranked and aggregate queries over a store."""

    def __init__(self, store: SnippetStoreProtocol):
        self._store = store

    def advanced_search(self, criteria: Union[SearchCriteria, Mapping[str, Any], None] = None) -> list[Snippet]:
        """
        Text ranking first, then filters that keep the ranked order.

        Filters apply in order: type, language (case-insensitive), subject,
        tags (any), favourite, created-at range (inclusive at both ends).
        """
        if criteria is None:
            criteria = SearchCriteria()
        elif not isinstance(criteria, SearchCriteria):
            criteria = SearchCriteria.from_dict(criteria)

        results = self._store.get_all_snippets()
        if criteria.query:
            results = search_by_text(results, criteria.query)
        if criteria.type:
            results = [s for s in results if s.type == criteria.type]
        if criteria.language:
            language = criteria.language.lower()
            results = [s for s in results if s.language.lower() == language]
        if criteria.subject:
            results = [s for s in results if s.subject == criteria.subject]
        if criteria.tags:
            wanted = set(criteria.tags)
            results = [s for s in results if wanted.intersection(s.tags)]
        if criteria.favourite is not None:
            results = [s for s in results if s.favourite == criteria.favourite]
        if criteria.date_from is not None:
            results = [s for s in results if s.created_at >= criteria.date_from]
        if criteria.date_to is not None:
            results = [s for s in results if s.created_at <= criteria.date_to]

        logger.debug("advanced_search(%s): %d results", criteria, len(results))
        return results

    def find_related_snippets(self, id: str, limit: int = 5) -> list[Snippet]:
        """
        Snippets most similar to the given one, best first, zero scores dropped.

        Raises:
            NotFound: if no snippet has this id
        """
        target = self._store.get_snippet(id)
        if target is None:
            raise NotFound("snippet", id)

        scored = []
        for other in self._store.get_all_snippets():
            if other.id == id:
                continue
            score = calculate_similarity(target, other)
            if score > 0:
                scored.append(replace(other, score=score))
        scored.sort(key=lambda s: -s.score)
        return scored[:limit]

    def get_search_suggestions(self, partial: str) -> dict[str, list[dict]]:
        """
        Up to five substring matches each among snippet titles, tag names,
        subject names and languages. Every entry carries its category in
        ``type``.
        """
        lower = partial.lower()
        snippets = self._store.get_all_snippets()
        tags = self._store.get_all_tags()
        subjects = self._store.get_all_subjects()

        languages = list(dict.fromkeys(s.language for s in snippets))
        return {
            "snippets": [
                {"id": s.id, "title": s.title, "type": "snippet"}
                for s in snippets if lower in s.title.lower()
            ][:SUGGESTION_LIMIT],
            "tags": [
                {"name": t.name, "type": "tag"}
                for t in tags if lower in t.name.lower()
            ][:SUGGESTION_LIMIT],
            "subjects": [
                {"name": s.name, "type": "subject"}
                for s in subjects if lower in s.name.lower()
            ][:SUGGESTION_LIMIT],
            "languages": [
                {"name": lang, "type": "language"}
                for lang in languages if lower in lang.lower()
            ][:SUGGESTION_LIMIT],
        }

    def get_statistics(self, *, now: Optional[int] = None) -> StoreStatistics:
        """Aggregate counts over the whole notebook."""
        snippets = self._store.get_all_snippets()
        subjects = self._store.get_all_subjects()
        tags = self._store.get_all_tags()
        now = now_ms() if now is None else now
        week_ago = now - 7 * MS_PER_DAY

        return StoreStatistics(
            total=len(snippets),
            code=sum(1 for s in snippets if s.type == "code"),
            errors=sum(1 for s in snippets if s.type == "error"),
            favourites=sum(1 for s in snippets if s.favourite),
            subjects=len(subjects),
            unique_tags=len(tags),
            languages=len({s.language for s in snippets}),
            most_used_language=most_common(s.language for s in snippets),
            most_used_subject=most_common(s.subject for s in snippets),
            top_tags=[{"name": t.name, "count": t.count} for t in tags[:TOP_TAGS]],
            total_views=sum(s.analytics.times_viewed for s in snippets),
            total_copies=sum(s.analytics.times_copied for s in snippets),
            created_this_week=sum(1 for s in snippets if s.created_at >= week_ago),
        )

    def get_by_category(self, category: str) -> list[Snippet]:
        """Snippets whose title, description or tags mention a topic, across subjects."""
        lower = category.lower()
        return [
            s for s in self._store.get_all_snippets()
            if lower in " ".join([s.title, s.description, *s.tags]).lower()
        ]

    def get_most_popular(self, limit: int = 10) -> list[Snippet]:
        """Ranked by copies counted twice plus views."""
        snippets = self._store.get_all_snippets()
        snippets.sort(key=lambda s: -(s.analytics.times_copied * 2 + s.analytics.times_viewed))
        return snippets[:limit]

    def get_recently_added(self, days: int = 7, limit: int = 10, *, now: Optional[int] = None) -> list[Snippet]:
        """Snippets created in the last `days` days, newest first."""
        now = now_ms() if now is None else now
        cutoff = now - days * MS_PER_DAY
        recent = [s for s in self._store.get_all_snippets() if s.created_at >= cutoff]
        recent.sort(key=lambda s: -s.created_at)
        return recent[:limit]

    def get_frequent_errors(self, limit: int = 10) -> list[Snippet]:
        """Error logs, most viewed first."""
        errors = self._store.get_all_snippets({"type": "error"})
        errors.sort(key=lambda s: -s.analytics.times_viewed)
        return errors[:limit]
