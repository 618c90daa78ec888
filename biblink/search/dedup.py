"""Deduplicate search results returned by several catalogs."""

import logging
import re
import unicodedata
from difflib import SequenceMatcher
from typing import Optional

from biblink.core.identifiers import normalize_identifier
from biblink.core.settings import DedupConfig
from biblink.search.models import DeduplicatedResult, SearchResult

logger = logging.getLogger(__name__)


# ── Public API ───────────────────────────────────────────────────────


def deduplicate(
    results: list[SearchResult],
    priorities: dict[str, int] | None = None,
    config: DedupConfig | None = None,
) -> list[DeduplicatedResult]:
    """Group results that describe the same work and pick a primary per group.

    Results sharing any normalized identifier are grouped (transitively).
    Results without identifier overlap are grouped when their titles, years
    and first authors agree. The primary is the member from the source with
    the highest priority; ties go to the earlier input. Never raises.
    """
    config = config or DedupConfig()
    if priorities is not None:
        config = config.model_copy(update={"priorities": priorities})

    # Exact repeats of one (id, source) collapse into their first occurrence
    unique: list[SearchResult] = []
    seen: set[tuple[str, str]] = set()
    for result in results:
        if result.key not in seen:
            seen.add(result.key)
            unique.append(result)

    groups = _UnionFind(len(unique))
    _group_by_identifiers(unique, groups)
    _group_by_fuzzy_match(unique, groups, config)

    deduplicated = [
        _build_group([unique[i] for i in members], config)
        for members in groups.components()
    ]

    logger.info(
        "Deduplication: %d results → %d unique (%d duplicates grouped)",
        len(results),
        len(deduplicated),
        len(unique) - len(deduplicated),
    )
    return deduplicated


# ── Grouping ─────────────────────────────────────────────────────────


class _UnionFind:
    """Disjoint sets over input positions."""

    def __init__(self, size: int):
        self._parent = list(range(size))

    def find(self, i: int) -> int:
        while self._parent[i] != i:
            self._parent[i] = self._parent[self._parent[i]]
            i = self._parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        # Smaller root survives so components stay keyed by first position
        if ra < rb:
            self._parent[rb] = ra
        else:
            self._parent[ra] = rb

    def same(self, a: int, b: int) -> bool:
        return self.find(a) == self.find(b)

    def components(self) -> list[list[int]]:
        """Member positions per component, ordered by earliest member."""
        by_root: dict[int, list[int]] = {}
        for i in range(len(self._parent)):
            by_root.setdefault(self.find(i), []).append(i)
        return [by_root[root] for root in sorted(by_root)]


def _group_by_identifiers(results: list[SearchResult], groups: _UnionFind) -> None:
    """Union every pair of results that share a normalized identifier."""
    index: dict[tuple[str, str], int] = {}
    for i, result in enumerate(results):
        for kind, value in result.identifiers.items():
            if not value or not value.strip():
                continue
            key = (kind.value, normalize_identifier(kind, value))
            if key in index:
                groups.union(index[key], i)
            else:
                index[key] = i


def _group_by_fuzzy_match(
    results: list[SearchResult],
    groups: _UnionFind,
    config: DedupConfig,
) -> None:
    """Union results whose title, year and first author agree."""
    titles = [normalize_title(r.title) for r in results]
    surnames = [_surname_key(r) for r in results]

    if config.title_similarity_threshold >= 1.0:
        # Equal titles only: compare within buckets
        buckets: dict[str, list[int]] = {}
        for i, title in enumerate(titles):
            if title:
                buckets.setdefault(title, []).append(i)
        candidates = (
            (a, b)
            for members in buckets.values()
            for pos, a in enumerate(members)
            for b in members[pos + 1 :]
        )
    else:
        candidates = (
            (a, b)
            for a in range(len(results))
            for b in range(a + 1, len(results))
            if titles[a] and titles[b]
        )

    for a, b in candidates:
        if groups.same(a, b):
            continue
        if _is_fuzzy_match(
            results[a], results[b], titles[a], titles[b], surnames[a], surnames[b], config
        ):
            groups.union(a, b)


def _is_fuzzy_match(
    a: SearchResult,
    b: SearchResult,
    title_a: str,
    title_b: str,
    surname_a: Optional[str],
    surname_b: Optional[str],
    config: DedupConfig,
) -> bool:
    if not title_a or not title_b:
        return False
    if title_a != title_b and title_similarity(title_a, title_b) < config.title_similarity_threshold:
        return False
    if a.year is not None and b.year is not None and abs(a.year - b.year) > config.year_tolerance:
        return False
    # Missing authors never match
    return surname_a is not None and surname_a == surname_b


# ── Group Assembly ───────────────────────────────────────────────────


def _build_group(members: list[SearchResult], config: DedupConfig) -> DeduplicatedResult:
    """Pick the primary and union identifiers. ``members`` is in input order."""
    ranked = sorted(
        enumerate(members),
        key=lambda pair: (-config.priority_of(pair[1].source_id), pair[0]),
    )
    primary = ranked[0][1]
    alternates = [r for _, r in ranked[1:]]

    identifiers = dict(primary.identifiers)
    for alt in alternates:
        for kind, value in alt.identifiers.items():
            identifiers.setdefault(kind, value)

    return DeduplicatedResult(
        primary=primary,
        alternates=alternates,
        identifiers=identifiers,
    )


# ── Helpers ──────────────────────────────────────────────────────────


_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SPACE_RE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """Casefold, strip punctuation, collapse whitespace."""
    t = (title or "").casefold()
    t = _PUNCT_RE.sub("", t)
    t = _SPACE_RE.sub(" ", t).strip()
    return t


def title_similarity(t1: str, t2: str) -> float:
    """Fuzzy similarity between two normalized titles (0.0–1.0)."""
    return SequenceMatcher(None, t1, t2).ratio()


def _surname_key(result: SearchResult) -> Optional[str]:
    surname = result.first_author_surname
    if not surname:
        return None
    key = unicodedata.normalize("NFKC", surname).casefold()
    key = _PUNCT_RE.sub("", key).strip()
    return key or None
