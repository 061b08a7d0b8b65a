"""Pairwise similarity between two extracted titles.

Three strategies share one interface:

* ``hybrid``  - sentence-embedding cosine blended with entity agreement.
* ``lexical`` - exact/containment shortcuts, a year gate, then weighted
  Jaccard over words, names and numbers.
* ``keyword`` - additive entity agreement plus raw word overlap; the
  terminal link of every chain, used when neither embeddings nor a usable
  lexical signal exist.

A :class:`ScoringChain` holds an ordered list of strategies and uses the
first one whose ``supports`` check accepts the pair. A pass started with
embeddings degrades to lexical scoring for any market whose vector is
missing, and to keyword scoring for titles with no alphanumeric text.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import AbstractSet, List, Optional, Sequence, Tuple

from arbmatch.match.entities import extract_entities
from arbmatch.models import EntityBag

logger = logging.getLogger(__name__)

Vector = Sequence[float]

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.85

LEXICAL_WORD_WEIGHT = 0.6
LEXICAL_NAME_WEIGHT = 0.25
LEXICAL_NUMBER_WEIGHT = 0.15

HYBRID_EMBEDDING_WEIGHT = 0.6
HYBRID_ENTITY_WEIGHT = 0.4
HYBRID_WORD_WEIGHT = 0.1
HYBRID_PRUNE_BELOW = 0.4
HYBRID_MAX_CONFLICT_CATEGORIES = 1

YEAR_MATCH = 0.2
YEAR_CONFLICT = -0.3
NAME_MATCH = 0.25
NAME_MISMATCH = -0.1
TOPIC_MATCH = 0.15
THRESHOLD_MATCH = 0.15
THRESHOLD_CONFLICT = -0.2
NEGATION_CONFLICT = -0.4
ENTITY_WORD_WEIGHT = 0.3


@dataclass(frozen=True)
class ScoreResult:
    score: float
    strategy: str
    matches: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    embedding_similarity: Optional[float] = None
    entity_score: Optional[float] = None
    word_overlap: Optional[float] = None
    discarded: bool = False


@dataclass(frozen=True)
class EntityComparison:
    score: float
    word_overlap: float
    matches: List[str]
    conflicts: List[str]
    conflict_categories: Tuple[str, ...]


def jaccard(left: AbstractSet[str], right: AbstractSet[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def cosine_similarity(vec_a: Optional[Vector], vec_b: Optional[Vector]) -> float:
    if vec_a is None or vec_b is None:
        return 0.0
    if len(vec_a) == 0 or len(vec_a) != len(vec_b):
        return 0.0
    dot = float(sum(a * b for a, b in zip(vec_a, vec_b)))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def compare_entities(a: EntityBag, b: EntityBag) -> EntityComparison:
    score = 0.0
    matches: List[str] = []
    conflicts: List[str] = []
    categories: List[str] = []

    shared_years = a.year_set & b.year_set
    if shared_years:
        matches.append(f"year: {', '.join(sorted(shared_years))}")
        score += YEAR_MATCH
    elif a.year_set and b.year_set:
        conflicts.append(f"different years: {_fmt(a.year_set)} vs {_fmt(b.year_set)}")
        categories.append("year")
        score += YEAR_CONFLICT

    shared_names = a.name_set & b.name_set
    if shared_names:
        matches.append(f"names: {', '.join(sorted(shared_names))}")
        score += NAME_MATCH
    elif a.name_set and b.name_set:
        score += NAME_MISMATCH

    shared_topics = a.topic_set & b.topic_set
    if shared_topics:
        matches.append(f"topics: {', '.join(sorted(shared_topics))}")
        score += TOPIC_MATCH

    if a.threshold_set and b.threshold_set:
        shared_thresholds = a.threshold_set & b.threshold_set
        if shared_thresholds:
            matches.append(f"thresholds: {', '.join(sorted(shared_thresholds))}")
            score += THRESHOLD_MATCH
        else:
            conflicts.append(
                f"different thresholds: {_fmt(a.threshold_set)} vs {_fmt(b.threshold_set)}"
            )
            categories.append("threshold")
            score += THRESHOLD_CONFLICT

    # Opposite polarity flips the proposition.
    if a.has_negation != b.has_negation:
        conflicts.append("negation mismatch")
        categories.append("negation")
        score += NEGATION_CONFLICT

    word_overlap = jaccard(a.word_set, b.word_set)
    score += ENTITY_WORD_WEIGHT * word_overlap

    return EntityComparison(
        score=score,
        word_overlap=word_overlap,
        matches=matches,
        conflicts=conflicts,
        conflict_categories=tuple(categories),
    )


def lexical_score(a: EntityBag, b: EntityBag) -> ScoreResult:
    if _same_source_text(a, b):
        return ScoreResult(score=EXACT_SCORE, strategy=LexicalStrategy.name, matches=["exact title"])

    if not a.normalized_text or not b.normalized_text:
        return ScoreResult(score=0.0, strategy=LexicalStrategy.name, conflicts=["empty title"])

    if a.normalized_text == b.normalized_text:
        return ScoreResult(score=EXACT_SCORE, strategy=LexicalStrategy.name, matches=["exact title"])

    if a.normalized_text in b.normalized_text or b.normalized_text in a.normalized_text:
        return ScoreResult(
            score=CONTAINMENT_SCORE, strategy=LexicalStrategy.name, matches=["title containment"]
        )

    if a.year_set and b.year_set and not (a.year_set & b.year_set):
        return ScoreResult(
            score=0.0,
            strategy=LexicalStrategy.name,
            conflicts=[f"different years: {_fmt(a.year_set)} vs {_fmt(b.year_set)}"],
        )

    word_score = jaccard(a.word_set, b.word_set)
    name_score = jaccard(a.name_set, b.name_set)
    number_score = jaccard(a.number_set, b.number_set)
    score = (
        LEXICAL_WORD_WEIGHT * word_score
        + LEXICAL_NAME_WEIGHT * name_score
        + LEXICAL_NUMBER_WEIGHT * number_score
    )

    matches: List[str] = []
    shared_years = a.year_set & b.year_set
    if shared_years:
        matches.append(f"year: {', '.join(sorted(shared_years))}")
    shared_names = a.name_set & b.name_set
    if shared_names:
        matches.append(f"names: {', '.join(sorted(shared_names))}")
    shared_words = a.word_set & b.word_set
    if shared_words:
        matches.append(f"words: {len(shared_words)} shared")

    return ScoreResult(
        score=score,
        strategy=LexicalStrategy.name,
        matches=matches,
        word_overlap=word_score,
    )


def _same_source_text(a: EntityBag, b: EntityBag) -> bool:
    # Punctuation-only titles normalise to "", so compare the raw text first.
    raw = a.source_text.strip()
    return bool(raw) and raw == b.source_text.strip()


def similarity(title_a: str, title_b: str) -> float:
    """Lexical similarity of two raw titles."""
    return lexical_score(extract_entities(title_a), extract_entities(title_b)).score


class ScoringStrategy:
    name = ""

    def supports(
        self,
        a: EntityBag,
        b: EntityBag,
        emb_a: Optional[Vector] = None,
        emb_b: Optional[Vector] = None,
    ) -> bool:
        return True

    def score(
        self,
        a: EntityBag,
        b: EntityBag,
        emb_a: Optional[Vector] = None,
        emb_b: Optional[Vector] = None,
    ) -> ScoreResult:
        raise NotImplementedError


class LexicalStrategy(ScoringStrategy):
    name = "lexical"

    def supports(self, a, b, emb_a=None, emb_b=None) -> bool:
        return bool(a.normalized_text and b.normalized_text) or _same_source_text(a, b)

    def score(self, a, b, emb_a=None, emb_b=None) -> ScoreResult:
        return lexical_score(a, b)


class HybridStrategy(ScoringStrategy):
    name = "hybrid"

    def __init__(
        self,
        prune_below: float = HYBRID_PRUNE_BELOW,
        max_conflict_categories: int = HYBRID_MAX_CONFLICT_CATEGORIES,
    ) -> None:
        self.prune_below = prune_below
        self.max_conflict_categories = max_conflict_categories

    def supports(self, a, b, emb_a=None, emb_b=None) -> bool:
        return bool(emb_a is not None and len(emb_a) and emb_b is not None and len(emb_b))

    def score(self, a, b, emb_a=None, emb_b=None) -> ScoreResult:
        embedding_sim = cosine_similarity(emb_a, emb_b)
        if embedding_sim < self.prune_below:
            return ScoreResult(
                score=0.0,
                strategy=self.name,
                embedding_similarity=embedding_sim,
                discarded=True,
            )

        comparison = compare_entities(a, b)
        if len(comparison.conflict_categories) > self.max_conflict_categories:
            return ScoreResult(
                score=0.0,
                strategy=self.name,
                matches=comparison.matches,
                conflicts=comparison.conflicts,
                embedding_similarity=embedding_sim,
                entity_score=comparison.score,
                word_overlap=comparison.word_overlap,
                discarded=True,
            )

        score = (
            HYBRID_EMBEDDING_WEIGHT * embedding_sim
            + HYBRID_ENTITY_WEIGHT * max(0.0, comparison.score)
            + HYBRID_WORD_WEIGHT * comparison.word_overlap
        )
        return ScoreResult(
            score=_clamp(score),
            strategy=self.name,
            matches=comparison.matches,
            conflicts=comparison.conflicts,
            embedding_similarity=embedding_sim,
            entity_score=comparison.score,
            word_overlap=comparison.word_overlap,
        )


class KeywordStrategy(ScoringStrategy):
    name = "keyword"

    def score(self, a, b, emb_a=None, emb_b=None) -> ScoreResult:
        comparison = compare_entities(a, b)
        return ScoreResult(
            score=_clamp(comparison.score + comparison.word_overlap),
            strategy=self.name,
            matches=comparison.matches,
            conflicts=comparison.conflicts,
            entity_score=comparison.score,
            word_overlap=comparison.word_overlap,
        )


class ScoringChain:
    def __init__(self, strategies: Sequence[ScoringStrategy]) -> None:
        if not strategies:
            raise ValueError("ScoringChain needs at least one strategy")
        self.strategies = list(strategies)

    @property
    def names(self) -> List[str]:
        return [strategy.name for strategy in self.strategies]

    def score(
        self,
        a: EntityBag,
        b: EntityBag,
        emb_a: Optional[Vector] = None,
        emb_b: Optional[Vector] = None,
    ) -> ScoreResult:
        for strategy in self.strategies:
            if strategy.supports(a, b, emb_a, emb_b):
                return strategy.score(a, b, emb_a, emb_b)
        # The final strategy is the catch-all.
        return self.strategies[-1].score(a, b, emb_a, emb_b)


SCORING_MODES = ("auto", "hybrid", "lexical", "keyword")


def build_chain(embeddings_available: bool, mode: str = "auto") -> ScoringChain:
    if mode not in SCORING_MODES:
        raise ValueError(f"Unknown scoring mode: {mode}")
    if mode == "keyword":
        return ScoringChain([KeywordStrategy()])
    if mode == "lexical" or not embeddings_available:
        return ScoringChain([LexicalStrategy(), KeywordStrategy()])
    return ScoringChain([HybridStrategy(), LexicalStrategy(), KeywordStrategy()])


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _fmt(values: AbstractSet[str]) -> str:
    return ",".join(sorted(values))
