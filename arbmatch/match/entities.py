# Title entity extraction: pure functions over the tables in vocabulary.yml.
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Pattern, Tuple

import yaml

from arbmatch.models import EntityBag

VOCABULARY_PATH = Path(__file__).resolve().parent / "vocabulary.yml"

_NAME_WORD = r"[A-Z][a-z]+(?:[A-Z][a-z]+)*"
_NAME_RUN = re.compile(rf"\b{_NAME_WORD}(?:[ \t]+{_NAME_WORD})+\b")
_NUMBER = re.compile(r"\b\d+(?:\.\d+)?\b")
_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}\b)")
_SUFFIX_THRESHOLD = re.compile(
    r"(\d+(?:\.\d+)?)\s*(%|(?:percent|million|billion|trillion|cents?|dollars?)\b)"
)
_PREFIX_DOLLAR = re.compile(r"\$\s*(\d+(?:\.\d+)?)(?:\s*(million|billion|trillion)\b)?")
_APOSTROPHES = re.compile(r"['’]")
_NON_ALNUM = re.compile(r"[^a-z0-9 ]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Vocabulary:
    version: int
    stop_words: FrozenSet[str]
    name_leading_words: FrozenSet[str]
    name_stoplist: FrozenSet[str]
    topic_patterns: Tuple[Tuple[str, Pattern[str]], ...]
    topic_categories: Dict[str, str]
    negations: FrozenSet[str]
    units: Dict[str, str]


def load_vocabulary(path: Optional[Path] = None) -> Vocabulary:
    with open(path or VOCABULARY_PATH, "r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)
    if not isinstance(raw, dict) or "version" not in raw:
        raise ValueError("vocabulary.yml must have a top-level 'version'")

    topic_categories: Dict[str, str] = {}
    for category, terms in (raw.get("topics") or {}).items():
        for term in terms or []:
            topic_categories.setdefault(str(term).lower(), str(category))
    topic_patterns = tuple(
        (term, re.compile(rf"\b{re.escape(term)}\b")) for term in topic_categories
    )

    return Vocabulary(
        version=int(raw["version"]),
        stop_words=frozenset(str(w).lower() for w in raw.get("stop_words") or []),
        name_leading_words=frozenset(str(w) for w in raw.get("name_leading_words") or []),
        name_stoplist=frozenset(str(w).lower() for w in raw.get("name_stoplist") or []),
        topic_patterns=topic_patterns,
        topic_categories=topic_categories,
        negations=frozenset(str(w).lower() for w in raw.get("negations") or []),
        units={str(k).lower(): str(v) for k, v in (raw.get("units") or {}).items()},
    )


DEFAULT_VOCABULARY = load_vocabulary()
VOCABULARY_VERSION = DEFAULT_VOCABULARY.version


def normalize_title(text: str) -> str:
    lowered = _APOSTROPHES.sub("", (text or "").lower())
    lowered = _NON_ALNUM.sub(" ", lowered)
    return _WHITESPACE.sub(" ", lowered).strip()


def extract_entities(text: str, vocabulary: Vocabulary = DEFAULT_VOCABULARY) -> EntityBag:
    text = text or ""
    normalized = normalize_title(text)
    tokens = normalized.split()
    numeric_text = _THOUSANDS.sub("", text.lower())

    return EntityBag(
        normalized_text=normalized,
        word_set=frozenset(
            t for t in tokens if len(t) > 2 and t not in vocabulary.stop_words
        ),
        year_set=frozenset(t for t in tokens if _is_year(t)),
        name_set=frozenset(_extract_names(text, vocabulary)),
        number_set=frozenset(_canonical_number(n) for n in _NUMBER.findall(numeric_text)),
        threshold_set=frozenset(_extract_thresholds(numeric_text, vocabulary)),
        topic_set=frozenset(
            term for term, pattern in vocabulary.topic_patterns if pattern.search(normalized)
        ),
        has_negation=any(t in vocabulary.negations for t in tokens),
        source_text=text,
    )


def _is_year(token: str) -> bool:
    return len(token) == 4 and token.isdigit() and 2000 <= int(token) <= 2100


def _extract_names(text: str, vocabulary: Vocabulary) -> List[str]:
    names: List[str] = []
    for match in _NAME_RUN.finditer(text):
        words = match.group(0).split()
        while words and words[0] in vocabulary.name_leading_words:
            words = words[1:]
        if len(words) < 2:
            continue
        name = " ".join(words).lower()
        if name in vocabulary.name_stoplist:
            continue
        names.append(name)
    return names


def _extract_thresholds(numeric_text: str, vocabulary: Vocabulary) -> List[str]:
    thresholds: List[str] = []
    for value, unit in _SUFFIX_THRESHOLD.findall(numeric_text):
        canonical_unit = vocabulary.units.get(unit.lower(), unit.lower())
        thresholds.append(f"{_canonical_number(value)}{canonical_unit}")
    for value, magnitude in _PREFIX_DOLLAR.findall(numeric_text):
        suffix = magnitude.lower() if magnitude else vocabulary.units.get("$", "$")
        thresholds.append(f"{_canonical_number(value)}{suffix}")
    return thresholds


def _canonical_number(value: str) -> str:
    if "." in value:
        value = value.rstrip("0").rstrip(".")
    return value or "0"
