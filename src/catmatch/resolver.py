"""Match free-text completion answers back to a closed category vocabulary.

Tiers run in a fixed order and stop at the first hit:

exact
    Normalized answer equals a normalized category name.
substring
    A normalized category name appears inside the answer. The first category
    in enumeration order wins, so callers must pass categories in a stable
    order (ascending id).
fuzzy
    Highest rapidfuzz ratio strictly above the threshold; ties keep the
    first category seen.
"""
from __future__ import annotations

from typing import Protocol, Sequence

from rapidfuzz import fuzz

from .config import DEFAULT_FUZZY_THRESHOLD
from .models import Category, Matched, MatchMethod, MatchResult, NoMatch

QUOTE_CHARS = "\"'`“”‘’"
_STRIP_CHARS = QUOTE_CHARS + " \t\r\n\0\x0b"


def normalize_text(text: str) -> str:
    return str(text or "").strip(_STRIP_CHARS).lower()


def similarity(left: str, right: str) -> float:
    if not left or not right:
        return 0.0
    return float(fuzz.ratio(left, right))


class Matcher(Protocol):
    name: str

    def match(self, text: str, categories: Sequence[Category]) -> MatchResult:
        ...


def _named(categories: Sequence[Category]):
    for category in categories:
        normalized = normalize_text(category.name)
        if normalized:
            yield category, normalized


class ExactMatcher:
    name = "exact"

    def match(self, text: str, categories: Sequence[Category]) -> MatchResult:
        for category, normalized in _named(categories):
            if normalized == text:
                return Matched(category, MatchMethod.EXACT)
        return NoMatch()


class SubstringMatcher:
    name = "substring"

    def match(self, text: str, categories: Sequence[Category]) -> MatchResult:
        for category, normalized in _named(categories):
            if normalized in text:
                return Matched(category, MatchMethod.SUBSTRING)
        return NoMatch()


class FuzzyMatcher:
    name = "fuzzy"

    def __init__(self, threshold: float = DEFAULT_FUZZY_THRESHOLD) -> None:
        self.threshold = threshold

    def match(self, text: str, categories: Sequence[Category]) -> MatchResult:
        best: Category | None = None
        best_score = 0.0
        for category, normalized in _named(categories):
            score = similarity(text, normalized)
            if score > self.threshold and score > best_score:
                best = category
                best_score = score
        if best is None:
            return NoMatch()
        return Matched(best, MatchMethod.FUZZY, round(best_score, 2))


DEFAULT_TIER_ORDER = ("exact", "substring", "fuzzy")


def build_matchers(
    order: Sequence[str] = DEFAULT_TIER_ORDER,
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> list[Matcher]:
    factories = {
        "exact": ExactMatcher,
        "substring": SubstringMatcher,
        "fuzzy": lambda: FuzzyMatcher(fuzzy_threshold),
    }
    matchers: list[Matcher] = []
    for name in order:
        key = str(name).strip().lower()
        if key not in factories:
            raise ValueError(f"Unknown match tier '{name}'. Expected one of {sorted(factories)}.")
        matchers.append(factories[key]())
    return matchers


class CategoryResolver:
    def __init__(
        self,
        matchers: Sequence[Matcher] | None = None,
        *,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
    ) -> None:
        self.matchers = list(matchers) if matchers is not None else build_matchers(fuzzy_threshold=fuzzy_threshold)

    def resolve(self, raw_text: str, categories: Sequence[Category]) -> MatchResult:
        text = normalize_text(raw_text)
        if not text or not categories:
            return NoMatch()
        for matcher in self.matchers:
            result = matcher.match(text, categories)
            if result.matched:
                return result
        return NoMatch()
