import pytest

from catmatch.models import Category, MatchMethod
from catmatch.resolver import (
    CategoryResolver,
    ExactMatcher,
    FuzzyMatcher,
    build_matchers,
    normalize_text,
)


def _vocab():
    return [
        Category(10, "Home & Garden"),
        Category(11, "Garden Tools"),
        Category(12, "Kitchen"),
    ]


def test_normalize_text_strips_quotes_and_whitespace():
    assert normalize_text('  "Garden Tools"\n') == "garden tools"
    assert normalize_text("“Kitchen”") == "kitchen"


@pytest.mark.parametrize("answer", ["Kitchen", "kitchen", " 'KITCHEN' ", '"Kitchen"\n'])
def test_exact_match_ignores_case_and_quotes(answer):
    result = CategoryResolver().resolve(answer, _vocab())
    assert result.matched
    assert result.category.id == 12
    assert result.method == MatchMethod.EXACT


def test_exact_match_does_not_depend_on_order():
    vocab = list(reversed(_vocab()))
    result = CategoryResolver().resolve("Garden Tools", vocab)
    assert result.category.id == 11
    assert result.method == MatchMethod.EXACT


def test_substring_match_takes_first_category_in_order():
    result = CategoryResolver().resolve("The best fit is Home & Garden Tools", _vocab())
    assert result.matched
    assert result.method == MatchMethod.SUBSTRING
    assert result.category.name == "Home & Garden"


def test_fuzzy_match_recovers_typos():
    result = CategoryResolver().resolve("gaden tols", _vocab())
    assert result.matched
    assert result.method == MatchMethod.FUZZY
    assert result.category.name == "Garden Tools"
    assert result.score > 70


def test_unrelated_answer_is_no_match():
    result = CategoryResolver().resolve("completely unrelated text", _vocab())
    assert not result.matched


def test_empty_inputs_are_no_match():
    resolver = CategoryResolver()
    assert not resolver.resolve("", _vocab()).matched
    assert not resolver.resolve("   ", _vocab()).matched
    assert not resolver.resolve("Kitchen", []).matched


def test_fuzzy_threshold_is_strict():
    matcher = FuzzyMatcher(threshold=100)
    assert not matcher.match("kitchen", [Category(1, "Kitchen")]).matched


def test_blank_category_names_are_skipped():
    vocab = [Category(1, "  "), Category(2, "Kitchen")]
    result = CategoryResolver().resolve("kitchen stuff", vocab)
    assert result.category.id == 2


def test_build_matchers_respects_order():
    matchers = build_matchers(["fuzzy", "exact"], fuzzy_threshold=50)
    assert [matcher.name for matcher in matchers] == ["fuzzy", "exact"]
    assert matchers[0].threshold == 50


def test_build_matchers_rejects_unknown_tier():
    with pytest.raises(ValueError, match="Unknown match tier"):
        build_matchers(["exact", "phonetic"])


def test_resolver_with_single_tier_skips_substring():
    resolver = CategoryResolver([ExactMatcher()])
    assert not resolver.resolve("Kitchen knives", _vocab()).matched


def test_substring_follows_enumeration_order():
    vocab = [Category(1, "Garden Tools"), Category(2, "Home & Garden")]
    result = CategoryResolver().resolve("Best fit: Garden Tools", vocab)
    assert result.method == MatchMethod.SUBSTRING
    assert result.category.id == 1
