"""Tests for keyword filtering."""

import pytest

from rssfeed_notifier.filters import matches, passes, split_patterns
from rssfeed_notifier.models import FeedItem, Subscription


def _sub(include=None, exclude=None, use_regex=False) -> Subscription:
    return Subscription(
        guild_id="g1",
        channel_id="c1",
        feed_url="https://example.com/feed",
        include_keywords=include,
        exclude_keywords=exclude,
        use_regex=use_regex,
    )


def _item(title="", snippet=None, body=None) -> FeedItem:
    return FeedItem(key="k", title=title, snippet=snippet, body=body)


class TestLiteralMode:
    def test_no_filters_passes(self):
        assert passes(_sub(), _item("Hello World"))

    def test_include_any_keyword_case_insensitive(self):
        sub = _sub(include="rust, python")
        assert passes(sub, _item("Learning Rust programming"))
        assert passes(sub, _item("PYTHON is awesome"))
        assert not passes(sub, _item("JavaScript tutorial"))

    def test_include_without_spaces(self):
        sub = _sub(include="rust,python")
        assert passes(sub, _item("Learning Rust programming"))
        assert not passes(sub, _item("JavaScript tutorial"))

    def test_exclude_rejects_any_match(self):
        sub = _sub(exclude="sponsored, ad")
        assert not passes(sub, _item("Sponsored: buy this"))
        assert passes(sub, _item("Great article"))

    def test_include_and_exclude_combined(self):
        sub = _sub(include="rust", exclude="beta")
        assert passes(sub, _item("Rust 1.80 released"))
        assert not passes(sub, _item("Rust beta channel notes"))
        assert not passes(sub, _item("Go 1.23 released"))

    def test_matches_snippet_text(self):
        sub = _sub(include="python")
        assert passes(sub, _item("Weekly news", snippet="All about Python packaging"))

    def test_falls_back_to_body_when_no_snippet(self):
        sub = _sub(include="python")
        assert passes(sub, _item("Weekly news", body="<p>Python tips</p>"))

    def test_snippet_preferred_over_body(self):
        sub = _sub(include="python")
        assert not passes(sub, _item("Weekly news", snippet="Go things", body="Python"))

    def test_regex_characters_are_literal(self):
        sub = _sub(include="c++")
        assert passes(sub, _item("Modern C++ idioms"))
        assert not passes(sub, _item("C# idioms"))


class TestRegexMode:
    def test_exclude_alternation(self):
        sub = _sub(exclude=r"\[AD\]|\[SPONSORED\]", use_regex=True)
        assert not passes(sub, _item("[AD] Buy now"))
        assert not passes(sub, _item("[sponsored] Partner post"))
        assert passes(sub, _item("Great article"))

    def test_include_pattern(self):
        sub = _sub(include=r"v\d+\.\d+", use_regex=True)
        assert passes(sub, _item("Release v2.14 is out"))
        assert not passes(sub, _item("Release notes"))

    def test_invalid_pattern_falls_back_to_literal(self):
        sub = _sub(include="[invalid", use_regex=True)
        assert passes(sub, _item("this has [invalid in it"))
        assert not passes(sub, _item("nothing here"))

    def test_invalid_pattern_does_not_abort_other_patterns(self):
        sub = _sub(include="[invalid, ^rust", use_regex=True)
        assert passes(sub, _item("Rust weekly"))


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, []),
        ("", []),
        ("rust", ["rust"]),
        (" rust , python ", ["rust", "python"]),
        ("rust,,python,", ["rust", "python"]),
    ],
)
def test_split_patterns(raw, expected):
    assert split_patterns(raw) == expected


def test_matches_literal_lowercases_pattern():
    assert matches("RUST", "learning rust")


def test_trailing_comma_in_exclude_does_not_block_everything():
    sub = _sub(exclude="sponsored,")
    assert passes(sub, _item("Great article"))
    assert not passes(sub, _item("Sponsored post"))


def test_only_commas_means_no_filter():
    assert passes(_sub(include=", ,"), _item("Anything"))
