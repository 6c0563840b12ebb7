"""
Tests for tag filter construction.
"""

from cost_reports.providers.base import Tag
from cost_reports.utils.tag_filters import (
    AWSFilterGrammar,
    AzureFilterGrammar,
    build_tag_filter,
    combine_filters,
    parse_tags,
)


class TestParseTags:
    """Test cases for raw tag parsing."""

    def test_parse_tags(self):
        assert parse_tags(["team:a", "env"]) == [Tag(key="team", value="a"), Tag(key="env")]

    def test_keyless_tags_are_dropped(self):
        assert parse_tags([":orphan", "team:a"]) == [Tag(key="team", value="a")]

    def test_none(self):
        assert parse_tags(None) == []


class TestBuildTagFilter:
    """Test cases for the shared filter algorithm."""

    def test_no_tags(self):
        assert build_tag_filter([], AWSFilterGrammar()) is None

    def test_single_tag_is_bare_equality(self):
        assert build_tag_filter([Tag(key="team", value="a")], AWSFilterGrammar()) == {
            "Tags": {"Key": "team", "Values": ["a"]}
        }

    def test_two_tags_are_or(self):
        tags = [Tag(key="team", value="a"), Tag(key="team", value="b")]
        assert build_tag_filter(tags, AWSFilterGrammar()) == {
            "Or": [
                {"Tags": {"Key": "team", "Values": ["a"]}},
                {"Tags": {"Key": "team", "Values": ["b"]}},
            ]
        }

    def test_azure_grammar(self):
        tags = [Tag(key="team", value="a"), Tag(key="env", value="prod")]
        assert build_tag_filter(tags, AzureFilterGrammar()) == {
            "or": [
                {"tags": {"name": "team", "operator": "In", "values": ["a"]}},
                {"tags": {"name": "env", "operator": "In", "values": ["prod"]}},
            ]
        }

    def test_tag_without_value(self):
        assert build_tag_filter([Tag(key="team")], AWSFilterGrammar()) == {"Tags": {"Key": "team"}}
        assert build_tag_filter([Tag(key="team")], AzureFilterGrammar()) == {
            "tags": {"name": "team", "operator": "In", "values": []}
        }


class TestCombineFilters:
    """Test cases for AND-ing a base filter with a tag filter."""

    def test_base_only(self):
        grammar = AWSFilterGrammar()
        base = grammar.dimension("RECORD_TYPE", ["Usage"])
        assert combine_filters(base, None, grammar) == base

    def test_tag_filter_only(self):
        grammar = AzureFilterGrammar()
        tag_filter = grammar.equality("team", "a")
        assert combine_filters(None, tag_filter, grammar) == tag_filter

    def test_both(self):
        grammar = AWSFilterGrammar()
        base = grammar.dimension("RECORD_TYPE", ["Usage"])
        tag_filter = grammar.equality("team", "a")
        assert combine_filters(base, tag_filter, grammar) == {"And": [base, tag_filter]}
