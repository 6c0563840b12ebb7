"""
Tag filter construction.

Converts generic "key:value" tag queries into provider-specific boolean
filter expressions. The algorithm is shared; each provider supplies a small
grammar that knows how to render equality, OR and AND nodes.
"""

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol, TypeVar

from ..providers.base import Tag

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FilterGrammar(Protocol[T]):
    """Node constructors for one provider's filter language."""

    def equality(self, key: str, value: str | None) -> T: ...

    def or_(self, clauses: list[T]) -> T: ...

    def and_(self, clauses: list[T]) -> T: ...


def parse_tags(raw_tags: Iterable[str] | None) -> list[Tag]:
    """Parse "key:value" strings, dropping entries without a key."""
    tags = []
    for raw in raw_tags or ():
        tag = Tag.parse(raw)
        if tag is None:
            logger.warning(f"Ignoring tag filter without a key: {raw!r}")
            continue
        tags.append(tag)
    return tags


def build_tag_filter(tags: Sequence[Tag], grammar: FilterGrammar[T]) -> T | None:
    """
    Build a filter matching any of ``tags``.

    Multiple tags are OR-ed: a row matching any one tag is kept.

    Returns:
        The filter expression, or None when there are no tags
    """
    if not tags:
        return None
    clauses = [grammar.equality(tag.key, tag.value) for tag in tags]
    if len(clauses) == 1:
        return clauses[0]
    return grammar.or_(clauses)


def combine_filters(base: T | None, tag_filter: T | None, grammar: FilterGrammar[T]) -> T | None:
    """AND a mandatory base filter with an optional tag filter."""
    if base is None:
        return tag_filter
    if tag_filter is None:
        return base
    return grammar.and_([base, tag_filter])


class AWSFilterGrammar:
    """Cost Explorer ``Expression`` nodes."""

    def equality(self, key: str, value: str | None) -> dict[str, Any]:
        if value is None:
            return {"Tags": {"Key": key}}
        return {"Tags": {"Key": key, "Values": [value]}}

    def or_(self, clauses: list[dict[str, Any]]) -> dict[str, Any]:
        return {"Or": clauses}

    def and_(self, clauses: list[dict[str, Any]]) -> dict[str, Any]:
        return {"And": clauses}

    def dimension(self, key: str, values: list[str]) -> dict[str, Any]:
        return {"Dimensions": {"Key": key, "Values": values}}


class AzureFilterGrammar:
    """Cost Management ``QueryFilter`` nodes."""

    def equality(self, key: str, value: str | None) -> dict[str, Any]:
        return {"tags": {"name": key, "operator": "In", "values": [] if value is None else [value]}}

    def or_(self, clauses: list[dict[str, Any]]) -> dict[str, Any]:
        return {"or": clauses}

    def and_(self, clauses: list[dict[str, Any]]) -> dict[str, Any]:
        return {"and": clauses}
