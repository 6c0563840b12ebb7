"""
Data normalization utilities for multi-cloud cost reports.

Provides the fold shared by every provider's transform step: each provider
extracts ``CostRow`` records from its native response, and
``normalize_cost_rows`` buckets them by period, groups them by account,
service and dimensions, and materializes one ``Report`` per group.
"""

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, NamedTuple

from ..config.accounts import AccountConfig
from ..providers.base import CloudProvider, CostQuery, Report, TimeGranularity

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Uncategorized"
RESERVED_REPORT_FIELDS = frozenset(Report.model_fields)


class BucketMode(Enum):
    """How an amount lands in an existing period bucket."""

    OVERWRITE = "overwrite"  # one row per period per group
    SUM = "sum"  # several rows may share a period


@dataclass(frozen=True)
class CostRow:
    """One billing row after provider-specific extraction."""

    date: date
    service_name: str
    amount: float
    dimensions: tuple[tuple[str, str], ...] = ()


class GroupKey(NamedTuple):
    """Identity of one report within a fetch cycle."""

    account: str
    service: str
    dimensions: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return "->".join((self.account, self.service, *self.dimensions))


@dataclass
class _ReportBuilder:
    key: GroupKey
    attributes: dict[str, Any]
    buckets: dict[str, float] = field(default_factory=dict)
    amounts: dict[str, list[float]] = field(default_factory=dict)


def parse_amount(value: Any) -> float:
    """Parse a vendor amount; malformed values count as zero."""
    if value is None or value == "":
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Malformed cost amount {value!r}, counting as 0.0")
        return 0.0
    if not math.isfinite(result):
        logger.debug(f"Non-finite cost amount {value!r}, counting as 0.0")
        return 0.0
    return result


def format_period(row_date: date, granularity: TimeGranularity) -> str:
    """Bucket key: ``YYYY-MM`` for monthly queries, ``YYYY-MM-DD`` otherwise."""
    if granularity is TimeGranularity.MONTHLY:
        return row_date.strftime("%Y-%m")
    return row_date.isoformat()


def parse_numeric_date(value: Any) -> date | None:
    """Convert a ``YYYYMMDD`` integer (e.g. ``20240407``) to a date.

    Anything that is not exactly eight digits, or not a real calendar date,
    yields None.
    """
    text = str(value).strip()
    if len(text) != 8 or not text.isdigit():
        return None
    try:
        return date(int(text[:4]), int(text[4:6]), int(text[6:]))
    except ValueError:
        return None


def is_before_start(row_date: date, query: CostQuery) -> bool:
    """True when the row's day starts strictly before the query start."""
    row_start = datetime.combine(row_date, time.min, tzinfo=timezone.utc)
    return row_start < query.start


def get_category_by_service_name(
    service_name: str, category_mappings: Mapping[str, str], default: str = DEFAULT_CATEGORY
) -> str:
    """Look up the category of a raw service name."""
    return category_mappings.get(service_name, default)


def report_attributes(account: AccountConfig) -> dict[str, str]:
    """Static account tags usable as report attributes."""
    attributes = {}
    for key, value in account.static_tags.items():
        if key in RESERVED_REPORT_FIELDS:
            logger.warning(f"Static tag {key!r} on account {account.name} clashes with a report field, skipping")
            continue
        attributes[key] = value
    return attributes


class ReportAccumulator:
    """Ordered map from ``GroupKey`` to the report being built.

    State is local to one transform call; ``reports`` returns immutable
    ``Report`` instances in first-seen group order.
    """

    def __init__(
        self,
        provider: CloudProvider,
        account: AccountConfig,
        canonicalize: Callable[[str], str],
        category_mappings: Mapping[str, str],
        mode: BucketMode,
        default_category: str = DEFAULT_CATEGORY,
    ):
        self.provider = provider
        self.account = account
        self.canonicalize = canonicalize
        self.category_mappings = category_mappings
        self.mode = mode
        self.default_category = default_category
        self.static_attributes = report_attributes(account)
        self._builders: dict[GroupKey, _ReportBuilder] = {}

    def category_for(self, service_name: str) -> str:
        return get_category_by_service_name(service_name, self.category_mappings, self.default_category)

    def group(self, row: CostRow) -> _ReportBuilder:
        """Return the builder for ``row``'s group, creating it on first sight."""
        key = GroupKey(self.account.name, row.service_name, tuple(value for _, value in row.dimensions))
        builder = self._builders.get(key)
        if builder is None:
            attributes = {
                "id": key.id,
                "name": f"{self.provider.value}/{self.account.name}",
                "service": self.canonicalize(row.service_name),
                "category": self.category_for(row.service_name),
                "provider": self.provider,
            }
            for name, value in row.dimensions:
                if name in RESERVED_REPORT_FIELDS:
                    continue
                attributes[name] = value
            # static account tags take precedence over row dimensions
            attributes.update(self.static_attributes)
            builder = _ReportBuilder(key=key, attributes=attributes)
            self._builders[key] = builder
        return builder

    def add(self, row: CostRow, period: str, include: bool = True) -> None:
        builder = self.group(row)
        if not include:
            return
        if self.mode is BucketMode.SUM:
            builder.amounts.setdefault(period, []).append(row.amount)
            builder.buckets.setdefault(period, 0.0)
        else:
            builder.buckets[period] = row.amount

    def reports(self) -> list[Report]:
        reports = []
        for builder in self._builders.values():
            buckets = dict(builder.buckets)
            # exactly rounded, independent of row order
            for period, amounts in builder.amounts.items():
                buckets[period] = math.fsum(amounts)
            reports.append(Report(**builder.attributes, reports=buckets))
        return reports


def normalize_cost_rows(
    provider: CloudProvider,
    account: AccountConfig,
    query: CostQuery,
    rows: Iterable[CostRow | None],
    category_mappings: Mapping[str, str],
    canonicalize: Callable[[str], str],
    mode: BucketMode = BucketMode.OVERWRITE,
    default_category: str = DEFAULT_CATEGORY,
) -> list[Report]:
    """
    Fold extracted rows into reports.

    Args:
        provider: Provider tag stamped on every report
        account: Sub-account the rows belong to
        query: The query that produced the rows (granularity and start clamp)
        rows: Extracted rows; None marks an unusable row and is skipped
        category_mappings: Raw service name to category lookup
        canonicalize: Raw service name to display name
        mode: Overwrite or sum rows sharing a period bucket
        default_category: Category for unmapped services

    Returns:
        One report per distinct group, in first-seen order
    """
    accumulator = ReportAccumulator(
        provider, account, canonicalize, category_mappings, mode, default_category
    )
    skipped = 0
    clamped = 0
    for row in rows:
        if row is None:
            skipped += 1
            continue
        include = not is_before_start(row.date, query)
        if not include:
            clamped += 1
        accumulator.add(row, format_period(row.date, query.granularity), include=include)

    if skipped or clamped:
        logger.info(
            f"{provider.value}: account {account.name} skipped {skipped} malformed rows, "
            f"excluded {clamped} rows dated before the query start"
        )
    return accumulator.reports()
