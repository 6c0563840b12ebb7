"""
Multi-account orchestration.

Runs one provider client over all of that provider's sub-accounts
concurrently. A failing account is recorded as an ``AccountFailure`` and
never aborts its siblings; cancellation still propagates.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, TypeVar

from .config.settings import CloudConfig
from .providers.base import CloudCostClient, CostQuery, ProviderFactory, Report, TagsQuery

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AccountFailure:
    """One sub-account whose fetch cycle failed."""

    provider: str
    account: str
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, provider: str, account: str, error: Exception) -> "AccountFailure":
        return cls(provider=provider, account=account, error_type=type(error).__name__, message=str(error))

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class CostReportsResult:
    """Reports from every account that succeeded, plus the failures."""

    reports: list[Report] = field(default_factory=list)
    errors: list[AccountFailure] = field(default_factory=list)

    def extend(self, other: "CostReportsResult") -> None:
        self.reports.extend(other.reports)
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reports": [report.to_dict() for report in self.reports],
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class TagsResult:
    """Merged tag keys or values, plus the failures."""

    tags: list[str] = field(default_factory=list)
    errors: list[AccountFailure] = field(default_factory=list)

    def extend(self, other: "TagsResult") -> None:
        self.tags = sorted(set(self.tags) | set(other.tags))
        self.errors.extend(other.errors)


def _account_name(account: Mapping[str, Any]) -> str:
    name = account.get("name") if hasattr(account, "get") else None
    return str(name) if name else "<unnamed>"


class MultiAccountOrchestrator:
    """Fan one provider client out over its configured sub-accounts."""

    def __init__(self, client: CloudCostClient, accounts: Sequence[Mapping[str, Any]]):
        self.client = client
        self.accounts = list(accounts)

    @property
    def provider_name(self) -> str:
        return self.client.provider_name

    async def _run_all(
        self, operation: Callable[[Mapping[str, Any]], Awaitable[T]]
    ) -> tuple[list[T], list[AccountFailure]]:
        """Run ``operation`` for every account; successes keep account order."""
        outcomes = await asyncio.gather(
            *(operation(account) for account in self.accounts), return_exceptions=True
        )

        successes: list[T] = []
        failures: list[AccountFailure] = []
        for account, outcome in zip(self.accounts, outcomes):
            if isinstance(outcome, Exception):
                name = _account_name(account)
                logger.error(f"❌ {self.provider_name}: account {name} failed: {type(outcome).__name__}: {outcome}")
                failures.append(AccountFailure.from_exception(self.provider_name, name, outcome))
            elif isinstance(outcome, BaseException):
                # CancelledError, KeyboardInterrupt
                raise outcome
            else:
                successes.append(outcome)
        return successes, failures

    async def get_cost_reports(
        self, query: CostQuery, category_mappings: Mapping[str, str] | None = None
    ) -> CostReportsResult:
        """Reports of every account concatenated in account order."""
        per_account, failures = await self._run_all(
            lambda account: self.client.get_cost_reports(account, query, category_mappings)
        )
        reports = [report for reports in per_account for report in reports]
        logger.info(
            f"{self.provider_name}: {len(reports)} reports from {len(per_account)} accounts, "
            f"{len(failures)} failed"
        )
        return CostReportsResult(reports=reports, errors=failures)

    async def get_tag_keys(self, query: TagsQuery) -> TagsResult:
        results, failures = await self._run_all(lambda account: self.client.get_tag_keys(account, query))
        keys = {key for result in results for key in result.tag_keys}
        return TagsResult(tags=sorted(keys), errors=failures)

    async def get_tag_values(self, query: TagsQuery, tag_key: str) -> TagsResult:
        results, failures = await self._run_all(lambda account: self.client.get_tag_values(account, query, tag_key))
        values = {value for result in results for value in result.tag_values}
        return TagsResult(tags=sorted(values), errors=failures)


async def collect_cost_reports(
    orchestrators: Iterable[MultiAccountOrchestrator],
    query: CostQuery,
    category_mappings: Mapping[str, str] | None = None,
) -> CostReportsResult:
    """Fan out across providers and merge, keeping provider order."""
    results = await asyncio.gather(
        *(orchestrator.get_cost_reports(query, category_mappings) for orchestrator in orchestrators)
    )
    merged = CostReportsResult()
    for result in results:
        merged.extend(result)
    return merged


async def collect_tag_keys(orchestrators: Iterable[MultiAccountOrchestrator], query: TagsQuery) -> TagsResult:
    results = await asyncio.gather(*(orchestrator.get_tag_keys(query) for orchestrator in orchestrators))
    merged = TagsResult()
    for result in results:
        merged.extend(result)
    return merged


async def collect_tag_values(
    orchestrators: Iterable[MultiAccountOrchestrator], query: TagsQuery, tag_key: str
) -> TagsResult:
    results = await asyncio.gather(*(orchestrator.get_tag_values(query, tag_key) for orchestrator in orchestrators))
    merged = TagsResult()
    for result in results:
        merged.extend(result)
    return merged


def build_orchestrators(
    config: CloudConfig,
    providers: Iterable[str] | None = None,
    **client_kwargs: Mapping[str, Any],
) -> list[MultiAccountOrchestrator]:
    """
    Build one orchestrator per provider with configured sub-accounts.

    Args:
        config: Loaded configuration
        providers: Restrict to these provider names; defaults to all enabled
        **client_kwargs: Per-provider constructor extras, keyed by provider
            name (e.g. ``azure={"transport": ...}``)

    Returns:
        Orchestrators in provider order
    """
    selected = [p.lower() for p in providers] if providers is not None else config.enabled_providers
    orchestrators = []
    for provider in selected:
        accounts = config.integrations(provider)
        if not accounts:
            logger.debug(f"No {provider} integrations configured, skipping")
            continue
        if provider not in ProviderFactory.get_available_providers():
            logger.warning(f"Provider {provider} has integrations but its SDK is not installed, skipping")
            continue
        client = ProviderFactory.create_provider(
            provider, config.provider_settings(provider), **dict(client_kwargs.get(provider) or {})
        )
        orchestrators.append(MultiAccountOrchestrator(client, accounts))
    return orchestrators
