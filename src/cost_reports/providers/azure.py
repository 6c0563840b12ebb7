"""
Azure Cost Management client implementation.

The management SDK has no pagination support for cost queries, so requests
are POSTed directly to the query endpoint and ``nextLink`` is followed by
hand. HTTP 429 responses are retried with the vendor's backoff hint.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Mapping
from datetime import date, datetime
from typing import Any

import httpx

try:
    from azure.core.exceptions import AzureError

    AZURE_AVAILABLE = True
except ImportError:
    AZURE_AVAILABLE = False

from ..config.accounts import AzureAccountConfig
from ..utils.auth import AzureAuthenticator, AzureClientHandle
from ..utils.data_normalizer import (
    DEFAULT_CATEGORY,
    BucketMode,
    CostRow,
    normalize_cost_rows,
    parse_amount,
    parse_numeric_date,
)
from ..utils.http_client import DEFAULT_TIMEOUT, build_async_client
from ..utils.retry import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_AFTER_SECONDS, BoundedRetry
from ..utils.service_names import ServiceNameCanonicalizer
from ..utils.tag_filters import AzureFilterGrammar, build_tag_filter, parse_tags
from .base import (
    APIError,
    AuthenticationError,
    CloudCostClient,
    CloudProvider,
    CostQuery,
    ProviderFactory,
    Report,
    TagKeysResult,
    TagsQuery,
    TagValuesResult,
    TimeGranularity,
)

logger = logging.getLogger(__name__)

MANAGEMENT_ENDPOINT = "https://management.azure.com"
COST_QUERY_API_VERSION = "2023-11-01"
TAG_QUERY_API_VERSION = "2021-10-01"
RETRY_AFTER_HEADER = "x-ms-ratelimit-microsoft.costmanagement-entity-retry-after"
HIDDEN_TAG_PREFIX = "hidden-"

# Column order of a cost query grouped by ServiceName:
#   [cost, date, service name, currency]
# Daily rows carry UsageDate as an integer (20240407); monthly rows carry
# BillingMonth as an ISO timestamp ("2024-04-01T00:00:00").
COST_COLUMN = 0
DATE_COLUMN = 1
SERVICE_COLUMN = 2


class AzureCostClient(CloudCostClient):
    """Azure Cost Management query API client."""

    account_config_model = AzureAccountConfig

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(config)
        self.authenticator = AzureAuthenticator(self.config)
        self.canonicalizer = ServiceNameCanonicalizer(self.provider)
        self.filter_grammar = AzureFilterGrammar()
        self.transport = transport
        self.endpoint = self.config.get("endpoint", MANAGEMENT_ENDPOINT).rstrip("/")
        self.timeout = float(self.config.get("http_timeout", DEFAULT_TIMEOUT))
        self.retry = BoundedRetry(
            RETRY_AFTER_HEADER,
            max_retries=int(self.config.get("max_retries", DEFAULT_MAX_RETRIES)),
            default_retry_after=int(self.config.get("default_retry_after", DEFAULT_RETRY_AFTER_SECONDS)),
            sleep=sleep,
            provider=self.provider_name,
        )
        self.granularity_mapping = {
            TimeGranularity.DAILY: "Daily",
            TimeGranularity.MONTHLY: "Monthly",
        }

    def _get_provider(self) -> CloudProvider:
        return CloudProvider.AZURE

    async def authenticate(self, account: AzureAccountConfig) -> AzureClientHandle:
        auth_result = await self.authenticator.authenticate(account)
        if not auth_result.success:
            logger.error(f"❌ Azure: authentication failed for account {account.name}: {auth_result.error_message}")
            raise AuthenticationError(f"Azure authentication failed: {auth_result.error_message}")
        return auth_result.credentials

    def _query_url(self, subscription_id: str, api_version: str) -> str:
        return (
            f"{self.endpoint}/subscriptions/{subscription_id}"
            f"/providers/Microsoft.CostManagement/query?api-version={api_version}"
        )

    def _time_period(self, query: TagsQuery) -> dict[str, str]:
        return {"from": query.start.isoformat(), "to": query.end.isoformat()}

    async def _request_headers(self, handle: AzureClientHandle) -> dict[str, str]:
        try:
            token = await handle.bearer_token()
        except AzureError as e:
            raise AuthenticationError(f"Azure token request failed: {e}") from e
        return {
            "Content-Type": "application/json",
            "ClientType": self.config.get("client_type", "CostReports"),
            "Authorization": f"Bearer {token}",
        }

    async def _post(self, client: httpx.AsyncClient, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.retry.execute(lambda: client.post(url, json=body))
        except httpx.HTTPError as e:
            raise APIError(f"Azure Cost Management request failed: {e}", provider=self.provider_name) from e
        try:
            return response.json()
        except ValueError as e:
            raise APIError(
                f"Azure Cost Management returned a non-JSON body: {response.text}",
                status_code=response.status_code,
                provider=self.provider_name,
            ) from e

    async def _query_all_pages(self, handle: AzureClientHandle, url: str, body: dict[str, Any]) -> list[list[Any]]:
        """POST the query and follow ``nextLink`` until exhausted, keeping row order."""
        headers = await self._request_headers(handle)
        async with build_async_client(self.timeout, transport=self.transport, headers=headers) as client:
            result = await self._post(client, url, body)
            properties = result.get("properties") or {}
            rows = list(properties.get("rows") or [])
            pages = 1

            while properties.get("nextLink"):
                result = await self._post(client, properties["nextLink"], body)
                properties = result.get("properties") or {}
                rows.extend(properties.get("rows") or [])
                pages += 1

        logger.debug(f"💰 Azure: fetched {len(rows)} rows in {pages} pages")
        return rows

    async def _fetch_tags(
        self, account: AzureAccountConfig, handle: AzureClientHandle, query: TagsQuery, tag_key: str = ""
    ) -> list[str]:
        """Tag keys when ``tag_key`` is empty, otherwise the values of ``tag_key``."""
        body = {
            "type": "ActualCost",
            "dataset": {
                "granularity": "None",
                "grouping": [{"type": "TagKey", "name": tag_key}],
            },
            "timeframe": "Custom",
            "timePeriod": self._time_period(query),
        }
        rows = await self._query_all_pages(
            handle, self._query_url(account.subscription_id, TAG_QUERY_API_VERSION), body
        )

        tags: set[str] = set()
        for row in rows:
            if not tag_key:
                if row and row[0] and not str(row[0]).startswith(HIDDEN_TAG_PREFIX):
                    tags.add(str(row[0]))
            elif len(row) > 1 and row[1]:
                tags.add(str(row[1]))
        return sorted(tags)

    async def fetch_tag_keys(
        self, account: AzureAccountConfig, handle: AzureClientHandle, query: TagsQuery
    ) -> TagKeysResult:
        tag_keys = await self._fetch_tags(account, handle, query)
        return TagKeysResult(tag_keys=tag_keys, provider=self.provider)

    async def fetch_tag_values(
        self, account: AzureAccountConfig, handle: AzureClientHandle, query: TagsQuery, tag_key: str
    ) -> TagValuesResult:
        tag_values = await self._fetch_tags(account, handle, query, tag_key)
        return TagValuesResult(tag_values=tag_values, provider=self.provider)

    def build_query_definition(self, query: CostQuery) -> dict[str, Any]:
        """Cost query grouped by service, optionally filtered by tags."""
        dataset: dict[str, Any] = {
            "granularity": self.granularity_mapping[query.granularity],
            "aggregation": {"totalCostUSD": {"name": "CostUSD", "function": "Sum"}},
            "grouping": [{"type": "Dimension", "name": "ServiceName"}],
        }
        tag_filter = build_tag_filter(parse_tags(query.tags), self.filter_grammar)
        if tag_filter is not None:
            dataset["filter"] = tag_filter

        return {
            "type": "ActualCost",
            "dataset": dataset,
            "timeframe": "Custom",
            "timePeriod": self._time_period(query),
        }

    async def fetch_costs(
        self, account: AzureAccountConfig, handle: AzureClientHandle, query: CostQuery
    ) -> list[list[Any]]:
        return await self._query_all_pages(
            handle,
            self._query_url(account.subscription_id, COST_QUERY_API_VERSION),
            self.build_query_definition(query),
        )

    def _parse_row_date(self, value: Any, granularity: TimeGranularity) -> date | None:
        if granularity is TimeGranularity.DAILY or isinstance(value, int):
            return parse_numeric_date(value)
        try:
            return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
        except ValueError:
            return None

    def _extract_rows(self, rows: list[list[Any]], granularity: TimeGranularity) -> Iterator[CostRow | None]:
        for row in rows:
            if not isinstance(row, (list, tuple)) or len(row) <= SERVICE_COLUMN:
                logger.warning(f"💰 Azure: skipping short cost row {row!r}")
                yield None
                continue

            row_date = self._parse_row_date(row[DATE_COLUMN], granularity)
            if row_date is None:
                logger.warning(f"💰 Azure: skipping cost row with malformed date {row[DATE_COLUMN]!r}")
                yield None
                continue

            yield CostRow(
                date=row_date,
                service_name=str(row[SERVICE_COLUMN] or ""),
                amount=parse_amount(row[COST_COLUMN]),
            )

    def transform_costs_data(
        self,
        account: AzureAccountConfig,
        query: CostQuery,
        raw_costs: list[list[Any]],
        category_mappings: Mapping[str, str],
    ) -> list[Report]:
        return normalize_cost_rows(
            self.provider,
            account,
            query,
            self._extract_rows(raw_costs, query.granularity),
            category_mappings,
            self.canonicalizer.canonicalize,
            mode=BucketMode.OVERWRITE,
            default_category=self.config.get("default_category", DEFAULT_CATEGORY),
        )


# Register the Azure client with the factory
if AZURE_AVAILABLE:
    ProviderFactory.register_provider("azure", AzureCostClient)
else:
    logger.warning("Azure SDK not available, Azure provider not registered")
