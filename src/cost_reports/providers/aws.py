"""
AWS Cost Explorer client implementation.

Assumes a role in each sub-account, pages through ``GetCostAndUsage``
grouped by service, and folds the results into reports.
"""

import asyncio
import logging
from collections.abc import Callable, Iterator, Mapping
from datetime import datetime
from typing import Any

try:
    from botocore.exceptions import BotoCoreError, ClientError

    AWS_AVAILABLE = True
except ImportError:
    AWS_AVAILABLE = False

from ..config.accounts import AWSAccountConfig
from ..utils.auth import AWSAuthenticator, AWSClientHandle
from ..utils.data_normalizer import DEFAULT_CATEGORY, BucketMode, CostRow, normalize_cost_rows, parse_amount
from ..utils.service_names import ServiceNameCanonicalizer
from ..utils.tag_filters import AWSFilterGrammar, build_tag_filter, combine_filters, parse_tags
from .base import (
    APIError,
    AuthenticationError,
    CloudCostClient,
    CloudProvider,
    CloudProviderError,
    ConfigurationError,
    CostQuery,
    ProviderFactory,
    RateLimitError,
    Report,
    TagKeysResult,
    TagsQuery,
    TagValuesResult,
    TimeGranularity,
)

logger = logging.getLogger(__name__)


class AWSCostClient(CloudCostClient):
    """AWS Cost Explorer client implementation."""

    account_config_model = AWSAccountConfig

    def __init__(self, config: Mapping[str, Any] | None = None):
        super().__init__(config)
        self.authenticator = AWSAuthenticator(self.config)
        self.canonicalizer = ServiceNameCanonicalizer(self.provider)
        self.filter_grammar = AWSFilterGrammar()
        self.granularity_mapping = {
            TimeGranularity.DAILY: "DAILY",
            TimeGranularity.MONTHLY: "MONTHLY",
        }
        self.metric = self.config.get("metric", "UnblendedCost")

    def _get_provider(self) -> CloudProvider:
        return CloudProvider.AWS

    async def authenticate(self, account: AWSAccountConfig) -> AWSClientHandle:
        """Assume the account's role and return a Cost Explorer handle."""
        auth_result = await self.authenticator.authenticate(account)
        if not auth_result.success:
            logger.error(f"🔵 AWS: authentication failed for account {account.name}: {auth_result.error_message}")
            raise AuthenticationError(f"AWS authentication failed: {auth_result.error_message}")
        logger.info(f"🔵 AWS: authenticated account {account.name} using {auth_result.method}")
        return auth_result.credentials

    def _time_period(self, query: TagsQuery) -> dict[str, str]:
        return {
            "Start": query.start.strftime("%Y-%m-%d"),
            "End": query.end.strftime("%Y-%m-%d"),
        }

    def build_filter(self, query: CostQuery) -> dict[str, Any]:
        """Usage-records-only base filter AND-ed with the query's tag filter."""
        base = self.filter_grammar.dimension("RECORD_TYPE", ["Usage"])
        tag_filter = build_tag_filter(parse_tags(query.tags), self.filter_grammar)
        return combine_filters(base, tag_filter, self.filter_grammar)

    async def _call(self, operation: Callable[..., dict[str, Any]], **params) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(operation, **params)
        except ClientError as e:
            raise self._translate_client_error(e) from e
        except BotoCoreError as e:
            raise APIError(f"AWS Cost Explorer request failed: {e}", provider=self.provider_name) from e

    async def _fetch_tags(self, handle: AWSClientHandle, query: TagsQuery, tag_key: str | None = None) -> list[str]:
        results: list[str] = []
        next_page_token = None

        while True:
            params: dict[str, Any] = {"TimePeriod": self._time_period(query)}
            if tag_key:
                params["TagKey"] = tag_key
            if next_page_token:
                params["NextPageToken"] = next_page_token

            response = await self._call(handle.cost_explorer.get_tags, **params)
            results.extend(tag for tag in response.get("Tags", []) if tag)

            next_page_token = response.get("NextPageToken")
            if not next_page_token:
                break

        return sorted(results)

    async def fetch_tag_keys(self, account: AWSAccountConfig, handle: AWSClientHandle, query: TagsQuery) -> TagKeysResult:
        tag_keys = await self._fetch_tags(handle, query)
        return TagKeysResult(tag_keys=tag_keys, provider=self.provider)

    async def fetch_tag_values(
        self, account: AWSAccountConfig, handle: AWSClientHandle, query: TagsQuery, tag_key: str
    ) -> TagValuesResult:
        tag_values = await self._fetch_tags(handle, query, tag_key)
        return TagValuesResult(tag_values=tag_values, provider=self.provider)

    async def fetch_costs(self, account: AWSAccountConfig, handle: AWSClientHandle, query: CostQuery) -> list[dict[str, Any]]:
        """Page through GetCostAndUsage and return the concatenated ``ResultsByTime``."""
        results: list[dict[str, Any]] = []
        next_page_token = None
        filter_expression = self.build_filter(query)
        page = 0

        while True:
            page += 1
            params: dict[str, Any] = {
                "TimePeriod": self._time_period(query),
                "Granularity": self.granularity_mapping[query.granularity],
                "Filter": filter_expression,
                "GroupBy": [{"Type": "DIMENSION", "Key": "SERVICE"}],
                "Metrics": [self.metric],
            }
            if next_page_token:
                params["NextPageToken"] = next_page_token

            response = await self._call(handle.cost_explorer.get_cost_and_usage, **params)
            results.extend(response.get("ResultsByTime", []))

            next_page_token = response.get("NextPageToken")
            if not next_page_token:
                break

        logger.debug(f"🔵 AWS: fetched {len(results)} time buckets in {page} pages for account {account.name}")
        return results

    def _extract_rows(self, results: list[dict[str, Any]]) -> Iterator[CostRow | None]:
        for result in results:
            groups = result.get("Groups") or []
            start = (result.get("TimePeriod") or {}).get("Start")
            try:
                row_date = datetime.strptime(start, "%Y-%m-%d").date()
            except (TypeError, ValueError):
                logger.warning(f"🔵 AWS: skipping {len(groups)} groups with unparseable period start {start!r}")
                yield from (None for _ in groups)
                continue

            for group in groups:
                keys = group.get("Keys") or [""]
                metrics = group.get("Metrics") or {}
                amount = parse_amount((metrics.get(self.metric) or {}).get("Amount"))
                yield CostRow(date=row_date, service_name=keys[0], amount=amount)

    def transform_costs_data(
        self,
        account: AWSAccountConfig,
        query: CostQuery,
        raw_costs: list[dict[str, Any]],
        category_mappings: Mapping[str, str],
    ) -> list[Report]:
        """One report per service; each period bucket holds that period's single amount."""
        return normalize_cost_rows(
            self.provider,
            account,
            query,
            self._extract_rows(raw_costs),
            category_mappings,
            self.canonicalizer.canonicalize,
            mode=BucketMode.OVERWRITE,
            default_category=self.config.get("default_category", DEFAULT_CATEGORY),
        )

    def _translate_client_error(self, error: ClientError) -> CloudProviderError:
        """Map an AWS client error onto the provider error taxonomy."""
        error_code = error.response.get("Error", {}).get("Code", "")
        error_message = error.response.get("Error", {}).get("Message", str(error))

        if error_code in ("Throttling", "ThrottlingException", "LimitExceededException"):
            return RateLimitError(
                f"AWS Cost Explorer API rate limit exceeded: {error_message}",
                provider=self.provider_name,
            )
        elif error_code in ("UnauthorizedOperation", "AccessDeniedException", "ExpiredTokenException"):
            return AuthenticationError(f"AWS unauthorized: {error_message}")
        elif error_code in ("InvalidParameterValue", "ValidationException"):
            return ConfigurationError(f"AWS invalid parameter: {error_message}")
        else:
            return APIError(
                f"AWS Cost Explorer API error ({error_code}): {error_message}",
                status_code=error.response.get("ResponseMetadata", {}).get("HTTPStatusCode"),
                provider=self.provider_name,
            )


# Register the AWS client with the factory
if AWS_AVAILABLE:
    ProviderFactory.register_provider("aws", AWSCostClient)
else:
    logger.warning("AWS SDK not available, AWS provider not registered")
