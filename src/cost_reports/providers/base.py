"""
Abstract base client for multi-cloud cost reports.

Defines the data model shared by every provider, the error taxonomy, and the
interface that all cloud cost client implementations must follow.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..config.accounts import AccountConfig

logger = logging.getLogger(__name__)


class CloudProvider(str, Enum):
    """Provider tags carried by every report."""

    AWS = "AWS"
    AZURE = "Azure"
    MONGO_ATLAS = "MongoAtlas"


class TimeGranularity(Enum):
    """Supported time granularities for cost queries."""

    DAILY = "daily"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: "str | TimeGranularity") -> "TimeGranularity":
        """Parse a granularity case-insensitively ("MONTHLY", "monthly", ...)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(g.name for g in cls)
            raise ValueError(f'Invalid granularity "{value}". Must be one of: {valid}')


def millis_to_datetime(value: str | int) -> datetime:
    """Convert an epoch-millis string to an aware UTC datetime."""
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class TagsQuery(BaseModel):
    """Time range used for tag discovery."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start_time: str = Field(..., alias="startTime", description="Range start, epoch millis")
    end_time: str = Field(..., alias="endTime", description="Range end, epoch millis")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_epoch_millis(cls, v: Any) -> str:
        """Accept ints or numeric strings and store them as strings."""
        text = str(v).strip()
        try:
            int(text)
        except ValueError:
            raise ValueError(f"Expected epoch milliseconds, got {v!r}")
        return text

    @model_validator(mode="after")
    def validate_range(self):
        """Reject ranges that end before they start."""
        if int(self.start_time) > int(self.end_time):
            raise ValueError(f"Start time {self.start_time} must not be after end time {self.end_time}")
        return self

    @property
    def start(self) -> datetime:
        return millis_to_datetime(self.start_time)

    @property
    def end(self) -> datetime:
        return millis_to_datetime(self.end_time)


class CostQuery(TagsQuery):
    """Immutable input to one cost fetch cycle."""

    granularity: TimeGranularity = TimeGranularity.DAILY
    tags: tuple[str, ...] = ()

    @field_validator("granularity", mode="before")
    @classmethod
    def validate_granularity(cls, v: Any) -> TimeGranularity:
        return TimeGranularity.parse(v)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,)
        return tuple(v)


class Tag(BaseModel):
    """A tag filter parsed from its raw "key:value" encoding."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: str | None = None

    @classmethod
    def parse(cls, raw: str) -> "Tag | None":
        """Parse "key:value"; a missing value means an existence filter."""
        key, _, value = raw.partition(":")
        key = key.strip()
        if not key:
            return None
        value = value.strip()
        return cls(key=key, value=value or None)


class Report(BaseModel):
    """Canonical cost record for one (account, service, dimensions) group."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str
    name: str
    service: str
    category: str
    provider: CloudProvider
    reports: dict[str, float] = Field(default_factory=dict)

    @property
    def total_cost(self) -> float:
        """Sum of all time buckets."""
        return sum(self.reports.values())

    @property
    def attributes(self) -> dict[str, Any]:
        """Dynamic attributes (static account tags and provider dimensions)."""
        return dict(self.model_extra or {})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json")


class TagKeysResult(BaseModel):
    """Tag keys discovered for one provider."""

    tag_keys: list[str] = Field(default_factory=list)
    provider: CloudProvider


class TagValuesResult(BaseModel):
    """Tag values discovered for one provider and tag key."""

    tag_values: list[str] = Field(default_factory=list)
    provider: CloudProvider


class CloudProviderError(Exception):
    """Base exception for cloud provider errors."""

    pass


class AuthenticationError(CloudProviderError):
    """Credential exchange or client construction failed."""

    pass


class APIError(CloudProviderError):
    """Non-success response from a provider API."""

    def __init__(self, message: str, status_code: int | None = None, provider: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class RateLimitError(APIError):
    """Rate limiting errors."""

    def __init__(self, message: str, retry_after: int | None = None, provider: str | None = None):
        super().__init__(message, status_code=429, provider=provider)
        self.retry_after = retry_after


class RetryExhaustedError(APIError):
    """Rate limiting persisted past the retry cap."""

    def __init__(self, message: str = "Max retries exceeded", attempts: int = 0, provider: str | None = None):
        super().__init__(message, status_code=429, provider=provider)
        self.attempts = attempts


class ConfigurationError(CloudProviderError):
    """Configuration-related errors."""

    pass


class CloudCostClient(ABC):
    """Abstract base class for cloud cost clients.

    A client is stateless with respect to accounts: every operation receives
    the sub-account configuration and the client handle produced by
    :meth:`authenticate`, so one instance can serve many accounts
    concurrently.
    """

    account_config_model: ClassVar[type[AccountConfig]] = AccountConfig

    def __init__(self, config: Mapping[str, Any] | None = None):
        """
        Initialize the client with provider-level settings.

        Args:
            config: Provider tuning (retry caps, endpoints, default category)
        """
        self.config = dict(config or {})
        self.provider = self._get_provider()

    @property
    def provider_name(self) -> str:
        return self.provider.value

    @abstractmethod
    def _get_provider(self) -> CloudProvider:
        """Return the provider tag."""
        pass

    @abstractmethod
    async def authenticate(self, account: AccountConfig) -> Any:
        """
        Exchange the account's credentials for a client handle.

        Raises:
            AuthenticationError: If the exchange fails
        """
        pass

    @abstractmethod
    async def fetch_tag_keys(self, account: AccountConfig, handle: Any, query: TagsQuery) -> TagKeysResult:
        """Return all tag keys seen in the query range."""
        pass

    @abstractmethod
    async def fetch_tag_values(
        self, account: AccountConfig, handle: Any, query: TagsQuery, tag_key: str
    ) -> TagValuesResult:
        """Return all values of ``tag_key`` seen in the query range."""
        pass

    @abstractmethod
    async def fetch_costs(self, account: AccountConfig, handle: Any, query: CostQuery) -> Any:
        """
        Issue the billing query and exhaust all pages.

        Returns:
            Provider-native raw rows, in the order received

        Raises:
            APIError: If the provider rejects a request
        """
        pass

    @abstractmethod
    def transform_costs_data(
        self,
        account: AccountConfig,
        query: CostQuery,
        raw_costs: Any,
        category_mappings: Mapping[str, str],
    ) -> list[Report]:
        """Fold provider-native rows into reports."""
        pass

    def parse_account_config(self, account: Mapping[str, Any] | AccountConfig) -> AccountConfig:
        """Validate a raw sub-account mapping against this provider's model."""
        if isinstance(account, self.account_config_model):
            return account
        if hasattr(account, "to_dict"):
            # DynaBox from dynaconf
            account = account.to_dict()
        try:
            return self.account_config_model.model_validate(dict(account))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {self.provider_name} account configuration: {e}") from e

    async def get_cost_reports(
        self,
        account: Mapping[str, Any] | AccountConfig,
        query: CostQuery,
        category_mappings: Mapping[str, str] | None = None,
    ) -> list[Report]:
        """Run one full fetch cycle (authenticate, fetch, transform) for an account."""
        account_config = self.parse_account_config(account)
        handle = await self.authenticate(account_config)
        raw_costs = await self.fetch_costs(account_config, handle, query)
        reports = self.transform_costs_data(account_config, query, raw_costs, category_mappings or {})
        logger.info(f"{self.provider_name}: {len(reports)} reports for account {account_config.name}")
        return reports

    async def get_tag_keys(self, account: Mapping[str, Any] | AccountConfig, query: TagsQuery) -> TagKeysResult:
        account_config = self.parse_account_config(account)
        handle = await self.authenticate(account_config)
        return await self.fetch_tag_keys(account_config, handle, query)

    async def get_tag_values(
        self, account: Mapping[str, Any] | AccountConfig, query: TagsQuery, tag_key: str
    ) -> TagValuesResult:
        account_config = self.parse_account_config(account)
        handle = await self.authenticate(account_config)
        return await self.fetch_tag_values(account_config, handle, query, tag_key)


class ProviderFactory:
    """Factory class for creating cloud cost client instances."""

    _providers = {}

    @classmethod
    def register_provider(cls, name: str, provider_class: type):
        """Register a client class with the factory."""
        cls._providers[name.lower()] = provider_class

    @classmethod
    def create_provider(cls, name: str, config: Mapping[str, Any] | None = None, **kwargs) -> CloudCostClient:
        """
        Create a client instance.

        Args:
            name: Provider name (aws, azure, mongoatlas)
            config: Provider-level settings
            **kwargs: Extra constructor arguments (transports, sleep hooks)

        Returns:
            Client instance

        Raises:
            ValueError: If provider not found
        """
        name = name.lower()
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown provider '{name}'. Available providers: {available}")

        provider_class = cls._providers[name]
        return provider_class(config, **kwargs)

    @classmethod
    def get_available_providers(cls) -> list[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
