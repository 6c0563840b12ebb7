"""
Multi-cloud authentication utilities for AWS, Azure, and MongoDB Atlas.

Each authenticator exchanges one sub-account's configured credentials for a
client handle. Handles form a closed set, one dataclass per provider, so
callers never have to inspect an untyped client object.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, Field, field_validator

from ..config.accounts import AccountConfig, AWSAccountConfig, AzureAccountConfig, MongoAtlasAccountConfig

try:
    import boto3
    from botocore.config import Config
    from botocore.exceptions import BotoCoreError, ClientError

    AWS_AVAILABLE = True
except ImportError:
    AWS_AVAILABLE = False

try:
    from azure.core.exceptions import AzureError
    from azure.identity import ClientSecretCredential

    AZURE_AVAILABLE = True
except ImportError:
    AZURE_AVAILABLE = False

logger = logging.getLogger(__name__)

# Cost Explorer and STS are only served from us-east-1
AWS_BILLING_REGION = "us-east-1"
AZURE_MANAGEMENT_SCOPE = "https://management.azure.com/.default"


class AuthenticationResult(BaseModel):
    """Result of an authentication attempt with validation."""

    success: bool = Field(..., description="Whether authentication was successful")
    provider: str = Field(..., min_length=1, max_length=50, description="Cloud provider name")
    method: str = Field(..., min_length=1, max_length=100, description="Authentication method used")
    error_message: str | None = Field(
        None, max_length=1000, description="Error message if authentication failed"
    )
    credentials: Any | None = Field(None, description="Client handle on success")

    @classmethod
    def create_success(cls, provider: str, method: str, credentials: Any) -> "AuthenticationResult":
        """Create a successful authentication result."""
        return cls(
            success=True,
            provider=provider,
            method=method,
            credentials=credentials,
            error_message=None,
        )

    @classmethod
    def create_failure(cls, provider: str, method: str, error_message: str) -> "AuthenticationResult":
        """Create a failed authentication result."""
        return cls(
            success=False,
            provider=provider,
            method=method,
            error_message=error_message[:1000],
            credentials=None,
        )

    @field_validator("error_message")
    @classmethod
    def validate_error_message(cls, v: str | None) -> str | None:
        """Validate error message."""
        if v is not None:
            stripped = v.strip()
            return stripped if stripped else None
        return v

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization (excluding credentials for security)."""
        result = self.model_dump(by_alias=True, exclude_unset=True)
        result.pop("credentials", None)
        return result


@dataclass(frozen=True)
class AWSClientHandle:
    """Cost Explorer client bound to temporary assumed-role credentials."""

    cost_explorer: Any
    account_id: str


@dataclass(frozen=True)
class AzureClientHandle:
    """Service principal credential scoped to one subscription."""

    credential: Any
    subscription_id: str

    async def bearer_token(self) -> str:
        # azure-identity caches tokens internally; the call blocks on refresh
        token = await asyncio.to_thread(self.credential.get_token, AZURE_MANAGEMENT_SCOPE)
        return token.token


@dataclass(frozen=True)
class MongoAtlasClientHandle:
    """Digest credential pair for the Atlas Admin API."""

    public_key: str
    private_key: str
    org_id: str

    @property
    def digest_auth(self) -> httpx.DigestAuth:
        return httpx.DigestAuth(self.public_key, self.private_key)


ClientHandle = AWSClientHandle | AzureClientHandle | MongoAtlasClientHandle


class CloudAuthenticator(ABC):
    """Abstract base class for cloud authenticators."""

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config or {}
        self.provider_name = self._get_provider_name()

    @abstractmethod
    def _get_provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def authenticate(self, account: AccountConfig) -> AuthenticationResult:
        """Authenticate one sub-account."""
        pass


class AWSAuthenticator(CloudAuthenticator):
    """Assume an IAM role in the target account."""

    def _get_provider_name(self) -> str:
        return "aws"

    async def authenticate(self, account: AWSAccountConfig) -> AuthenticationResult:
        """Assume ``account.role_arn`` and build a Cost Explorer client from the temporary credentials."""
        if not AWS_AVAILABLE:
            return AuthenticationResult.create_failure(
                provider=self.provider_name,
                method="none",
                error_message="AWS SDK (boto3) not available",
            )

        method = "access_keys" if account.has_static_keys else "default_chain"
        try:
            credentials = await asyncio.to_thread(self._assume_role, account)
            cost_explorer = boto3.client(
                "ce",
                region_name=AWS_BILLING_REGION,
                aws_access_key_id=credentials["AccessKeyId"],
                aws_secret_access_key=credentials["SecretAccessKey"],
                aws_session_token=credentials["SessionToken"],
                config=Config(retries={"max_attempts": 3, "mode": "adaptive"}),
            )
        except (ClientError, BotoCoreError, KeyError) as e:
            logger.debug(f"🔵 AWS: assume role {account.role_arn} failed: {e}")
            return AuthenticationResult.create_failure(
                provider=self.provider_name,
                method=method,
                error_message=f"Failed to assume role {account.role_arn}: {e}",
            )

        logger.debug(f"🔵 AWS: assumed role {account.role_arn} for account {account.name}")
        return AuthenticationResult.create_success(
            provider=self.provider_name,
            method=method,
            credentials=AWSClientHandle(cost_explorer=cost_explorer, account_id=account.account_id),
        )

    def _assume_role(self, account: AWSAccountConfig) -> dict[str, Any]:
        sts_params: dict[str, Any] = {"region_name": AWS_BILLING_REGION}
        if account.has_static_keys:
            sts_params["aws_access_key_id"] = account.access_key_id
            sts_params["aws_secret_access_key"] = account.access_key_secret

        sts_client = boto3.client("sts", **sts_params)
        response = sts_client.assume_role(
            RoleArn=account.role_arn,
            RoleSessionName=self.config.get("role_session_name", "AssumeRoleSession1"),
        )
        return response["Credentials"]


class AzureAuthenticator(CloudAuthenticator):
    """Service principal authentication."""

    def _get_provider_name(self) -> str:
        return "azure"

    async def authenticate(self, account: AzureAccountConfig) -> AuthenticationResult:
        """Build a client-secret credential; tokens are requested lazily per call."""
        if not AZURE_AVAILABLE:
            return AuthenticationResult.create_failure(
                provider=self.provider_name,
                method="none",
                error_message="Azure SDK not available",
            )

        try:
            credential = ClientSecretCredential(
                tenant_id=account.tenant_id,
                client_id=account.client_id,
                client_secret=account.client_secret,
            )
        except (AzureError, ValueError) as e:
            return AuthenticationResult.create_failure(
                provider=self.provider_name,
                method="service_principal",
                error_message=f"Invalid service principal credentials: {e}",
            )

        return AuthenticationResult.create_success(
            provider=self.provider_name,
            method="service_principal",
            credentials=AzureClientHandle(credential=credential, subscription_id=account.subscription_id),
        )


class MongoAtlasAuthenticator(CloudAuthenticator):
    """API key pair used with HTTP digest authentication."""

    def _get_provider_name(self) -> str:
        return "mongoatlas"

    async def authenticate(self, account: MongoAtlasAccountConfig) -> AuthenticationResult:
        # No round trip: the key pair is only checked on the first request
        return AuthenticationResult.create_success(
            provider=self.provider_name,
            method="api_key",
            credentials=MongoAtlasClientHandle(
                public_key=account.public_key,
                private_key=account.private_key,
                org_id=account.org_id,
            ),
        )
