"""
Sub-account configuration models.

Each provider integration lists one or more sub-accounts. The models accept
both snake_case keys and the camelCase spelling used in app-config style YAML
(``accountId``, ``assumedRoleName``, ...).
"""

import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class AccountConfig(BaseModel):
    """Settings common to every sub-account."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
        coerce_numbers_to_str=True,  # unquoted YAML account ids
    )

    name: str = Field(..., min_length=1, description="Display name of the sub-account")
    tags: tuple[str, ...] = Field(default=(), description='Static "key:value" labels')

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Account name cannot be blank")
        return stripped

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,)
        return tuple(v)

    @property
    def static_tags(self) -> dict[str, str]:
        """Static labels as a dict; malformed entries are skipped."""
        result: dict[str, str] = {}
        for tag in self.tags:
            key, sep, value = tag.partition(":")
            if not sep or not key.strip():
                logger.warning(f"Ignoring malformed static tag {tag!r} on account {self.name}")
                continue
            result[key.strip()] = value.strip()
        return result


class AWSAccountConfig(AccountConfig):
    """AWS sub-account reached by assuming an IAM role."""

    account_id: str
    assumed_role_name: str
    access_key_id: str | None = None
    access_key_secret: str | None = None

    @property
    def role_arn(self) -> str:
        return f"arn:aws:iam::{self.account_id}:role/{self.assumed_role_name}"

    @property
    def has_static_keys(self) -> bool:
        return bool(self.access_key_id and self.access_key_secret)


class AzureAccountConfig(AccountConfig):
    """Azure subscription read through a service principal."""

    subscription_id: str
    tenant_id: str
    client_id: str
    client_secret: str


class MongoAtlasAccountConfig(AccountConfig):
    """MongoDB Atlas organization read with an API key pair."""

    org_id: str
    public_key: str
    private_key: str
