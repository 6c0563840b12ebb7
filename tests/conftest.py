"""
Pytest configuration and shared fixtures for cost-reports tests.

This module provides common fixtures and configurations used across
all test modules.
"""

import os
from collections.abc import Generator
from datetime import date

import pytest

from cost_reports.config.accounts import AWSAccountConfig, AzureAccountConfig, MongoAtlasAccountConfig
from cost_reports.main import to_epoch_millis
from cost_reports.providers.base import CostQuery, TagsQuery, TimeGranularity


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "aws: mark test as AWS-specific")
    config.addinivalue_line("markers", "azure: mark test as Azure-specific")
    config.addinivalue_line("markers", "mongoatlas: mark test as MongoDB Atlas-specific")


# Environment fixture
@pytest.fixture
def clean_env() -> Generator[dict[str, str], None, None]:
    """Provide a clean environment for testing."""
    original_env = os.environ.copy()
    env_vars_to_clear = [
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_REGION",
        "AZURE_CLIENT_ID",
        "AZURE_CLIENT_SECRET",
        "AZURE_TENANT_ID",
    ]

    for var in env_vars_to_clear:
        os.environ.pop(var, None)

    yield os.environ

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


# Account fixtures
@pytest.fixture
def aws_account() -> AWSAccountConfig:
    return AWSAccountConfig(
        name="prod",
        account_id="123456789012",
        assumed_role_name="CostReader",
        tags=["team:platform"],
    )


@pytest.fixture
def azure_account() -> AzureAccountConfig:
    return AzureAccountConfig(
        name="main",
        subscription_id="sub-1",
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret-1",
    )


@pytest.fixture
def atlas_account() -> MongoAtlasAccountConfig:
    return MongoAtlasAccountConfig(name="atlas", org_id="org-1", public_key="pub", private_key="priv")


# Query fixtures
@pytest.fixture
def monthly_query() -> CostQuery:
    """April and May 2024, monthly buckets."""
    return CostQuery(
        start_time=to_epoch_millis(date(2024, 4, 1)),
        end_time=to_epoch_millis(date(2024, 6, 1)),
        granularity=TimeGranularity.MONTHLY,
    )


@pytest.fixture
def daily_query() -> CostQuery:
    """First week of April 2024, daily buckets."""
    return CostQuery(
        start_time=to_epoch_millis(date(2024, 4, 1)),
        end_time=to_epoch_millis(date(2024, 4, 8)),
        granularity=TimeGranularity.DAILY,
    )


@pytest.fixture
def tags_query() -> TagsQuery:
    return TagsQuery(start_time=to_epoch_millis(date(2024, 4, 1)), end_time=to_epoch_millis(date(2024, 5, 1)))


@pytest.fixture
def no_sleep():
    """Async sleep replacement that records requested delays."""
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep
