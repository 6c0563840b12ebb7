"""
Tests for configuration loading and sub-account models.
"""

import pytest
from dynaconf import Dynaconf
from pydantic import ValidationError

from cost_reports.config.accounts import AWSAccountConfig, AzureAccountConfig, MongoAtlasAccountConfig
from cost_reports.config.settings import CloudConfig, build_settings, load_config

CONFIG_YAML = """
http:
  timeout: 15
categories:
  default: Misc
  mappings:
    "Amazon Simple Storage Service": Storage
providers:
  azure:
    max_retries: 3
integrations:
  aws:
    - name: prod
      accountId: 123456789012
      assumedRoleName: Reader
  mongoatlas:
    - name: atlas
      orgId: org-1
      publicKey: pub
      privateKey: priv
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(CONFIG_YAML)
    return path


@pytest.fixture
def cloud_config(config_file):
    return CloudConfig(Dynaconf(settings_files=[str(config_file)], environments=False))


class TestCloudConfig:
    """Test cases for the CloudConfig wrapper."""

    def test_integrations(self, cloud_config):
        accounts = cloud_config.integrations("AWS")
        assert accounts == [{"name": "prod", "accountId": 123456789012, "assumedRoleName": "Reader"}]
        assert cloud_config.integrations("azure") == []

    def test_enabled_providers(self, cloud_config):
        assert cloud_config.enabled_providers == ["aws", "mongoatlas"]
        assert cloud_config.is_provider_enabled("MongoAtlas")
        assert not cloud_config.is_provider_enabled("azure")

    def test_provider_settings_merge_globals(self, cloud_config):
        assert cloud_config.provider_settings("azure") == {
            "http_timeout": 15.0,
            "default_category": "Misc",
            "max_retries": 3,
        }

    def test_categories(self, cloud_config):
        assert cloud_config.category_mappings == {"Amazon Simple Storage Service": "Storage"}
        assert cloud_config.default_category == "Misc"

    def test_defaults_when_unset(self, tmp_path):
        empty = tmp_path / "empty.yaml"
        empty.write_text("{}\n")
        config = CloudConfig(Dynaconf(settings_files=[str(empty)], environments=False))
        assert config.http_timeout == 60.0
        assert config.default_category == "Uncategorized"
        assert config.category_mappings == {}
        assert config.enabled_providers == []

    def test_load_config_layers_file(self, config_file):
        config = load_config(str(config_file))
        assert config.integrations("mongoatlas")[0]["orgId"] == "org-1"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("COSTREPORTS_HTTP__TIMEOUT", "15")
        monkeypatch.setenv("COSTREPORTS_PROVIDERS__AZURE__MAX_RETRIES", "4")

        config = CloudConfig(build_settings())

        assert config.http_timeout == 15.0
        assert config.provider_settings("azure")["max_retries"] == 4

    def test_load_config_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))


class TestAccountConfigs:
    """Test cases for the sub-account models."""

    def test_aws_camel_case_and_numeric_id(self):
        account = AWSAccountConfig.model_validate(
            {"name": "prod", "accountId": 123456789012, "assumedRoleName": "Reader"}
        )
        assert account.account_id == "123456789012"
        assert account.role_arn == "arn:aws:iam::123456789012:role/Reader"
        assert not account.has_static_keys

    def test_aws_static_keys_need_both_parts(self):
        account = AWSAccountConfig(name="p", account_id="1", assumed_role_name="r", access_key_id="AKIA")
        assert not account.has_static_keys

    def test_azure_requires_secret(self):
        with pytest.raises(ValidationError):
            AzureAccountConfig(name="main", subscription_id="s", tenant_id="t", client_id="c")

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            MongoAtlasAccountConfig(name="  ", org_id="o", public_key="p", private_key="k")

    def test_static_tags(self):
        account = MongoAtlasAccountConfig(
            name="atlas", org_id="o", public_key="p", private_key="k", tags=["team: data ", "broken", "url:a:b"]
        )
        assert account.static_tags == {"team": "data", "url": "a:b"}
