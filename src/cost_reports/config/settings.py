"""
Configuration management for multi-cloud cost reports.

Uses dynaconf for flexible configuration with YAML files and environment overrides.
"""

import logging
from pathlib import Path
from typing import Any

from dynaconf import Dynaconf, Validator
from dynaconf.validator import ValidationError

logger = logging.getLogger(__name__)

# Get the project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"

SUPPORTED_PROVIDERS = ("aws", "azure", "mongoatlas")

DEFAULT_SETTINGS_FILES = [
    str(CONFIG_DIR / "config.yaml"),  # Base configuration
    str(CONFIG_DIR / "config.local.yaml"),  # Local overrides (git-ignored)
    str(CONFIG_DIR / ".secrets.yaml"),  # Sub-account credentials (git-ignored)
]


def build_settings(extra_files: list[str] | None = None) -> Dynaconf:
    """Create a Dynaconf instance; ``extra_files`` load after the defaults."""
    return Dynaconf(
        envvar_prefix="COSTREPORTS",
        settings_files=DEFAULT_SETTINGS_FILES + list(extra_files or []),
        environments=False,
        load_dotenv=True,
        merge_enabled=True,
        envvar_separator="__",  # Support nested config via COSTREPORTS_PROVIDERS__AZURE__MAX_RETRIES=3
        validators=[
            Validator("providers.azure.max_retries", gte=1, lte=20),
            Validator("providers.azure.default_retry_after", gte=0),
            Validator("http.timeout", gt=0),
        ],
    )


# Initialize dynaconf with multiple configuration sources
settings = build_settings()


class CloudConfig:
    """Configuration wrapper for integrations and provider tuning."""

    def __init__(self, source: Dynaconf | None = None):
        self.settings = source if source is not None else settings
        self._validate_config()

    def _validate_config(self):
        """Validate the configuration on initialization."""
        try:
            self.settings.validators.validate()
        except ValidationError as e:
            logger.warning(f"Configuration validation warning: {e}")

    def integrations(self, provider: str) -> list[dict[str, Any]]:
        """Sub-account mappings configured for ``provider``."""
        accounts = self.settings.get(f"integrations.{provider.lower()}") or []
        return [account.to_dict() if hasattr(account, "to_dict") else dict(account) for account in accounts]

    @property
    def enabled_providers(self) -> list[str]:
        """Providers with at least one configured sub-account."""
        return [provider for provider in SUPPORTED_PROVIDERS if self.integrations(provider)]

    def provider_settings(self, provider: str) -> dict[str, Any]:
        """Provider tuning merged with the global HTTP and category defaults."""
        tuning = self.settings.get(f"providers.{provider.lower()}") or {}
        if hasattr(tuning, "to_dict"):
            tuning = tuning.to_dict()
        return {
            "http_timeout": self.http_timeout,
            "default_category": self.default_category,
            **tuning,
        }

    @property
    def category_mappings(self) -> dict[str, str]:
        """Service name to category lookup."""
        mappings = self.settings.get("categories.mappings") or {}
        return {str(service): str(category) for service, category in mappings.items()}

    @property
    def default_category(self) -> str:
        return self.settings.get("categories.default", "Uncategorized")

    @property
    def http_timeout(self) -> float:
        return float(self.settings.get("http.timeout", 60))

    def is_provider_enabled(self, provider: str) -> bool:
        """Check if a specific provider has configured sub-accounts."""
        return provider.lower() in self.enabled_providers


# Global configuration instance
config = CloudConfig()


def get_config() -> CloudConfig:
    """Get the global configuration instance."""
    return config


def reload_config():
    """Reload configuration from files."""
    global config
    settings.reload()
    config = CloudConfig()
    return config


def load_config(config_file: str) -> CloudConfig:
    """Build a configuration with ``config_file`` layered over the defaults."""
    path = Path(config_file)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")
    return CloudConfig(build_settings([str(path)]))
