"""
Service name canonicalization.

Turns raw vendor service names into a uniform display name: strip the vendor
prefix, apply the provider's alias table, prefix with the provider tag.
"""

import logging
from collections.abc import Mapping, Sequence

from ..providers.base import CloudProvider

logger = logging.getLogger(__name__)

SERVICE_PREFIXES: dict[CloudProvider, tuple[str, ...]] = {
    CloudProvider.AWS: ("Amazon", "AWS"),
    CloudProvider.AZURE: ("Azure",),
    CloudProvider.MONGO_ATLAS: ("Atlas",),
}

SERVICE_ALIASES: dict[CloudProvider, dict[str, str]] = {
    CloudProvider.AWS: {
        "Elastic Compute Cloud - Compute": "EC2 - Instances",
        "Virtual Private Cloud": "VPC (Virtual Private Cloud)",
        "Relational Database Service": "RDS (Relational Database Service)",
        "Simple Storage Service": "S3 (Simple Storage Service)",
        "Managed Streaming for Apache Kafka": "MSK (Managed Streaming for Apache Kafka)",
        "Elastic Container Service for Kubernetes": "EKS (Elastic Container Service for Kubernetes)",
        "Elastic Container Service": "ECS (Elastic Container Service)",
        "EC2 Container Registry (ECR)": "ECR (Elastic Container Registry)",
        "Simple Queue Service": "SQS (Simple Queue Service)",
        "Simple Notification Service": "SNS (Simple Notification Service)",
        "Database Migration Service": "DMS (Database Migration Service)",
    },
    CloudProvider.AZURE: {},
    CloudProvider.MONGO_ATLAS: {},
}


class ServiceNameCanonicalizer:
    """Prefix-strip and alias lookup for one provider."""

    def __init__(
        self,
        provider: CloudProvider,
        prefixes: Sequence[str] | None = None,
        aliases: Mapping[str, str] | None = None,
    ):
        self.provider = provider
        self.prefixes = tuple(prefixes if prefixes is not None else SERVICE_PREFIXES.get(provider, ()))
        self.aliases = dict(aliases if aliases is not None else SERVICE_ALIASES.get(provider, {}))

    def strip_prefix(self, raw_name: str) -> str:
        for prefix in self.prefixes:
            if raw_name.startswith(prefix):
                return raw_name[len(prefix):].strip()
        return raw_name.strip()

    def canonicalize(self, raw_name: str) -> str:
        """Return ``"<provider>/<display name>"`` for a raw vendor name."""
        stripped = self.strip_prefix(raw_name or "")
        alias = self.aliases.get(stripped)
        if alias is None:
            if self.aliases:
                logger.debug(f"{self.provider.value}: no alias for service {raw_name!r}")
            alias = stripped
        return f"{self.provider.value}/{alias}"


_canonicalizers: dict[CloudProvider, ServiceNameCanonicalizer] = {}


def canonicalize(provider: CloudProvider, raw_name: str) -> str:
    """Canonicalize ``raw_name`` with the default tables for ``provider``."""
    if provider not in _canonicalizers:
        _canonicalizers[provider] = ServiceNameCanonicalizer(provider)
    return _canonicalizers[provider].canonicalize(raw_name)
