"""Cost clients for AWS, Azure, and MongoDB Atlas."""

# base must load before the clients: the shared utils import it
from .base import (
    CloudCostClient,
    CloudProvider,
    CostQuery,
    ProviderFactory,
    Report,
    TagsQuery,
    TimeGranularity,
)

# Import provider implementations to register them with ProviderFactory
from . import aws
from . import azure
from . import mongoatlas
