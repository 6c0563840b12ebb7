"""
MongoDB Atlas invoice client implementation.

Atlas has no cost query API; costs come from the organization's invoices.
Each invoice is downloaded as CSV, the preamble above the line-item header
is discarded, and the remaining rows are merged into one CSV document.
"""

import asyncio
import csv
import io
import logging
from collections.abc import Iterator, Mapping
from datetime import datetime
from typing import Any

import httpx
from dateutil.relativedelta import relativedelta

from ..config.accounts import MongoAtlasAccountConfig
from ..utils.auth import MongoAtlasAuthenticator, MongoAtlasClientHandle
from ..utils.data_normalizer import (
    DEFAULT_CATEGORY,
    BucketMode,
    CostRow,
    get_category_by_service_name,
    normalize_cost_rows,
    parse_amount,
)
from ..utils.http_client import DEFAULT_TIMEOUT, build_async_client
from ..utils.service_names import ServiceNameCanonicalizer
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
)

logger = logging.getLogger(__name__)

ATLAS_BASE_URL = "https://cloud.mongodb.com/api/atlas/v2"
ATLAS_JSON_MEDIA_TYPE = "application/vnd.atlas.2023-01-01+json"
ATLAS_CSV_MEDIA_TYPE = "application/vnd.atlas.2023-01-01+csv"
INVOICE_HEADER_PREFIX = "Organization ID,"
CREDIT_SKU = "Credit"
UNKNOWN_DIMENSION = "Unknown"
CSV_DATE_FORMAT = "%m/%d/%Y"


def filter_invoice_csv(content: str) -> tuple[list[str], list[dict[str, str]]]:
    """
    Extract the line items of one invoice CSV.

    Lines above the ``Organization ID,`` header are invoice metadata and are
    discarded, as are blank lines and credit rows.

    Returns:
        The header columns and the remaining rows; an empty header when the
        CSV has no line-item section
    """
    lines = content.splitlines()
    for index, line in enumerate(lines):
        if line.strip().startswith(INVOICE_HEADER_PREFIX):
            break
    else:
        return [], []

    reader = csv.DictReader(line for line in lines[index:] if line.strip())
    rows = [row for row in reader if (row.get("SKU") or "").strip() != CREDIT_SKU]
    return list(reader.fieldnames or []), rows


def merge_invoice_csvs(contents: list[str]) -> str:
    """Merge invoice CSVs into one document: header once, then rows in invoice order."""
    header: list[str] = []
    rows: list[dict[str, str]] = []
    for content in contents:
        invoice_header, invoice_rows = filter_invoice_csv(content)
        if not header:
            header = invoice_header
        rows.extend(invoice_rows)

    if not header:
        return ""

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=header, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue()


class MongoAtlasCostClient(CloudCostClient):
    """MongoDB Atlas Admin API invoice client."""

    account_config_model = MongoAtlasAccountConfig

    def __init__(self, config: Mapping[str, Any] | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config)
        self.authenticator = MongoAtlasAuthenticator(self.config)
        self.canonicalizer = ServiceNameCanonicalizer(self.provider)
        self.transport = transport
        self.base_url = self.config.get("base_url", ATLAS_BASE_URL).rstrip("/")
        self.timeout = float(self.config.get("http_timeout", DEFAULT_TIMEOUT))

    def _get_provider(self) -> CloudProvider:
        return CloudProvider.MONGO_ATLAS

    async def authenticate(self, account: MongoAtlasAccountConfig) -> MongoAtlasClientHandle:
        auth_result = await self.authenticator.authenticate(account)
        if not auth_result.success:
            raise AuthenticationError(f"MongoDB Atlas authentication failed: {auth_result.error_message}")
        return auth_result.credentials

    async def fetch_tag_keys(
        self, account: MongoAtlasAccountConfig, handle: MongoAtlasClientHandle, query: TagsQuery
    ) -> TagKeysResult:
        # Invoices carry no tags
        return TagKeysResult(tag_keys=[], provider=self.provider)

    async def fetch_tag_values(
        self, account: MongoAtlasAccountConfig, handle: MongoAtlasClientHandle, query: TagsQuery, tag_key: str
    ) -> TagValuesResult:
        return TagValuesResult(tag_values=[], provider=self.provider)

    async def _get(self, client: httpx.AsyncClient, path: str, accept: str, **params) -> httpx.Response:
        try:
            response = await client.get(f"{self.base_url}{path}", headers={"Accept": accept}, params=params or None)
        except httpx.HTTPError as e:
            raise APIError(f"MongoDB Atlas request failed: {e}", provider=self.provider_name) from e

        if response.status_code != 200:
            raise APIError(
                f"MongoDB Atlas request {path} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                provider=self.provider_name,
            )
        return response

    async def _fetch_invoice_csv(self, client: httpx.AsyncClient, org_id: str, invoice_id: str) -> str:
        response = await self._get(client, f"/orgs/{org_id}/invoices/{invoice_id}/csv", ATLAS_CSV_MEDIA_TYPE)
        return response.text

    async def fetch_costs(
        self, account: MongoAtlasAccountConfig, handle: MongoAtlasClientHandle, query: CostQuery
    ) -> str:
        """
        List the invoices overlapping the query range and download their CSVs.

        The invoice list is queried up to one month past the range end so the
        invoice for the final month is included.

        Returns:
            Merged line-item CSV text
        """
        from_date = query.start.date()
        to_date = query.end.date() + relativedelta(months=1)

        async with build_async_client(self.timeout, auth=handle.digest_auth, transport=self.transport) as client:
            response = await self._get(
                client,
                f"/orgs/{handle.org_id}/invoices",
                ATLAS_JSON_MEDIA_TYPE,
                fromDate=from_date.isoformat(),
                toDate=to_date.isoformat(),
            )
            invoice_ids = [invoice["id"] for invoice in response.json().get("results") or [] if invoice.get("id")]
            logger.debug(f"🍃 Atlas: {len(invoice_ids)} invoices for account {account.name}")

            # gather preserves argument order, so rows stay in invoice order
            contents = await asyncio.gather(
                *(self._fetch_invoice_csv(client, handle.org_id, invoice_id) for invoice_id in invoice_ids)
            )

        return merge_invoice_csvs(list(contents))

    def _extract_rows(
        self, content: str, category_mappings: Mapping[str, str], default_category: str
    ) -> Iterator[CostRow | None]:
        for row in csv.DictReader(io.StringIO(content)):
            try:
                row_date = datetime.strptime((row.get("Date") or "").strip(), CSV_DATE_FORMAT).date()
            except ValueError:
                logger.debug(f"🍃 Atlas: skipping line item with malformed date {row.get('Date')!r}")
                yield None
                continue

            service_name = (row.get("SKU") or "").strip()
            yield CostRow(
                date=row_date,
                service_name=service_name,
                amount=parse_amount(row.get("Amount")),
                dimensions=(
                    ("category", get_category_by_service_name(service_name, category_mappings, default_category)),
                    ("project", (row.get("Project") or "").strip() or UNKNOWN_DIMENSION),
                    ("cluster", (row.get("Cluster") or "").strip() or UNKNOWN_DIMENSION),
                ),
            )

    def transform_costs_data(
        self,
        account: MongoAtlasAccountConfig,
        query: CostQuery,
        raw_costs: str,
        category_mappings: Mapping[str, str],
    ) -> list[Report]:
        """Fold line items into reports; items sharing a period are summed."""
        default_category = self.config.get("default_category", DEFAULT_CATEGORY)
        return normalize_cost_rows(
            self.provider,
            account,
            query,
            self._extract_rows(raw_costs, category_mappings, default_category),
            category_mappings,
            self.canonicalizer.canonicalize,
            mode=BucketMode.SUM,
            default_category=default_category,
        )


# Register the MongoDB Atlas client with the factory
ProviderFactory.register_provider("mongoatlas", MongoAtlasCostClient)
