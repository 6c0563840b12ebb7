"""
Tests for the MongoDB Atlas invoice client.
"""

from datetime import date

import httpx
import pytest

from cost_reports.main import to_epoch_millis
from cost_reports.providers.base import APIError, CloudProvider, CostQuery, TimeGranularity
from cost_reports.providers.mongoatlas import (
    ATLAS_CSV_MEDIA_TYPE,
    ATLAS_JSON_MEDIA_TYPE,
    MongoAtlasCostClient,
    filter_invoice_csv,
    merge_invoice_csvs,
)
from cost_reports.utils.auth import MongoAtlasClientHandle

INVOICE_PREAMBLE = "Invoice Number,Status\ninv-1,PAID\n\n"
INVOICE_HEADER = "Organization ID,Organization Name,Project,Cluster,SKU,Date,Amount\n"


def invoice_csv(*lines: str) -> str:
    return INVOICE_PREAMBLE + INVOICE_HEADER + "\n".join(lines) + "\n"


@pytest.fixture
def handle():
    return MongoAtlasClientHandle(public_key="pub", private_key="priv", org_id="org-1")


class TestInvoiceCsv:
    """Test cases for invoice CSV filtering and merging."""

    def test_filter_discards_preamble_blank_lines_and_credits(self):
        content = invoice_csv(
            "org-1,Acme,proj-a,cluster-0,Atlas AWS Instance M10,04/01/2024,10.00",
            "",
            "org-1,Acme,proj-a,,Credit,04/01/2024,-5.00",
            "org-1,Acme,proj-b,cluster-1,Atlas Data Transfer,04/02/2024,1.50",
        )

        header, rows = filter_invoice_csv(content)

        assert header[:5] == ["Organization ID", "Organization Name", "Project", "Cluster", "SKU"]
        assert [row["SKU"] for row in rows] == ["Atlas AWS Instance M10", "Atlas Data Transfer"]

    def test_credit_in_other_column_is_kept(self):
        content = invoice_csv("org-1,Credit Union,proj-a,c0,Atlas Backup,04/01/2024,1.00")

        _, rows = filter_invoice_csv(content)

        assert len(rows) == 1

    def test_filter_without_header(self):
        assert filter_invoice_csv("nothing,to,see\n") == ([], [])

    def test_merge_keeps_header_once_and_invoice_order(self):
        first = invoice_csv("org-1,Acme,p,c,SKU-A,04/01/2024,1")
        second = invoice_csv("org-1,Acme,p,c,SKU-B,05/01/2024,2")

        merged = merge_invoice_csvs([first, second]).splitlines()

        assert merged[0].startswith("Organization ID,")
        assert sum(line.startswith("Organization ID,") for line in merged) == 1
        assert [line.split(",")[4] for line in merged[1:]] == ["SKU-A", "SKU-B"]

    def test_merge_of_nothing(self):
        assert merge_invoice_csvs([]) == ""


class TestMongoAtlasFetch:
    """Test cases for invoice download."""

    @pytest.mark.asyncio
    async def test_fetch_costs_downloads_invoices_in_order(self, handle, atlas_account, monthly_query):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/invoices"):
                return httpx.Response(200, json={"results": [{"id": "inv-1"}, {"id": "inv-2"}]})
            sku = "SKU-1" if "inv-1" in request.url.path else "SKU-2"
            return httpx.Response(200, text=invoice_csv(f"org-1,Acme,p,c,{sku},04/01/2024,1"))

        client = MongoAtlasCostClient({"base_url": "https://atlas.test/api/v2"}, transport=httpx.MockTransport(handler))
        merged = await client.fetch_costs(atlas_account, handle, monthly_query)

        list_request = requests[0]
        assert list_request.url.path == "/api/v2/orgs/org-1/invoices"
        assert list_request.url.params["fromDate"] == "2024-04-01"
        assert list_request.url.params["toDate"] == "2024-07-01"
        assert list_request.headers["Accept"] == ATLAS_JSON_MEDIA_TYPE
        csv_requests = requests[1:]
        assert {r.url.path for r in csv_requests} == {
            "/api/v2/orgs/org-1/invoices/inv-1/csv",
            "/api/v2/orgs/org-1/invoices/inv-2/csv",
        }
        assert all(r.headers["Accept"] == ATLAS_CSV_MEDIA_TYPE for r in csv_requests)
        assert [line.split(",")[4] for line in merged.splitlines()[1:]] == ["SKU-1", "SKU-2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "end, expected_to_date",
        [
            (date(2024, 5, 15), "2024-06-15"),
            (date(2024, 12, 1), "2025-01-01"),
            (date(2024, 1, 31), "2024-02-29"),
        ],
    )
    async def test_invoice_range_extends_one_month_past_end(self, handle, atlas_account, end, expected_to_date):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"results": []})

        query = CostQuery(start_time=to_epoch_millis(date(2024, 1, 1)), end_time=to_epoch_millis(end))
        client = MongoAtlasCostClient(transport=httpx.MockTransport(handler))

        assert await client.fetch_costs(atlas_account, handle, query) == ""
        assert requests[0].url.params["toDate"] == expected_to_date

    @pytest.mark.asyncio
    async def test_invoice_list_failure(self, handle, atlas_account, monthly_query):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="Unauthorized"))
        client = MongoAtlasCostClient(transport=transport)

        with pytest.raises(APIError, match="401") as exc_info:
            await client.fetch_costs(atlas_account, handle, monthly_query)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_csv_download_failure(self, handle, atlas_account, monthly_query):
        def handler(request):
            if request.url.path.endswith("/invoices"):
                return httpx.Response(200, json={"results": [{"id": "inv-1"}]})
            return httpx.Response(500, text="server error")

        client = MongoAtlasCostClient(transport=httpx.MockTransport(handler))
        with pytest.raises(APIError, match="server error"):
            await client.fetch_costs(atlas_account, handle, monthly_query)

    @pytest.mark.asyncio
    async def test_tag_discovery_is_empty(self, handle, atlas_account, tags_query):
        client = MongoAtlasCostClient()

        keys = await client.fetch_tag_keys(atlas_account, handle, tags_query)
        values = await client.fetch_tag_values(atlas_account, handle, tags_query, "team")

        assert keys.tag_keys == []
        assert values.tag_values == []
        assert keys.provider is CloudProvider.MONGO_ATLAS


class TestMongoAtlasTransform:
    """Test cases for folding invoice line items into reports."""

    @pytest.fixture
    def client(self):
        return MongoAtlasCostClient()

    def test_monthly_amounts_are_summed(self, client, atlas_account, monthly_query):
        content = merge_invoice_csvs(
            [
                invoice_csv(
                    "org-1,Acme,proj-a,cluster-0,Atlas AWS Instance M10,04/01/2024,10.00",
                    "org-1,Acme,proj-a,cluster-0,Atlas AWS Instance M10,04/02/2024,5.00",
                )
            ]
        )

        reports = client.transform_costs_data(atlas_account, monthly_query, content, {})

        assert len(reports) == 1
        report = reports[0]
        assert report.reports == {"2024-04": 15.0}
        assert report.service == "MongoAtlas/AWS Instance M10"
        assert report.name == "MongoAtlas/atlas"
        assert report.id == "atlas->Atlas AWS Instance M10->Uncategorized->proj-a->cluster-0"
        assert report.attributes == {"project": "proj-a", "cluster": "cluster-0"}

    def test_groups_by_project_and_cluster(self, client, atlas_account, daily_query):
        content = merge_invoice_csvs(
            [
                invoice_csv(
                    "org-1,Acme,proj-a,cluster-0,Atlas Backup,04/01/2024,1",
                    "org-1,Acme,proj-b,,Atlas Backup,04/01/2024,2",
                )
            ]
        )

        reports = client.transform_costs_data(atlas_account, daily_query, content, {"Atlas Backup": "Storage"})

        assert [(r.project, r.cluster) for r in reports] == [("proj-a", "cluster-0"), ("proj-b", "Unknown")]
        assert all(r.category == "Storage" for r in reports)
        assert reports[1].reports == {"2024-04-01": 2.0}

    def test_malformed_date_is_skipped(self, client, atlas_account, monthly_query):
        content = merge_invoice_csvs(
            [
                invoice_csv(
                    "org-1,Acme,p,c,Atlas Backup,2024-04-01,1",
                    "org-1,Acme,p,c,Atlas Backup,04/03/2024,2",
                )
            ]
        )

        report = client.transform_costs_data(atlas_account, monthly_query, content, {})[0]

        assert report.reports == {"2024-04": 2.0}

    def test_empty_content(self, client, atlas_account, monthly_query):
        assert client.transform_costs_data(atlas_account, monthly_query, "", {}) == []

    def test_daily_granularity(self, client, atlas_account):
        query = CostQuery(
            start_time=to_epoch_millis(date(2024, 4, 1)),
            end_time=to_epoch_millis(date(2024, 4, 30)),
            granularity=TimeGranularity.DAILY,
        )
        content = merge_invoice_csvs([invoice_csv("org-1,Acme,p,c,Atlas Backup,04/07/2024,3")])

        report = client.transform_costs_data(atlas_account, query, content, {})[0]

        assert report.reports == {"2024-04-07": 3.0}

    def test_summed_bucket_ignores_line_item_order(self, client, atlas_account, monthly_query):
        lines = [
            "org-1,Acme,p,c,Atlas Backup,04/01/2024,0.1",
            "org-1,Acme,p,c,Atlas Backup,04/02/2024,0.2",
            "org-1,Acme,p,c,Atlas Backup,04/03/2024,0.3",
        ]

        forward = client.transform_costs_data(
            atlas_account, monthly_query, merge_invoice_csvs([invoice_csv(*lines)]), {}
        )
        backward = client.transform_costs_data(
            atlas_account, monthly_query, merge_invoice_csvs([invoice_csv(*reversed(lines))]), {}
        )

        assert forward[0].reports == backward[0].reports == {"2024-04": 0.6}

    def test_nan_amount_counts_as_zero(self, client, atlas_account, monthly_query):
        content = merge_invoice_csvs(
            [
                invoice_csv(
                    "org-1,Acme,p,c,Atlas Backup,04/01/2024,nan",
                    "org-1,Acme,p,c,Atlas Backup,04/02/2024,5",
                )
            ]
        )

        report = client.transform_costs_data(atlas_account, monthly_query, content, {})[0]

        assert report.reports == {"2024-04": 5.0}
