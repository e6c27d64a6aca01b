"""Tests for the MCP tools

Exercises the tool implementations end to end against an in-memory store:
1. upload_spreadsheets
2. run_rfm_analysis / export_rfm_segments
3. get_latest_order_date / load_stored_orders / clear_customer_store
4. search_orders / summarize_sales_agents
5. health_check
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock

import pandas as pd
import pytest

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.resilience import reset_all_circuit_breakers
from analytics.services.mcp_server.resilience.circuit_breakers import (
    document_store_breaker,
)
from analytics.services.mcp_server.state import (
    LAST_UPLOAD_KEY,
    ORDERS_KEY,
    RFM_ANALYSIS_KEY,
    get_shared_state,
)
from analytics.services.mcp_server.tools.health_check import _health_check_impl
from analytics.services.mcp_server.tools.insights import (
    AgentSummaryRequest,
    SearchRequest,
    _search_orders_impl,
    _summarize_sales_agents_impl,
)
from analytics.services.mcp_server.tools.rfm import (
    ExportRFMRequest,
    RunRFMRequest,
    _export_rfm_segments_impl,
    _run_rfm_analysis_impl,
)
from analytics.services.mcp_server.tools.storage import (
    ClearStoreRequest,
    _clear_customer_store_impl,
    _get_latest_order_date_impl,
    _load_stored_orders_impl,
)
from analytics.services.mcp_server.tools.upload import (
    UploadRequest,
    _upload_spreadsheets_impl,
)


def create_mock_context():
    """Create a mock FastMCP Context for testing."""
    ctx = AsyncMock()
    ctx.info = AsyncMock()
    ctx.warning = AsyncMock()
    ctx.report_progress = AsyncMock()
    return ctx


@pytest.fixture(autouse=True)
def fresh_service(monkeypatch):
    """Each test gets an empty in-memory store and closed breakers."""
    monkeypatch.setenv("RFM_STORE_URL", "memory://")
    monkeypatch.setenv("RFM_BATCH_DELAY", "0")
    monkeypatch.delenv("RFM_AGENTS_FILE", raising=False)
    get_shared_state().clear()
    reset_all_circuit_breakers()
    yield
    get_shared_state().clear()
    reset_all_circuit_breakers()


async def upload(files, **kwargs):
    orders, billing = files
    request = UploadRequest(order_file=str(orders), billing_file=str(billing), **kwargs)
    return await _upload_spreadsheets_impl(request, create_mock_context())


def test_instance_metadata():
    assert mcp.name == "Customer RFM Analytics"
    assert mcp.version == "0.1.0"


class TestUploadTool:
    """upload_spreadsheets"""

    @pytest.mark.asyncio
    async def test_full_upload(self, march_files):
        ctx = create_mock_context()
        orders, billing = march_files

        response = await _upload_spreadsheets_impl(
            UploadRequest(order_file=str(orders), billing_file=str(billing)), ctx
        )

        assert response.persistence_status == "succeeded"
        assert response.orders_processed == 5
        assert response.customers_saved == 4
        assert response.orphan_billing == 1
        assert response.invalid_dates == 1
        assert len(get_shared_state().get(ORDERS_KEY)) == 5
        assert get_shared_state().has(LAST_UPLOAD_KEY)
        ctx.report_progress.assert_awaited()

    @pytest.mark.asyncio
    async def test_incremental_upload(self, march_files, april_files):
        await upload(march_files)

        response = await upload(april_files, mode="incremental")

        assert response.cutoff == "2024-03-02T11:00:00"
        assert response.orders_processed == 2
        assert response.excluded_by_cutoff == 1

    @pytest.mark.asyncio
    async def test_upload_clears_previous_analysis(self, march_files):
        await upload(march_files)
        await _run_rfm_analysis_impl(RunRFMRequest(source="session"), create_mock_context())
        assert get_shared_state().has(RFM_ANALYSIS_KEY)

        await upload(march_files, persist=False)

        assert not get_shared_state().has(RFM_ANALYSIS_KEY)

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path, march_files):
        with pytest.raises(FileNotFoundError, match="Spreadsheet not found"):
            await upload((tmp_path / "nope.xlsx", march_files[1]))

    @pytest.mark.asyncio
    async def test_agents_file_from_environment(self, monkeypatch, tmp_path, march_files):
        agents = tmp_path / "agents.json"
        agents.write_text(json.dumps({"pos2@example.com": {"name": "Marta", "zone": "Sur"}}))
        monkeypatch.setenv("RFM_AGENTS_FILE", str(agents))

        await upload(march_files)
        response = await _summarize_sales_agents_impl(
            AgentSummaryRequest(zone="Sur"), create_mock_context()
        )

        assert response.total_customers == 1
        assert response.customers[0].identity_key == "beto@example.com"
        assert response.customers[0].agents == {"Marta": 1}
        assert response.total_revenue == 1200.0

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, march_files):
        document_store_breaker.open()

        with pytest.raises(RuntimeError, match="Document store unavailable"):
            await upload(march_files)

        # Processed orders stay usable for the session
        assert len(get_shared_state().get(ORDERS_KEY)) == 5

    @pytest.mark.asyncio
    async def test_open_circuit_on_incremental_upload_keeps_orders(self, march_files):
        document_store_breaker.open()

        with pytest.raises(RuntimeError, match="Document store unavailable"):
            await upload(march_files, mode="incremental")

        assert len(get_shared_state().get(ORDERS_KEY)) == 5


class TestRFMTools:
    """run_rfm_analysis and export_rfm_segments"""

    @pytest.mark.asyncio
    async def test_analysis_from_store(self, march_files):
        await upload(march_files)

        response = await _run_rfm_analysis_impl(
            RunRFMRequest(reference_date=datetime(2024, 3, 31)), create_mock_context()
        )

        assert response.total_customers == 4
        assert response.reference_date == "2024-03-31T00:00:00"
        assert sum(segment.count for segment in response.segments) == 4
        priorities = [segment.segment for segment in response.segments]
        assert len(priorities) == response.total_segments

    @pytest.mark.asyncio
    async def test_utc_reference_date_string(self, march_files):
        await upload(march_files)

        response = await _run_rfm_analysis_impl(
            RunRFMRequest.model_validate({"reference_date": "2024-03-31T00:00:00Z"}),
            create_mock_context(),
        )

        assert response.total_customers == 4
        assert response.reference_date == "2024-03-31T00:00:00"

    @pytest.mark.asyncio
    async def test_session_source_requires_upload(self):
        with pytest.raises(ValueError, match="No uploaded orders"):
            await _run_rfm_analysis_impl(RunRFMRequest(source="session"), create_mock_context())

    @pytest.mark.asyncio
    async def test_empty_store(self):
        response = await _run_rfm_analysis_impl(RunRFMRequest(), create_mock_context())

        assert response.total_customers == 0
        assert response.segments == []

    @pytest.mark.asyncio
    async def test_filtered_analysis_reports_terms(self, march_files):
        await upload(march_files)

        response = await _run_rfm_analysis_impl(
            RunRFMRequest(reference_date=datetime(2024, 3, 31), query="CAFE-01, TE-01"),
            create_mock_context(),
        )

        assert response.search_terms == ["cafe-01", "te-01"]

    @pytest.mark.asyncio
    async def test_export_requires_analysis(self, tmp_path):
        with pytest.raises(ValueError, match="RFM analysis not found"):
            await _export_rfm_segments_impl(
                ExportRFMRequest(output_path=str(tmp_path / "rfm.csv")), create_mock_context()
            )

    @pytest.mark.asyncio
    async def test_export(self, march_files, tmp_path):
        await upload(march_files)
        await _run_rfm_analysis_impl(
            RunRFMRequest(reference_date=datetime(2024, 3, 31)), create_mock_context()
        )

        response = await _export_rfm_segments_impl(
            ExportRFMRequest(output_path=str(tmp_path / "rfm.xlsx")), create_mock_context()
        )

        assert response.rows == 4
        assert len(pd.read_excel(response.output_path, sheet_name="RFM")) == 4

    @pytest.mark.asyncio
    async def test_export_unknown_segment(self, march_files, tmp_path):
        await upload(march_files)
        await _run_rfm_analysis_impl(RunRFMRequest(), create_mock_context())

        with pytest.raises(ValueError, match="Unknown segment"):
            await _export_rfm_segments_impl(
                ExportRFMRequest(output_path=str(tmp_path / "rfm.csv"), segments=["VIP"]),
                create_mock_context(),
            )


class TestStorageTools:
    """get_latest_order_date, load_stored_orders, clear_customer_store"""

    @pytest.mark.asyncio
    async def test_latest_order_date_empty_store(self):
        response = await _get_latest_order_date_impl(create_mock_context())

        assert response.has_data is False
        assert response.latest_order_date is None

    @pytest.mark.asyncio
    async def test_latest_order_date(self, march_files):
        await upload(march_files)

        response = await _get_latest_order_date_impl(create_mock_context())

        assert response.has_data is True
        assert response.latest_order_date == "2024-03-02T11:00:00"

    @pytest.mark.asyncio
    async def test_load_stored_orders(self, march_files):
        await upload(march_files)
        get_shared_state().pop(ORDERS_KEY)

        response = await _load_stored_orders_impl(create_mock_context())

        assert response.customers == 4
        assert response.orders == 5
        assert response.date_range == ("2024-01-05T09:00:00", "2024-03-02T11:00:00")
        assert len(get_shared_state().get(ORDERS_KEY)) == 5

    @pytest.mark.asyncio
    async def test_clear_requires_confirmation(self):
        with pytest.raises(ValueError, match="confirm=true"):
            await _clear_customer_store_impl(ClearStoreRequest(), create_mock_context())

    @pytest.mark.asyncio
    async def test_clear(self, march_files):
        await upload(march_files)

        response = await _clear_customer_store_impl(
            ClearStoreRequest(confirm=True), create_mock_context()
        )

        assert response.deleted == 4
        latest = await _get_latest_order_date_impl(create_mock_context())
        assert latest.has_data is False


class TestInsightTools:
    """search_orders and summarize_sales_agents"""

    @pytest.mark.asyncio
    async def test_search_requires_orders(self):
        with pytest.raises(ValueError, match="No orders loaded"):
            await _search_orders_impl(SearchRequest(query="cafe"), create_mock_context())

    @pytest.mark.asyncio
    async def test_search(self, march_files):
        await upload(march_files)

        response = await _search_orders_impl(SearchRequest(query="cafe"), create_mock_context())

        assert response.skus[0]["sku"] == "CAFE-01"
        assert response.skus[0]["count"] == 3
        assert response.matching_orders == 3

    @pytest.mark.asyncio
    async def test_search_without_matches(self, march_files):
        await upload(march_files)
        ctx = create_mock_context()

        response = await _search_orders_impl(SearchRequest(query="zzz"), ctx)

        assert response.total_results == 0
        ctx.info.assert_awaited()

    @pytest.mark.asyncio
    async def test_agent_summary_without_mapping(self, march_files):
        await upload(march_files)

        response = await _summarize_sales_agents_impl(AgentSummaryRequest(), create_mock_context())

        assert response.total_customers == 4
        assert response.total_orders == 5
        assert response.shared_customers == 0
        assert all(c.agents == {"Sin Asignar": c.orders} for c in response.customers)


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, march_files):
        await upload(march_files)

        response = await _health_check_impl(create_mock_context())

        assert response.status == "healthy"
        assert response.checks["document_store"] == "healthy (4 customers)"
        assert response.session_data[ORDERS_KEY] is True
        assert response.circuit_breakers["document_store"]["state"] == "closed"

    @pytest.mark.asyncio
    async def test_degraded_when_breaker_open(self):
        document_store_breaker.open()

        response = await _health_check_impl(create_mock_context())

        assert response.status == "degraded"
        assert response.checks["document_store"].startswith("unavailable")
        assert response.checks["circuit_breakers"] == "open: document_store"
