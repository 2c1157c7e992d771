from datetime import datetime
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from policywatch.analysis.service import PolicyAnalysisService
from policywatch.config import settings
from policywatch.database import engine_options

from helpers import CHUNK_PROMPT, FAQ_PROMPT, SUMMARY_PROMPT, TAGS_PROMPT, FakeLLM, chunk_reply, create_document, create_version

API = "/v1"

DOCUMENT = {
    "name": "Example Terms of Service",
    "source_url": "https://example.com/terms",
    "company_name": "Example Inc",
    "document_type": "terms_of_service",
}


async def post_document(client):
    response = await client.post(f"{API}/documents", json=DOCUMENT)
    assert response.status_code == 201
    return response.json()


def test_engine_options_per_backend():
    assert engine_options("sqlite+aiosqlite:///:memory:") == {"connect_args": {"check_same_thread": False}}
    postgres = engine_options("postgresql+asyncpg://u:p@localhost/db")
    assert postgres["pool_pre_ping"] is True
    assert postgres["pool_size"] == settings.DB_POOL_SIZE


@pytest.mark.asyncio
async def test_health(async_client):
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Documents and versions
# ---------------------------------------------------------------------------

class TestDocuments:
    @pytest.mark.asyncio
    async def test_create_and_get(self, async_client):
        created = await post_document(async_client)
        assert created["scrape_status"] == "pending"

        response = await async_client.get(f"{API}/documents/{created['id']}")
        assert response.status_code == 200
        assert response.json()["company_name"] == "Example Inc"

    @pytest.mark.asyncio
    async def test_unknown_document(self, async_client):
        assert (await async_client.get(f"{API}/documents/{uuid4()}")).status_code == 404
        response = await async_client.post(f"{API}/documents/{uuid4()}/versions", json={"plain_text": "x"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_ingest_flow(self, async_client):
        document = await post_document(async_client)
        url = f"{API}/documents/{document['id']}/versions"

        first = (await async_client.post(url, json={"plain_text": "We keep data for 30 days."})).json()
        assert first["changed"] is True
        assert first["version"]["version_number"] == "1.0"
        assert first["comparison_id"] is None

        same = (await async_client.post(url, json={"plain_text": "We keep data for 30 days."})).json()
        assert same == {"changed": False, "version": None, "comparison_id": None}

        second = (await async_client.post(url, json={
            "plain_text": "We keep data for 90 days.\nDisputes go to arbitration.",
            "effective_date": "2024-03-15",
        })).json()
        assert second["changed"] is True
        assert second["version"]["version_number"] == "1.1"
        assert second["version"]["effective_date"] == "2024-03-15"
        assert second["comparison_id"] is not None

        comparison = (await async_client.get(f"{API}/comparisons/{second['comparison_id']}")).json()
        assert comparison["old_version_id"] == first["version"]["id"]
        assert comparison["new_version_id"] == second["version"]["id"]
        assert comparison["is_analyzed"] is False
        assert comparison["diff_blocks"]

        versions = (await async_client.get(url)).json()
        assert [v["version_number"] for v in versions] == ["1.1", "1.0"]
        assert [v["is_current"] for v in versions] == [True, False]

    @pytest.mark.asyncio
    async def test_empty_scrape_is_rejected(self, async_client):
        document = await post_document(async_client)
        response = await async_client.post(f"{API}/documents/{document['id']}/versions", json={"plain_text": ""})
        assert response.status_code == 422


class TestComparisons:
    @pytest.mark.asyncio
    async def test_analyze_is_queued(self, async_client):
        document = await post_document(async_client)
        url = f"{API}/documents/{document['id']}/versions"
        await async_client.post(url, json={"plain_text": "Version one."})
        comparison_id = (await async_client.post(url, json={"plain_text": "Version two."})).json()["comparison_id"]

        with patch("policywatch.versions.router.run_change_analysis", new=AsyncMock()) as task:
            response = await async_client.post(f"{API}/comparisons/{comparison_id}/analyze")

        assert response.status_code == 202
        assert response.json()["id"] == comparison_id
        task.assert_awaited_once()
        assert str(task.await_args.args[0]) == comparison_id

    @pytest.mark.asyncio
    async def test_unknown_comparison(self, async_client):
        assert (await async_client.get(f"{API}/comparisons/{uuid4()}")).status_code == 404
        assert (await async_client.post(f"{API}/comparisons/{uuid4()}/analyze")).status_code == 404


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

class TestAnalysis:
    @pytest.mark.asyncio
    async def test_analyze_returns_pending_job(self, async_client, db_session):
        document = await create_document(db_session)
        version = await create_version(db_session, document, "# Terms\nWe may sell your data.")

        with patch("policywatch.analysis.router.run_document_analysis", new=AsyncMock()) as task:
            response = await async_client.post(
                f"{API}/versions/{version.id}/analyze", json={"analysis_type": "quick_scan"}
            )

        assert response.status_code == 202
        job = response.json()
        assert job["status"] == "pending"
        assert job["analysis_type"] == "quick_scan"
        task.assert_awaited_once()

        fetched = await async_client.get(f"{API}/analysis-jobs/{job['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["progress_log"][0]["message"] == "Analysis queued"

    @pytest.mark.asyncio
    async def test_analyze_unknown_version(self, async_client):
        with patch("policywatch.analysis.router.run_document_analysis", new=AsyncMock()) as task:
            response = await async_client.post(f"{API}/versions/{uuid4()}/analyze")
        assert response.status_code == 404
        task.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_job(self, async_client):
        assert (await async_client.get(f"{API}/analysis-jobs/{uuid4()}")).status_code == 404

    @pytest.mark.asyncio
    async def test_fail_stale_jobs(self, async_client):
        response = await async_client.post(f"{API}/analysis-jobs/fail-stale", params={"older_than_minutes": 5})
        assert response.status_code == 200
        assert response.json() == {"failed": 0}
        assert (await async_client.post(f"{API}/analysis-jobs/fail-stale", params={"older_than_minutes": 0})).status_code == 422

    @pytest.mark.asyncio
    async def test_current_analysis(self, async_client, db_session):
        document = await create_document(db_session)
        version = await create_version(db_session, document, "# Terms\nWe may sell your data.")
        url = f"{API}/versions/{version.id}/analysis"
        assert (await async_client.get(url)).status_code == 404

        fake = FakeLLM({
            CHUNK_PROMPT: chunk_reply("Sells data.", red=[{"type": "sell_data", "severity": 8}]),
            SUMMARY_PROMPT: {"summary": "They sell data."},
            FAQ_PROMPT: [],
            TAGS_PROMPT: ["data-selling"],
        })
        await PolicyAnalysisService(db_session, llm_client=fake).analyze(version)

        body = (await async_client.get(url)).json()
        assert body["summary"] == "They sell data."
        assert body["flags"]["red"][0]["type"] == "sell_data"
        assert body["is_current"] is True


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

class TestTiming:
    @pytest.mark.asyncio
    async def test_version_timing(self, async_client, db_session):
        document = await create_document(db_session)
        version = await create_version(db_session, document, "Terms.", scraped_at=datetime(2024, 3, 15, 16, 0))

        body = (await async_client.get(f"{API}/versions/{version.id}/timing")).json()
        assert [s["type"] for s in body["signals"]] == ["friday_afternoon_drop"]
        assert body["penalty"] == -7

    @pytest.mark.asyncio
    async def test_document_history(self, async_client, db_session):
        document = await create_document(db_session)
        await create_version(db_session, document, "v1", "1.0", datetime(2023, 11, 23, 14, 0), is_current=False)
        await create_version(db_session, document, "v2", "1.1", datetime(2024, 12, 25, 14, 0))

        body = (await async_client.get(f"{API}/documents/{document.id}/history/timing")).json()
        assert body["overall_risk"] == "critical"
        assert body["pattern_summary"].startswith("Analyzed 2 versions.")

    @pytest.mark.asyncio
    async def test_unknown_ids(self, async_client):
        assert (await async_client.get(f"{API}/versions/{uuid4()}/timing")).status_code == 404
        assert (await async_client.get(f"{API}/documents/{uuid4()}/history/timing")).status_code == 404


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

class TestScoring:
    @pytest.mark.asyncio
    async def test_preview(self, async_client):
        response = await async_client.post(f"{API}/scoring/preview", json={"flags": [
            {"type": "extended_retention", "severity": 7, "color": "yellow"},
            {"type": "forced_arbitration", "severity": 10, "color": "red"},
        ]})

        assert response.status_code == 200
        body = response.json()
        assert body["total_score"] == 44
        assert body["grade"] == "F"
        assert [entry["type"] for entry in body["breakdown"]] == ["extended_retention", "forced_arbitration"]

    @pytest.mark.asyncio
    async def test_preview_rejects_bad_severity(self, async_client):
        response = await async_client.post(f"{API}/scoring/preview", json={"flags": [
            {"type": "sell_data", "severity": 11, "color": "red"},
        ]})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_flag_types(self, async_client):
        body = (await async_client.get(f"{API}/scoring/flag-types")).json()
        assert "forced_arbitration" in body["red"]
        assert "clear_deletion_rights" in body["green"]
