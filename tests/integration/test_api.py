"""Tests for the HTTP API."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from grantmatch.db.session import get_db
from grantmatch.main import create_application


@pytest_asyncio.fixture
async def client(container, session_factory):
    app = create_application()
    app.state.container = container

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def current_program(make_program, make_field):
    deadline = datetime.now(timezone.utc).date() + timedelta(days=20)
    return make_program(
        "2025년 AI 융합 기술개발사업",
        external_id="api-1",
        deadline=deadline,
        industry_sectors=make_field(["ICT"]),
        target_org_types=make_field(["COMPANY"]),
        trl_range=make_field({"min": 6, "max": 8}),
        budget_amount=make_field(300_000_000),
    )


class TestMatchEndpoints:
    """Tests for the match endpoints."""

    @pytest.mark.asyncio
    async def test_generate_and_explain(self, client, current_program, save_programs):
        await save_programs(current_program)

        response = await client.get("/api/v1/organizations/org-1/matches")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["score"] == 100
        assert body["new_match_count"] == 1

        match_id = body["items"][0]["match_id"]
        explanation = await client.get(f"/api/v1/matches/{match_id}/explanation", params={"locale": "ko"})
        assert explanation.status_code == 200
        assert explanation.json()["summary"].startswith("이 프로그램에 매우 적합한")

    @pytest.mark.asyncio
    async def test_unknown_organization_is_404(self, client):
        response = await client.get("/api/v1/organizations/nobody/matches")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ENTITY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_locale_rejected(self, client):
        response = await client.get("/api/v1/organizations/org-1/matches", params={"locale": "fr"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_organization_updated_webhook(self, client, container, current_program, save_programs):
        await save_programs(current_program)
        await client.get("/api/v1/organizations/org-1/matches")
        assert container.cache.stats()["entries"] == 1

        response = await client.post(
            "/api/v1/webhooks/organization-updated",
            json={"organization_id": "org-1"},
        )

        assert response.status_code == 202
        assert container.cache.stats()["entries"] == 0


class TestIngestionEndpoints:
    """Tests for the ingestion endpoints."""

    @pytest.mark.asyncio
    async def test_list_sources(self, client, add_source):
        await add_source("NTIS")
        await add_source("KEIT", is_enabled=False)

        response = await client.get("/api/v1/ingestion/sources")

        assert response.status_code == 200
        assert [(s["source_key"], s["is_enabled"]) for s in response.json()] == [("KEIT", False), ("NTIS", True)]

    @pytest.mark.asyncio
    async def test_manual_run_is_deduplicated(self, client, add_source):
        await add_source("KEIT")

        first = await client.post("/api/v1/ingestion/sources/KEIT/run")
        second = await client.post("/api/v1/ingestion/sources/KEIT/run")

        assert first.status_code == 202
        assert first.json()["accepted"]
        assert not second.json()["accepted"]
        assert second.json()["dedupe_key"] == "KEIT:manual"

    @pytest.mark.asyncio
    async def test_manual_run_refused_while_suspended(self, client, container, add_source):
        await add_source("KEIT", suspended_until=datetime.now(timezone.utc) + timedelta(hours=1))

        response = await client.post("/api/v1/ingestion/sources/KEIT/run")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "SOURCE_SUSPENDED"
        assert container.queue.stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_run_unknown_source(self, client):
        response = await client.post("/api/v1/ingestion/sources/NOPE/run")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_status(self, client, add_source):
        await add_source("KEIT")
        await client.post("/api/v1/ingestion/sources/KEIT/run")

        response = await client.get("/api/v1/ingestion/sources/KEIT/status")

        assert response.status_code == 200
        assert response.json()["source_id"] == "KEIT"
        assert response.json()["pending_jobs"] == 1
        assert response.json()["dead_letter_count"] == 0

    @pytest.mark.asyncio
    async def test_enrich_and_dead_letters(self, client, container):
        enqueue = await client.post("/api/v1/ingestion/enrich", json={"limit": 10})
        assert enqueue.json()["dedupe_key"] == "enrichment:manual"

        job = await container.queue.get()
        await container.queue.dead_letter(job, TimeoutError("timeout"))

        response = await client.get("/api/v1/ingestion/dead-letters")
        assert response.status_code == 200
        assert [j["dedupe_key"] for j in response.json()] == ["enrichment:manual"]

    @pytest.mark.asyncio
    async def test_health(self, client, container):
        response = await client.get("/health")

        assert response.status_code == 200
        assert "queue" in response.json()["components"]
