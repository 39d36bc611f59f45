"""Tests for the organization-profile client and the notification emitter."""

import json
import uuid

import httpx
import pytest

from grantmatch.core.exceptions import EntityNotFoundException, OrganizationServiceException
from grantmatch.services.notifications import NotificationEmitter
from grantmatch.services.organization_client import OrganizationClient


def mock_client(handler, **kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)


class TestOrganizationClient:
    """Tests for OrganizationClient."""

    @pytest.mark.asyncio
    async def test_fetch_profile(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/organizations/org-1/profile"
            return httpx.Response(200, json={
                "organization_type": "COMPANY",
                "industry_sector": "ict",
                "trl": 6,
                "certifications": ["이노비즈"],
                "regions": ["busan"],
            })

        client = OrganizationClient(settings, mock_client(handler, base_url="https://orgs.example"))
        profile = await client.get_organization_profile("org-1")

        assert profile.organization_id == "org-1"
        assert profile.industry_sector == "ICT"
        assert profile.certifications == ["INNO-BIZ"]
        assert profile.regions == ["BUSAN"]

    @pytest.mark.asyncio
    async def test_unknown_organization(self, settings):
        client = OrganizationClient(
            settings,
            mock_client(lambda request: httpx.Response(404), base_url="https://orgs.example"),
        )

        with pytest.raises(EntityNotFoundException):
            await client.get_organization_profile("missing")

    @pytest.mark.asyncio
    async def test_invalid_payload(self, settings):
        client = OrganizationClient(
            settings,
            mock_client(lambda request: httpx.Response(200, json=["not", "a", "profile"]), base_url="https://orgs.example"),
        )

        with pytest.raises(OrganizationServiceException):
            await client.get_organization_profile("org-1")

    @pytest.mark.asyncio
    async def test_unconfigured_service(self, settings):
        with pytest.raises(OrganizationServiceException):
            await OrganizationClient(settings).get_organization_profile("org-1")


class TestNotificationEmitter:
    """Tests for NotificationEmitter."""

    @pytest.mark.asyncio
    async def test_records_without_webhook(self, notifier):
        assert await notifier.new_matches("org-1", 3)
        assert notifier.sent[0]["type"] == "new_matches"
        assert notifier.sent[0]["newMatchCount"] == 3
        assert "emitted_at" in notifier.sent[0]

    @pytest.mark.asyncio
    async def test_posts_to_webhook(self, settings):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        settings.notification_webhook_url = "https://notify.example/events"
        emitter = NotificationEmitter(settings, mock_client(handler))

        assert await emitter.alert("job_dead_lettered", "KEIT", "timeout", job_id="j-1")
        assert received[0]["kind"] == "job_dead_lettered"
        assert received[0]["details"] == {"job_id": "j-1"}

    @pytest.mark.asyncio
    async def test_failed_delivery_is_advisory(self, settings):
        settings.notification_webhook_url = "https://notify.example/events"
        emitter = NotificationEmitter(settings, mock_client(lambda request: httpx.Response(500)))

        assert not await emitter.deadline_reminder(uuid.uuid4(), 3)
