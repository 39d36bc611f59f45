"""
Client for the organization-profile service.
"""

import httpx
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import EntityNotFoundException, OrganizationServiceException
from grantmatch.core.logging import LoggerMixin
from grantmatch.schemas.organization import OrganizationProfile


class OrganizationClient(LoggerMixin):
    """Fetches organization profiles over HTTP; read only."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http = http_client

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            if not self.settings.organization_service_url:
                raise OrganizationServiceException("Organization service URL is not configured")
            headers = {"Accept": "application/json"}
            if self.settings.organization_service_api_key:
                headers["X-API-Key"] = self.settings.organization_service_api_key
            self._http = httpx.AsyncClient(
                base_url=self.settings.organization_service_url,
                timeout=httpx.Timeout(self.settings.organization_service_timeout),
                headers=headers,
            )
        return self._http

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _get(self, organization_id: str) -> httpx.Response:
        return await self._http_client().get(f"/organizations/{organization_id}/profile")

    async def get_organization_profile(self, organization_id: str) -> OrganizationProfile:
        """
        Fetch one organization profile.

        Raises:
            EntityNotFoundException: Unknown organization
            OrganizationServiceException: Service unreachable or returned garbage
        """
        try:
            response = await self._get(organization_id)
        except httpx.HTTPError as e:
            self.logger.error("organization_lookup_failed", organization_id=organization_id, error=str(e))
            raise OrganizationServiceException(str(e)) from e

        if response.status_code == 404:
            raise EntityNotFoundException("Organization", organization_id)
        if response.status_code >= 400:
            raise OrganizationServiceException(f"HTTP {response.status_code}")

        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("profile payload is not an object")
            data.setdefault("organization_id", organization_id)
            return OrganizationProfile.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise OrganizationServiceException(f"Invalid profile payload: {e}") from e

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
