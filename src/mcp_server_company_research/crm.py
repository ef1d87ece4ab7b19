"""CRM client for business records (read for selection, write-back of research)."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from .bulk.models import SubjectItem
from .config import CRMSettings
from .exceptions import ConfigurationError, CRMError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 1000


def _parse_score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def record_to_subject(record: dict[str, Any]) -> SubjectItem | None:
    """Map a business record to a SubjectItem. Records without a name are skipped."""
    properties = record.get("properties") or {}
    name = properties.get("name")
    if not record.get("id") or not name:
        return None
    return SubjectItem(
        id=str(record["id"]),
        name=str(name),
        website=properties.get("website") or None,
        industry=properties.get("industry") or None,
        email=properties.get("email") or None,
        score=_parse_score(properties.get("score")),
        has_existing_research=bool(properties.get("company_research")),
    )


class CRMClient:
    """Async client for the CRM business-records API."""

    def __init__(
        self,
        api_key: str,
        location_id: str,
        base_url: str = "https://services.leadconnectorhq.com",
        api_version: str = "2021-07-28",
        research_field: str = "company_research",
        page_size: int = 100,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.location_id = location_id
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.research_field = research_field
        self.page_size = page_size
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, crm_settings: CRMSettings) -> "CRMClient":
        """Build a client from settings.

        Raises:
            ConfigurationError: If the API key or location id is missing.
        """
        api_key = crm_settings.get_api_key()
        location_id = crm_settings.get_location_id()
        if not api_key or not location_id:
            raise ConfigurationError("CRM not configured. Set GHL_API_KEY and GHL_LOCATION_ID (or MCP_CRM_API_KEY / MCP_CRM_LOCATION_ID).")
        return cls(
            api_key=api_key,
            location_id=location_id,
            base_url=crm_settings.base_url,
            api_version=crm_settings.api_version,
            research_field=crm_settings.research_field,
            page_size=crm_settings.page_size,
        )

    async def __aenter__(self) -> "CRMClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Version": self.api_version,
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise CRMError(f"CRM request {method} {path} failed: {e}") from e

        if response.status_code == 401:
            raise CRMError("CRM authentication failed: verify the API token is valid and has the required scopes")
        if response.status_code >= 400:
            raise CRMError(f"CRM API error ({response.status_code}): {response.text[:500]}")

        try:
            data = response.json()
        except ValueError as e:
            raise CRMError(f"Invalid JSON from CRM {path}") from e
        return data if isinstance(data, dict) else {}

    async def search_businesses(self, query: str | None = None, page: int = 1, page_limit: int | None = None) -> dict[str, Any]:
        """Fetch one page of business records."""
        body: dict[str, Any] = {
            "locationId": self.location_id,
            "page": page,
            "pageLimit": page_limit or self.page_size,
        }
        if query:
            body["query"] = query
        return await self._request("POST", "/objects/business/records/search", json=body)

    async def iter_businesses(self, query: str | None = None, max_records: int = DEFAULT_MAX_RECORDS) -> AsyncIterator[dict[str, Any]]:
        """Yield business records across pages until a short page, the total, or max_records."""
        fetched = 0
        page = 1
        while fetched < max_records:
            response = await self.search_businesses(query, page)
            records = [r for r in response.get("records") or [] if isinstance(r, dict)]
            logger.debug(f"CRM page {page}: {len(records)} records")

            for record in records:
                if fetched >= max_records:
                    return
                fetched += 1
                yield record

            total = response.get("total")
            if not records or len(records) < self.page_size or (isinstance(total, int) and fetched >= total):
                return
            page += 1

    async def list_subjects(self, query: str | None = None, max_records: int = DEFAULT_MAX_RECORDS) -> list[SubjectItem]:
        """All named business records as SubjectItems, sorted by name."""
        subjects = []
        async for record in self.iter_businesses(query, max_records):
            subject = record_to_subject(record)
            if subject is not None:
                subjects.append(subject)
        return sorted(subjects, key=lambda s: s.name.lower())

    async def update_business_research(self, record_id: str, payload_text: str) -> dict[str, Any]:
        """Write serialized research into the record's research field.

        Raises:
            CRMError: If the request fails.
        """
        return await self._request(
            "PUT",
            f"/objects/business/records/{record_id}",
            params={"locationId": self.location_id},
            json={"properties": {self.research_field: payload_text}},
        )
