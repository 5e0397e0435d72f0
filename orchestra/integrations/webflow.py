"""Webflow CMS client used by the direct publication strategy."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..agents.generation import slugify
from ..core.config import settings
from ..errors import IntegrationError


logger = logging.getLogger(__name__)


@dataclass
class WebflowItem:
    item_id: str
    url: Optional[str]


class WebflowClient:
    name = "webflow"

    def __init__(
        self,
        api_token: Optional[str] = None,
        collection_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token if api_token is not None else settings.WEBFLOW_API_TOKEN
        self.collection_id = collection_id if collection_id is not None else settings.WEBFLOW_COLLECTION_ID
        self.base_url = (base_url or settings.WEBFLOW_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.WEBFLOW_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_token and self.collection_id)

    async def publish_item(self, title: str, body: str, options: Optional[Dict[str, Any]] = None) -> WebflowItem:
        """Create a live collection item; raises IntegrationError on any failure."""
        if not self.configured:
            raise IntegrationError(self.name, "WEBFLOW_API_TOKEN and WEBFLOW_COLLECTION_ID are not configured")

        options = options or {}
        slug = options.get("slug") or slugify(title)
        payload = {
            "isArchived": False,
            "isDraft": False,
            "fieldData": {"name": title, "slug": slug, "post-body": body, **options.get("fields", {})},
        }
        url = f"{self.base_url}/collections/{self.collection_id}/items/live"
        headers = {"Authorization": f"Bearer {self.api_token}", "accept": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise IntegrationError(self.name, f"request failed: {e}") from e

        if response.status_code >= 400:
            raise IntegrationError(
                self.name,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise IntegrationError(self.name, "response was not JSON") from e

        item_id = data.get("id")
        if not isinstance(item_id, str) or not item_id:
            raise IntegrationError(self.name, "response is missing the item id")

        site_url = options.get("site_url")
        logger.info(f"Published Webflow item {item_id} ({slug})")
        return WebflowItem(item_id=item_id, url=f"{site_url.rstrip('/')}/{slug}" if site_url else None)
