"""HTTP adapters for the collection and scoring services."""

from typing import Any

import httpx

from jobengine.core.logging import get_logger
from jobengine.core.retry import RetryConfig, retry_with_backoff
from jobengine.schemas.collaborators import (
    CollectionOptions,
    CollectionResult,
    ScoringOptions,
    ScoringResult,
)

from .base import BaseCollectionService, BaseScoringService

logger = get_logger(__name__)

# Failures where the request never reached the service
CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class HttpCollaborator:
    """Shared plumbing: bearer auth, timeout and connect-error retries."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 900,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self.retry_config = RetryConfig(
            max_attempts=max_attempts,
            retryable_exceptions=CONNECT_ERRORS,
        )
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any], operation: str) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            response = await retry_with_backoff(
                lambda: client.post(path, json=payload),
                config=self.retry_config,
                operation_name=operation,
            )

        if response.status_code >= 400:
            logger.bind(
                operation=operation,
                status=response.status_code,
                body=response.text[:500],
            ).error("collaborator_http_error")
        response.raise_for_status()

        data: dict[str, Any] = response.json()
        return data


class HttpCollectionService(HttpCollaborator, BaseCollectionService):
    """Collection service reached over HTTP."""

    provider_name = "http"

    async def execute(
        self,
        owner_id: str,
        brand_id: str,
        options: CollectionOptions,
    ) -> CollectionResult:
        payload = {
            "ownerId": owner_id,
            "brandId": brand_id,
            "options": options.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
        data = await self._post("/collections/execute", payload, "collection:execute")
        return CollectionResult.model_validate(data)


class HttpScoringService(HttpCollaborator, BaseScoringService):
    """Scoring service reached over HTTP."""

    provider_name = "http"

    async def score(
        self,
        brand_id: str,
        owner_id: str,
        options: ScoringOptions,
    ) -> ScoringResult:
        payload = {
            "brandId": brand_id,
            "ownerId": owner_id,
            "options": options.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
        data = await self._post("/scoring/score", payload, "scoring:score")
        return ScoringResult.model_validate(data)
