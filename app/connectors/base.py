"""PULSE: Metrics Provider Base.

Every platform adapter exposes the same capability: given an access token,
the platform's external id and an inclusive date range, return validated
daily rows or raise one of the typed errors below.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from app.config import settings
from app.core.logging import get_logger
from app.core.platform_registry import Platform
from app.models.metric_models import DailyRow, GAChannelRow

logger = get_logger("connectors")


class ProviderAPIError(Exception):
    """Raised when a provider call fails."""

    def __init__(
        self, message: str, status_code: int = 0, retryable: bool = False
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class InvalidPayloadError(ProviderAPIError):
    """Provider answered, but not in the shape we expect."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class AuthRequiredError(Exception):
    """Credential missing, expired beyond refresh, or lacking a scope.

    Needs a human to reconnect the account; never retried.
    """


def is_transient(exc: BaseException) -> bool:
    """Retry predicate for provider calls."""
    return isinstance(exc, ProviderAPIError) and exc.retryable


def parse_payload(model: type[BaseModel], payload: Any) -> Any:
    """Validate a provider payload, turning schema drift into a typed error."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayloadError(
            f"{model.__name__} validation failed: {e.error_count()} error(s)"
        ) from e


class MetricsProvider(ABC):
    """Abstract daily-metrics source for one platform."""

    platform: Platform

    @abstractmethod
    async def fetch_daily(
        self,
        access_token: str,
        external_id: str,
        start_date: str,
        end_date: str,
    ) -> List[DailyRow]:
        """Return one row per day in [start_date, end_date] the provider reports."""
        ...

    async def fetch_channels(
        self,
        access_token: str,
        external_id: str,
        start_date: str,
        end_date: str,
    ) -> List[GAChannelRow]:
        """Per-channel daily sessions. Only traffic sources report these."""
        return []

    async def close(self) -> None:
        """Release transport resources."""
        return None


class HTTPMetricsProvider(MetricsProvider):
    """Shared async HTTP plumbing for the concrete adapters.

    No retries here: the sync task wraps the whole fetch in with_retry(),
    this layer only classifies failures.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.provider_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _auth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: Dict[str, Any] | None = None,
        json_body: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Make one request and classify the outcome."""
        client = await self._get_client()
        all_headers = {**self._auth_headers(access_token), **(headers or {})}

        try:
            resp = await client.request(
                method, url, params=params, json=json_body, headers=all_headers
            )
        except httpx.TimeoutException as e:
            raise ProviderAPIError(
                f"{self.platform.value} request timed out after {self.timeout}s",
                retryable=True,
            ) from e
        except httpx.RequestError as e:
            raise ProviderAPIError(
                f"{self.platform.value} connection failed: {e}", retryable=True
            ) from e

        if resp.status_code in (401, 403):
            raise AuthRequiredError(
                f"{self.platform.value} rejected credential ({resp.status_code}): "
                f"{_error_message(resp)}"
            )
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderAPIError(
                f"{self.platform.value} {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
                retryable=True,
            )
        if resp.status_code >= 400:
            raise ProviderAPIError(
                f"{self.platform.value} {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise InvalidPayloadError(
                f"{self.platform.value} returned non-JSON body"
            ) from e


def _error_message(resp: httpx.Response) -> str:
    """Best-effort extraction of the provider's error text."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", error))[:200]
    if isinstance(body, dict) and "message" in body:
        return str(body["message"])[:200]
    return str(body)[:200]
