"""Alertmanager v2 API client."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx

from alertmanager_telegram.errors import UpstreamQueryError
from alertmanager_telegram.models import Alert, AlertmanagerStatus, Matcher, Silence, parse_timestamp

logger = logging.getLogger(__name__)

API_PATH = "/api/v2"
DEFAULT_TIMEOUT = 10.0


def _api_base_url(url: str) -> str:
    url = url.rstrip("/")
    if not url.endswith(API_PATH):
        url += API_PATH
    return url


class AlertmanagerClient:
    """Thin async client for the Alertmanager v2 REST API.

    Every failure (transport, timeout, HTTP status, undecodable body) is
    raised as ``UpstreamQueryError``; nothing is retried.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Alertmanager URL; ``/api/v2`` is appended when missing.
            timeout: Per-call timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = _api_base_url(base_url)
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            raise UpstreamQueryError(f"alertmanager {method} {path} timed out") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamQueryError(
                f"alertmanager {method} {path} returned {e.response.status_code}: "
                f"{e.response.text.strip()}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamQueryError(f"alertmanager {method} {path} failed: {e}") from e
        except ValueError as e:
            raise UpstreamQueryError(f"alertmanager {method} {path} returned invalid JSON") from e

    async def get_alerts(self, filters: Sequence[str] = ()) -> list[Alert]:
        """Fetch active alerts.

        Args:
            filters: Label matchers such as ``job=node``.
        """
        params: dict[str, Any] = {}
        if filters:
            params["filter"] = list(filters)
        payload = await self._request("GET", "/alerts", params=params)
        try:
            return [Alert.from_api(a) for a in payload]
        except (TypeError, ValueError, AttributeError) as e:
            raise UpstreamQueryError(f"unexpected alerts payload: {e}") from e

    async def get_status(self) -> AlertmanagerStatus:
        """Fetch version and uptime."""
        payload = await self._request("GET", "/status")
        try:
            uptime = parse_timestamp(payload["uptime"])
            if uptime is None:
                raise ValueError("empty uptime")
            return AlertmanagerStatus(
                version=str(payload["versionInfo"]["version"]),
                uptime=uptime,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamQueryError(f"unexpected status payload: {e}") from e

    async def get_silences(self) -> list[Silence]:
        """Fetch all silences, whatever their state."""
        payload = await self._request("GET", "/silences")
        try:
            return [Silence.from_api(s) for s in payload]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamQueryError(f"unexpected silences payload: {e}") from e

    async def post_silence(
        self,
        matchers: Sequence[Matcher],
        starts_at: datetime,
        ends_at: datetime,
        *,
        comment: str,
        created_by: str,
    ) -> str:
        """Create a silence and return its identifier."""
        body = {
            "matchers": [m.to_dict() for m in matchers],
            "startsAt": starts_at.isoformat(),
            "endsAt": ends_at.isoformat(),
            "comment": comment,
            "createdBy": created_by,
        }
        payload = await self._request("POST", "/silences", json=body)
        try:
            silence_id = str(payload["silenceID"])
        except (KeyError, TypeError) as e:
            raise UpstreamQueryError(f"unexpected silence response: {payload!r}") from e

        logger.info("Created silence %s for %s", silence_id, [m.to_dict() for m in matchers])
        return silence_id
