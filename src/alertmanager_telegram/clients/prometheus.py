"""Prometheus HTTP API client."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from alertmanager_telegram.errors import UpstreamQueryError
from alertmanager_telegram.models import BuildInfo, RuntimeInfo, Target, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class PrometheusClient:
    """Thin async client for the Prometheus v1 HTTP API.

    Responses are unwrapped from the ``{"status": ..., "data": ...}``
    envelope; error envelopes and transport failures raise
    ``UpstreamQueryError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(path, params=params)
                envelope = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamQueryError(f"prometheus GET {path} timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamQueryError(f"prometheus GET {path} failed: {e}") from e
        except ValueError as e:
            raise UpstreamQueryError(
                f"prometheus GET {path} returned {response.status_code} with invalid JSON"
            ) from e

        if not isinstance(envelope, dict) or envelope.get("status") != "success":
            error = envelope.get("error") if isinstance(envelope, dict) else envelope
            raise UpstreamQueryError(f"prometheus GET {path} failed: {error}")
        return envelope.get("data")

    async def label_values(self, label: str, start: datetime, end: datetime) -> list[str]:
        """Fetch the distinct values of a label seen within a time range."""
        data = await self._get(
            f"/api/v1/label/{label}/values",
            params={"start": start.timestamp(), "end": end.timestamp()},
        )
        return [str(v) for v in data or []]

    async def targets(self) -> list[Target]:
        """Fetch the active scrape targets."""
        data = await self._get("/api/v1/targets", params={"state": "active"})
        try:
            return [Target.from_api(t) for t in data.get("activeTargets") or []]
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamQueryError(f"unexpected targets payload: {e}") from e

    async def build_info(self) -> BuildInfo:
        data = await self._get("/api/v1/status/buildinfo")
        try:
            return BuildInfo(version=str(data["version"]))
        except (KeyError, TypeError) as e:
            raise UpstreamQueryError(f"unexpected buildinfo payload: {e}") from e

    async def runtime_info(self) -> RuntimeInfo:
        data = await self._get("/api/v1/status/runtimeinfo")
        try:
            start_time = parse_timestamp(data["startTime"])
            if start_time is None:
                raise ValueError("empty startTime")
            return RuntimeInfo(start_time=start_time)
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamQueryError(f"unexpected runtimeinfo payload: {e}") from e
