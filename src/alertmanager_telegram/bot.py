"""Application wiring.

``Bot`` builds every component from the settings, checks that
Alertmanager is reachable, then runs the update router and the webhook
HTTP server until stopped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis

from alertmanager_telegram import __version__
from alertmanager_telegram.clients.alertmanager import AlertmanagerClient
from alertmanager_telegram.clients.prometheus import PrometheusClient
from alertmanager_telegram.clients.telegram import TelegramTransport
from alertmanager_telegram.config import Settings
from alertmanager_telegram.dispatcher import MessageDispatcher
from alertmanager_telegram.menus import MenuBuilder
from alertmanager_telegram.router import UpdateRouter
from alertmanager_telegram.session import MemorySessionStore, RedisSessionStore, SessionStore
from alertmanager_telegram.templates import TemplateRenderer
from alertmanager_telegram.webhook import WebhookIngress, WebhookServer

logger = logging.getLogger(__name__)


class Bot:
    """The running bot: update router plus optional webhook server.

    Example:
        ```python
        bot = Bot(load_settings("config.yml"))
        await bot.start()
        ...
        await bot.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings,
        *,
        disable_http: bool | None = None,
        redis: Any | None = None,
    ) -> None:
        """Build all components.

        Args:
            settings: Validated settings.
            disable_http: Override ``settings.disable_http``.
            redis: Redis client for the redis session backend; created from
                ``settings.redis_url`` when omitted.
        """
        self.settings = settings
        self.disable_http = settings.disable_http if disable_http is None else disable_http
        self.started_at = datetime.now(UTC)

        timeout = settings.api_timeout.total_seconds()
        self.alertmanager = AlertmanagerClient(settings.alertmanager_url, timeout=timeout)
        self.prometheus = PrometheusClient(settings.prometheus_url, timeout=timeout)
        self.transport = TelegramTransport(
            settings.telegram_token.get_secret_value(), timeout=timeout
        )

        self._redis = None
        ttl = settings.session_ttl.total_seconds()
        self.sessions: SessionStore
        if settings.session_backend == "redis":
            self._redis = redis if redis is not None else Redis.from_url(settings.redis_url)
            self.sessions = RedisSessionStore(self._redis, ttl=ttl)
        else:
            self.sessions = MemorySessionStore(ttl=ttl)

        self.renderer = TemplateRenderer(
            time_zone=settings.time_zone,
            time_format=settings.time_format,
        )
        self.dispatcher = MessageDispatcher(
            self.transport,
            max_retries=settings.send_message_retry_count,
        )
        self.menus = MenuBuilder(
            self.alertmanager,
            self.prometheus,
            self.sessions,
            keyboard_rows=settings.keyboard_rows,
            button_prefix_ok=settings.button_prefix_ok,
            button_prefix_fail=settings.button_prefix_fail,
        )
        self.router = UpdateRouter(
            self.transport,
            self.dispatcher,
            self.sessions,
            self.menus,
            self.renderer,
            self.alertmanager,
            self.prometheus,
            users=settings.users,
            gettable_alerts_template_path=settings.gettable_alerts_template_path,
            silences_template_path=settings.silences_template_path,
            silence_duration=settings.silence_duration,
            started_at=self.started_at,
        )
        self.ingress = WebhookIngress(
            self.renderer,
            self.sessions,
            self.dispatcher,
            template_path=settings.webhook_alerts_template_path,
        )
        self.server: WebhookServer | None = None
        if not self.disable_http:
            self.server = WebhookServer(
                self.ingress,
                bind_address=settings.bind_address,
                bind_port=settings.bind_port,
            )

        self._router_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Check Alertmanager, then start polling and serving.

        Raises:
            UpstreamQueryError: If Alertmanager cannot be reached.
        """
        status = await self.alertmanager.get_status()
        logger.info(
            "Starting alertmanager-telegram-bot %s (Alertmanager %s)",
            __version__,
            status.version,
        )
        if not self.settings.users:
            logger.warning("No users configured, every message will be rejected")

        await self.sessions.start()
        if self.server:
            await self.server.start()
        self._router_task = asyncio.create_task(self.router.run())

    async def stop(self) -> None:
        """Stop polling, drain the HTTP server and release resources."""
        self.router.stop()
        if self._router_task:
            self._router_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._router_task
            self._router_task = None

        if self.server:
            await self.server.stop()
        await self.sessions.stop()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.info("Bot stopped")
