"""Alertmanager webhook ingress and HTTP server.

Alertmanager is configured with a webhook receiver pointing at
``/alerts?chatid=<chat id>``. Each notification is rendered (or forwarded
verbatim when no template is configured) and sent to that chat. Firing
groups grouped by ``instance`` and ``alertname`` get a "Silence" button.

The same server exposes ``/health`` and ``/metrics``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web
from prometheus_client import Counter, generate_latest

from alertmanager_telegram.errors import DeliveryError, PayloadError, TemplateError
from alertmanager_telegram.models import (
    PARSE_MODE_HTML,
    AlertGroup,
    CallbackIntent,
    CallbackKind,
    InlineButton,
    Keyboard,
    MessagePlan,
    RenderView,
)

if TYPE_CHECKING:
    from alertmanager_telegram.dispatcher import MessageDispatcher
    from alertmanager_telegram.session import SessionStore
    from alertmanager_telegram.templates import TemplateRenderer

logger = logging.getLogger(__name__)

SILENCE_BUTTON_TEXT = "Silence"
TEMPLATE_ERROR_PREFIX = "Error rendering alert: "
DEFAULT_BIND_ADDRESS = "0.0.0.0"
DEFAULT_BIND_PORT = 8088

WEBHOOKS_RECEIVED = Counter(
    "alertbot_webhooks_total",
    "Alertmanager webhooks received by outcome",
    ["outcome"],
)


class WebhookIngress:
    """Turns Alertmanager webhook bodies into chat messages."""

    def __init__(
        self,
        renderer: TemplateRenderer,
        sessions: SessionStore,
        dispatcher: MessageDispatcher,
        *,
        template_path: str | None = None,
    ) -> None:
        """Initialize the ingress.

        Args:
            renderer: Template renderer.
            sessions: Store for the silence button intent.
            dispatcher: Outbound message path.
            template_path: Webhook template; raw JSON is forwarded when unset.
        """
        self.renderer = renderer
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.template_path = template_path

    @staticmethod
    def decode(raw: bytes | str) -> AlertGroup:
        """Decode a webhook body.

        Raises:
            PayloadError: If the body is not a valid webhook payload.
        """
        try:
            return AlertGroup.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            raise PayloadError(f"cannot decode webhook payload: {e}") from e

    async def silence_keyboard(self, group: AlertGroup) -> Keyboard | None:
        """Build the "Silence" keyboard for a firing group, if it qualifies."""
        instance = group.group_labels.get("instance", "")
        alertname = group.group_labels.get("alertname", "")
        if not group.is_firing or not instance or not alertname:
            return None

        token = await self.sessions.put(
            CallbackIntent(CallbackKind.SILENCE, {"instance": instance, "alertname": alertname})
        )
        keyboard = Keyboard()
        keyboard.add_row(InlineButton(text=SILENCE_BUTTON_TEXT, token=token))
        return keyboard

    async def _report_template_error(self, chat_id: int, error: TemplateError) -> None:
        try:
            await self.dispatcher.dispatch(
                MessagePlan.send(chat_id, f"{TEMPLATE_ERROR_PREFIX}{error}")
            )
        except DeliveryError as e:
            logger.error("Error reporting template failure to chat %s: %s", chat_id, e)

    async def ingest(self, raw: bytes | str, chat_id: int) -> list[int]:
        """Render a webhook body and deliver it to ``chat_id``.

        Args:
            raw: Request body as received.
            chat_id: Target chat.

        Returns:
            Ids of the sent messages.

        Raises:
            PayloadError: If the body cannot be decoded.
            TemplateError: If the webhook template fails; the chat is told
                about the failure before it is raised.
            DeliveryError: If the message cannot be sent.
        """
        group = self.decode(raw)
        logger.info(
            "Webhook for chat %s: %s group with %d alerts %s",
            chat_id,
            group.status,
            len(group.alerts),
            group.group_labels,
        )

        if self.template_path:
            try:
                text = self.renderer.render(RenderView.alert_group(group), self.template_path)
            except TemplateError as e:
                await self._report_template_error(chat_id, e)
                raise
            parse_mode: str | None = PARSE_MODE_HTML
        else:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            parse_mode = None

        keyboard = await self.silence_keyboard(group)
        return await self.dispatcher.dispatch(
            MessagePlan.send(chat_id, text, parse_mode=parse_mode, reply_markup=keyboard)
        )


class WebhookServer:
    """aiohttp server hosting the webhook, health and metrics endpoints.

    Example:
        ```python
        server = WebhookServer(ingress, bind_address="0.0.0.0", bind_port=8088)
        await server.start()
        ...
        await server.stop()
        ```
    """

    def __init__(
        self,
        ingress: WebhookIngress,
        *,
        bind_address: str = DEFAULT_BIND_ADDRESS,
        bind_port: int = DEFAULT_BIND_PORT,
    ) -> None:
        self.ingress = ingress
        self.bind_address = bind_address
        self.bind_port = bind_port

        self._start_time = time.time()
        self._runner: web.AppRunner | None = None

    async def _handle_alerts(self, request: web.Request) -> web.Response:
        """Handle /alerts?chatid=<int>."""
        logger.debug("New webhook connection from %s", request.remote)

        if request.method != "POST":
            logger.warning("Wrong HTTP method %s for %s", request.method, request.path)
            WEBHOOKS_RECEIVED.labels(outcome="bad_method").inc()
            raise web.HTTPMethodNotAllowed(request.method, ["POST"])

        try:
            chat_id = int(request.query.get("chatid", ""))
        except ValueError:
            logger.warning("Wrong chatid %r", request.query.get("chatid"))
            WEBHOOKS_RECEIVED.labels(outcome="bad_request").inc()
            return web.json_response({"error": "invalid chatid"}, status=400)

        body = await request.read()
        logger.debug("Webhook body: %s", body.decode("utf-8", errors="replace"))

        try:
            await self.ingress.ingest(body, chat_id)
        except PayloadError as e:
            logger.warning("%s", e)
            WEBHOOKS_RECEIVED.labels(outcome="bad_request").inc()
            return web.json_response({"error": str(e)}, status=400)
        except TemplateError as e:
            logger.error("Error rendering webhook for chat %s: %s", chat_id, e)
            WEBHOOKS_RECEIVED.labels(outcome="template_error").inc()
            return web.json_response({"error": str(e)}, status=500)
        except DeliveryError as e:
            logger.error("Error sending webhook to chat %s: %s", chat_id, e)
            WEBHOOKS_RECEIVED.labels(outcome="delivery_error").inc()
            return web.json_response({"error": str(e)}, status=502)

        WEBHOOKS_RECEIVED.labels(outcome="ok").inc()
        return web.json_response({"status": "ok"})

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Handle /health endpoint."""
        body: dict[str, Any] = {
            "status": "ok",
            "uptime_seconds": round(time.time() - self._start_time, 3),
        }
        return web.json_response(body)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle /metrics endpoint (Prometheus format)."""
        return web.Response(
            body=generate_latest(),
            content_type="text/plain",
            charset="utf-8",
        )

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_route("*", "/alerts", self._handle_alerts)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self) -> None:
        """Start listening."""
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._start_time = time.time()
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.bind_address, self.bind_port)
        await site.start()

        logger.info("HTTP server listening on %s:%d", self.bind_address, self.bind_port)

    async def stop(self) -> None:
        """Stop listening; in-flight requests are allowed to finish."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")
