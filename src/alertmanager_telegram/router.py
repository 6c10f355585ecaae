"""Inbound Telegram update handling.

The router long-polls the Bot API and handles updates strictly one at a
time in arrival order. Messages pass the allow-list gate and are matched
against the command table; callback queries are resolved through the
session store and run the stored intent.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter

from alertmanager_telegram import PROGRAM_NAME, __version__
from alertmanager_telegram.errors import (
    ArgumentError,
    AuthRejectedError,
    DeliveryError,
    SessionTokenNotFoundError,
    TemplateError,
    UpstreamQueryError,
)
from alertmanager_telegram.models import (
    PARSE_MODE_HTML,
    CallbackIntent,
    CallbackKind,
    Keyboard,
    Matcher,
    MessagePlan,
    RenderView,
)

if TYPE_CHECKING:
    from alertmanager_telegram.clients.alertmanager import AlertmanagerClient
    from alertmanager_telegram.clients.prometheus import PrometheusClient
    from alertmanager_telegram.clients.telegram import (
        CallbackQuery,
        Message,
        TelegramTransport,
        Update,
        User,
    )
    from alertmanager_telegram.dispatcher import MessageDispatcher
    from alertmanager_telegram.menus import MenuBuilder
    from alertmanager_telegram.session import SessionStore
    from alertmanager_telegram.templates import TemplateRenderer

logger = logging.getLogger(__name__)

HELP_TEXT = """
Available commands:
/status - show alertmanager & bot status
/alerts - show active alerts
/targets - show alerts per target
/silences - show active silences
"""

UNAUTHORIZED_TEXT = "I can't talk to you, sorry."
NOT_A_COMMAND_TEXT = "Message doesn't look like a command.\n" + HELP_TEXT
UNKNOWN_COMMAND_TEXT = "Unknown command.\n" + HELP_TEXT
TOO_MANY_ARGUMENTS_TEXT = "Too many arguments."
UNKNOWN_ARGUMENT_TEXT = "Unknown argument."
NO_ALERTS_TEXT = "No active alerts found."
NO_SILENCES_TEXT = "No active silences found."
SELECT_JOB_TEXT = "Select job:"
SELECT_TARGET_TEXT = "Select target:"

JSON_ARGUMENT = "json"
DEFAULT_POLL_TIMEOUT = 30
POLL_ERROR_DELAY = 5.0

UPDATES_PROCESSED = Counter(
    "alertbot_updates_total",
    "Telegram updates processed by type and outcome",
    ["update_type", "outcome"],
)


def format_uptime(since: datetime, now: datetime | None = None) -> str:
    """Format the time elapsed since ``since`` as e.g. ``2d3h4m5s``."""
    now = now or datetime.now(UTC)
    if since.tzinfo is None:
        since = since.replace(tzinfo=UTC)
    total = max(0, int((now - since).total_seconds()))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    text = f"{hours}h{minutes}m{seconds}s"
    return f"{days}d{text}" if days else text


def parse_output_arguments(arguments: str) -> bool:
    """Validate ``/alerts`` and ``/silences`` arguments.

    Returns:
        True if JSON output was requested.

    Raises:
        ArgumentError: On more than one argument or an unknown one.
    """
    parts = arguments.split()
    if len(parts) > 1:
        raise ArgumentError(TOO_MANY_ARGUMENTS_TEXT)
    if parts and parts[0] != JSON_ARGUMENT:
        raise ArgumentError(UNKNOWN_ARGUMENT_TEXT)
    return bool(parts)


def _json_dump(items: Sequence[Any]) -> str:
    return json.dumps([item.raw for item in items], indent=2, ensure_ascii=False)


class UpdateRouter:
    """Routes Telegram updates to command and callback handlers."""

    def __init__(
        self,
        transport: TelegramTransport,
        dispatcher: MessageDispatcher,
        sessions: SessionStore,
        menus: MenuBuilder,
        renderer: TemplateRenderer,
        alertmanager: AlertmanagerClient,
        prometheus: PrometheusClient,
        *,
        users: Sequence[str] = (),
        gettable_alerts_template_path: str | None = None,
        silences_template_path: str | None = None,
        silence_duration: timedelta = timedelta(hours=1),
        started_at: datetime | None = None,
        poll_timeout: int = DEFAULT_POLL_TIMEOUT,
    ) -> None:
        """Initialize the router.

        Args:
            transport: Bot API transport used for long polling.
            dispatcher: Outbound message path.
            sessions: Store resolving callback tokens.
            menus: Job and target keyboard builder.
            renderer: Template renderer.
            alertmanager: Alertmanager client.
            prometheus: Prometheus client.
            users: Allow-list of usernames, full names or numeric ids.
            gettable_alerts_template_path: Template for alert lists.
            silences_template_path: Template for silence lists.
            silence_duration: Length of silences created from buttons.
            started_at: Bot start time reported by ``/status``.
            poll_timeout: Long polling timeout in seconds.
        """
        self.transport = transport
        self.dispatcher = dispatcher
        self.sessions = sessions
        self.menus = menus
        self.renderer = renderer
        self.alertmanager = alertmanager
        self.prometheus = prometheus
        self.users = frozenset(users)
        self.gettable_alerts_template_path = gettable_alerts_template_path
        self.silences_template_path = silences_template_path
        self.silence_duration = silence_duration
        self.started_at = started_at or datetime.now(UTC)
        self.poll_timeout = poll_timeout

        self._offset: int | None = None
        self._running = False

        self._commands: dict[str, Callable[[Message], Awaitable[None]]] = {
            "help": self._cmd_help,
            "start": self._cmd_help,
            "alerts": self._cmd_alerts,
            "silences": self._cmd_silences,
            "targets": self._cmd_targets,
            "status": self._cmd_status,
        }
        self._callbacks: dict[
            CallbackKind, Callable[[CallbackQuery, Message, CallbackIntent], Awaitable[None]]
        ] = {
            CallbackKind.JOB: self._cb_job,
            CallbackKind.TARGET: self._cb_target,
            CallbackKind.JOBS: self._cb_jobs,
            CallbackKind.TARGETS: self._cb_targets,
            CallbackKind.CLOSE: self._cb_close,
            CallbackKind.SILENCE: self._cb_silence,
        }

    # ========================================================================
    # Polling loop
    # ========================================================================

    async def run(self) -> None:
        """Poll for updates until stopped or cancelled."""
        self._running = True
        logger.info("Polling Telegram for updates")
        while self._running:
            try:
                updates = await self.transport.get_updates(
                    self._offset, poll_timeout=self.poll_timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error getting updates: %s", e)
                await asyncio.sleep(POLL_ERROR_DELAY)
                continue

            for update in updates:
                self._offset = update.update_id + 1
                await self.handle_update(update)

    def stop(self) -> None:
        """Stop polling after the current batch."""
        self._running = False

    async def handle_update(self, update: Update) -> None:
        """Handle a single update; errors are logged, never raised."""
        if update.message is not None:
            update_type, handler = "message", self.handle_message(update.message)
        elif update.edited_message is not None:
            update_type, handler = "edited_message", self.handle_message(update.edited_message)
        elif update.callback_query is not None:
            update_type, handler = "callback_query", self.handle_callback(update.callback_query)
        else:
            logger.warning("Cannot parse update %s", update.update_id)
            UPDATES_PROCESSED.labels(update_type="unknown", outcome="skipped").inc()
            return

        try:
            await handler
        except DeliveryError as e:
            logger.error("Error delivering reply to update %s: %s", update.update_id, e)
            UPDATES_PROCESSED.labels(update_type=update_type, outcome="failed").inc()
        except Exception:
            logger.exception("Error processing update %s", update.update_id)
            UPDATES_PROCESSED.labels(update_type=update_type, outcome="failed").inc()
        else:
            UPDATES_PROCESSED.labels(update_type=update_type, outcome="ok").inc()

    # ========================================================================
    # Messages
    # ========================================================================

    def is_authorized(self, user: User | None) -> bool:
        """Check a sender against the allow-list."""
        if user is None:
            return False
        full_name = " ".join(p for p in (user.first_name, user.last_name) if p)
        candidates = {user.username, full_name, str(user.id)} - {""}
        return not self.users.isdisjoint(candidates)

    def _authorize(self, message: Message) -> None:
        if not self.is_authorized(message.from_user):
            sender = message.from_user.display_name if message.from_user else "unknown"
            raise AuthRejectedError(f"{sender} is not allowed to talk to the bot")

    async def _reply(
        self,
        message: Message,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: Keyboard | None = None,
    ) -> None:
        await self.dispatcher.dispatch(
            MessagePlan.send(
                message.chat_id, text, parse_mode=parse_mode, reply_markup=reply_markup
            )
        )

    async def handle_message(self, message: Message) -> None:
        """Handle a new or edited message."""
        sender = message.from_user.display_name if message.from_user else "unknown"
        logger.info("New message from %s: %s", sender, message.text)

        try:
            self._authorize(message)
        except AuthRejectedError as e:
            logger.warning("%s", e)
            await self._reply(message, UNAUTHORIZED_TEXT)
            return

        if not message.is_command:
            await self._reply(message, NOT_A_COMMAND_TEXT)
            return

        handler = self._commands.get(message.command)
        if handler is None:
            await self._reply(message, UNKNOWN_COMMAND_TEXT)
            return

        try:
            await handler(message)
        except ArgumentError as e:
            await self._reply(message, str(e))
        except (UpstreamQueryError, TemplateError) as e:
            logger.error("Error handling /%s: %s", message.command, e)
            await self._reply(message, f"Error: {e}")

    async def _cmd_help(self, message: Message) -> None:
        text = f"Telegram Bot for Alertmanager\nVersion <b>{__version__}</b>\n{HELP_TEXT}"
        await self._reply(message, text, parse_mode=PARSE_MODE_HTML)

    async def _cmd_alerts(self, message: Message) -> None:
        as_json = parse_output_arguments(message.command_arguments)

        alerts = await self.alertmanager.get_alerts()
        if not alerts:
            await self._reply(message, NO_ALERTS_TEXT)
            return

        if as_json or not self.gettable_alerts_template_path:
            await self._reply(message, _json_dump(alerts))
            return

        text = self.renderer.render(RenderView.alerts(alerts), self.gettable_alerts_template_path)
        await self._reply(message, text, parse_mode=PARSE_MODE_HTML)

    async def _cmd_silences(self, message: Message) -> None:
        as_json = parse_output_arguments(message.command_arguments)

        silences = [s for s in await self.alertmanager.get_silences() if s.is_active]
        if not silences:
            await self._reply(message, NO_SILENCES_TEXT)
            return

        if as_json or not self.silences_template_path:
            await self._reply(message, _json_dump(silences))
            return

        text = self.renderer.render(RenderView.silences(silences), self.silences_template_path)
        await self._reply(message, text, parse_mode=PARSE_MODE_HTML)

    async def _cmd_targets(self, message: Message) -> None:
        keyboard = await self.menus.build_jobs_menu()
        await self._reply(message, SELECT_JOB_TEXT, reply_markup=keyboard)

    async def _cmd_status(self, message: Message) -> None:
        # the first failure cancels the remaining lookups
        try:
            async with asyncio.TaskGroup() as group:
                am_task = group.create_task(self.alertmanager.get_status())
                build_task = group.create_task(self.prometheus.build_info())
                runtime_task = group.create_task(self.prometheus.runtime_info())
        except ExceptionGroup as eg:
            raise eg.exceptions[0] from None
        am_status, build_info, runtime_info = (
            am_task.result(),
            build_task.result(),
            runtime_task.result(),
        )
        text = (
            "Alertmanager\n"
            f"Version: <b>{html.escape(am_status.version)}</b>\n"
            f"Uptime: <b>{format_uptime(am_status.uptime)}</b>\n"
            "\n"
            "Prometheus\n"
            f"Version: <b>{html.escape(build_info.version)}</b>\n"
            f"Uptime: <b>{format_uptime(runtime_info.start_time)}</b>\n"
            "\n"
            "Bot\n"
            f"Version: <b>{__version__}</b>\n"
            f"Uptime: <b>{format_uptime(self.started_at)}</b>"
        )
        await self._reply(message, text, parse_mode=PARSE_MODE_HTML)

    # ========================================================================
    # Callbacks
    # ========================================================================

    async def handle_callback(self, query: CallbackQuery) -> None:
        """Resolve a callback token and run the stored intent.

        Unknown, consumed and expired tokens are dropped silently. Clicks
        from senders outside the allow-list are dropped without consuming
        the token.
        """
        if not self.is_authorized(query.from_user):
            logger.warning(
                "Dropping callback from %s: not allowed to talk to the bot",
                query.from_user.display_name,
            )
            return

        try:
            intent = await self.sessions.take(query.data)
        except SessionTokenNotFoundError as e:
            logger.debug("Dropping callback from %s: %s", query.from_user.display_name, e)
            return

        logger.info(
            "New callback from %s: %s", query.from_user.display_name, json.dumps(intent.to_dict())
        )
        if query.message is None:
            logger.warning("Callback %s has no message attached, ignoring", query.id)
            return

        try:
            await self._callbacks[intent.kind](query, query.message, intent)
        except (UpstreamQueryError, TemplateError) as e:
            logger.error("Error handling %s callback: %s", intent.kind.value, e)
            await self._reply(query.message, f"Error: {e}")

    async def _targets_menu_with_back(self, job_name: str) -> Keyboard:
        keyboard = await self.menus.build_targets_menu(job_name)
        keyboard.add_row(await self.menus.back_button(CallbackKind.JOBS))
        return keyboard

    async def _cb_job(self, query: CallbackQuery, message: Message, intent: CallbackIntent) -> None:
        keyboard = await self._targets_menu_with_back(intent.params["job_name"])

        if intent.params.get("leave_last_message") == "yes":
            await self.dispatcher.dispatch(
                MessagePlan.strip_markup(message.chat_id, message.message_id)
            )
            await self._reply(message, SELECT_TARGET_TEXT, reply_markup=keyboard)
            return

        await self.dispatcher.dispatch(
            MessagePlan.edit(
                message.chat_id, message.message_id, SELECT_TARGET_TEXT, reply_markup=keyboard
            )
        )

    async def _cb_target(
        self, query: CallbackQuery, message: Message, intent: CallbackIntent
    ) -> None:
        job_name = intent.params["job_name"]
        instance = intent.params["target_name"]

        alerts = await self.alertmanager.get_alerts([f"instance={instance}"])
        parse_mode: str | None = None
        if not alerts:
            text = f"No active alerts for {instance}"
        elif self.gettable_alerts_template_path:
            text = self.renderer.render(
                RenderView.alerts(alerts), self.gettable_alerts_template_path
            )
            parse_mode = PARSE_MODE_HTML
        else:
            text = _json_dump(alerts)

        keyboard = Keyboard()
        keyboard.add_row(
            await self.menus.back_button(
                CallbackKind.JOB, job_name=job_name, leave_last_message="yes"
            )
        )
        await self.dispatcher.dispatch(
            MessagePlan.edit(
                message.chat_id,
                message.message_id,
                text,
                parse_mode=parse_mode,
                reply_markup=keyboard,
            )
        )

    async def _cb_jobs(self, query: CallbackQuery, message: Message, intent: CallbackIntent) -> None:
        keyboard = await self.menus.build_jobs_menu()
        await self.dispatcher.dispatch(
            MessagePlan.edit(
                message.chat_id, message.message_id, SELECT_JOB_TEXT, reply_markup=keyboard
            )
        )

    async def _cb_targets(
        self, query: CallbackQuery, message: Message, intent: CallbackIntent
    ) -> None:
        keyboard = await self._targets_menu_with_back(intent.params["job_name"])
        await self.dispatcher.dispatch(
            MessagePlan.edit(
                message.chat_id, message.message_id, SELECT_TARGET_TEXT, reply_markup=keyboard
            )
        )

    async def _cb_close(self, query: CallbackQuery, message: Message, intent: CallbackIntent) -> None:
        await self.dispatcher.dispatch(MessagePlan.delete(message.chat_id, message.message_id))

    async def _cb_silence(
        self, query: CallbackQuery, message: Message, intent: CallbackIntent
    ) -> None:
        instance = intent.params["instance"]
        alertname = intent.params["alertname"]
        starts_at = datetime.now(UTC)
        ends_at = starts_at + self.silence_duration

        silence_id = await self.alertmanager.post_silence(
            [Matcher("instance", instance), Matcher("alertname", alertname)],
            starts_at,
            ends_at,
            comment=f"Silenced via Telegram by {query.from_user.display_name}",
            created_by=f"{PROGRAM_NAME} version {__version__}",
        )

        await self.dispatcher.dispatch(
            MessagePlan.strip_markup(message.chat_id, message.message_id)
        )
        text = (
            "Created new silence:\n"
            f"ID: <b>{html.escape(silence_id)}</b>\n"
            f"StartsAt: <b>{self.renderer.format_date(starts_at)}</b>\n"
            f"EndsAt: <b>{self.renderer.format_date(ends_at)}</b>\n"
            f'Matchers: "[{{instance="{html.escape(instance)}"}},'
            f'{{alertname="{html.escape(alertname)}"}}]"'
        )
        await self._reply(message, text, parse_mode=PARSE_MODE_HTML)
