"""Inline keyboard menus over Prometheus jobs and targets."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from alertmanager_telegram.models import (
    CallbackIntent,
    CallbackKind,
    InlineButton,
    Keyboard,
    Target,
)

if TYPE_CHECKING:
    from alertmanager_telegram.clients.alertmanager import AlertmanagerClient
    from alertmanager_telegram.clients.prometheus import PrometheusClient
    from alertmanager_telegram.session import SessionStore

logger = logging.getLogger(__name__)

JOBS_LOOKBACK = timedelta(minutes=1)
CLOSE_MENU_TEXT = "Close menu"
GO_BACK_TEXT = "Go back"


class MenuBuilder:
    """Builds job and target keyboards.

    Each button is labelled with the OK or FAIL prefix depending on whether
    Alertmanager reports active alerts for it, and carries a session token
    for the intent that clicking it runs.
    """

    def __init__(
        self,
        alertmanager: AlertmanagerClient,
        prometheus: PrometheusClient,
        sessions: SessionStore,
        *,
        keyboard_rows: int = 2,
        button_prefix_ok: str = "",
        button_prefix_fail: str = "",
    ) -> None:
        """Initialize the builder.

        Args:
            alertmanager: Client used for per-item alert lookups.
            prometheus: Client used for the job/target inventory.
            sessions: Store holding the callback intents.
            keyboard_rows: Maximum number of buttons per keyboard row.
            button_prefix_ok: Label prefix for items without active alerts.
            button_prefix_fail: Label prefix for items with active alerts.
        """
        if keyboard_rows < 1:
            raise ValueError("keyboard_rows must be at least 1")
        self.alertmanager = alertmanager
        self.prometheus = prometheus
        self.sessions = sessions
        self.keyboard_rows = keyboard_rows
        self.button_prefix_ok = button_prefix_ok
        self.button_prefix_fail = button_prefix_fail

    async def button(self, text: str, kind: CallbackKind, **params: str) -> InlineButton:
        """Create a button whose token resolves to ``kind`` with ``params``."""
        token = await self.sessions.put(CallbackIntent(kind, params))
        return InlineButton(text=text, token=token)

    async def back_button(self, kind: CallbackKind, **params: str) -> InlineButton:
        """Create the "Go back" button used below sub-menus."""
        return await self.button(GO_BACK_TEXT, kind, **params)

    async def _has_alerts(self, label: str, value: str) -> bool:
        alerts = await self.alertmanager.get_alerts([f"{label}={value}"])
        return bool(alerts)

    async def _alert_states(self, label: str, values: Sequence[str]) -> list[bool | None]:
        """Look up alert presence for every value concurrently.

        Returns ``None`` for values whose lookup failed.
        """
        results = await asyncio.gather(
            *(self._has_alerts(label, v) for v in values),
            return_exceptions=True,
        )
        states: list[bool | None] = []
        for value, result in zip(values, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Failed to get alerts for %s=%s: %s", label, value, result)
                states.append(None)
            else:
                states.append(result)
        return states

    def _label(self, name: str, has_alerts: bool) -> str:
        prefix = self.button_prefix_fail if has_alerts else self.button_prefix_ok
        return f"{prefix}{name}"

    def _layout(self, buttons: Sequence[InlineButton]) -> Keyboard:
        keyboard = Keyboard()
        for i in range(0, len(buttons), self.keyboard_rows):
            keyboard.add_row(*buttons[i : i + self.keyboard_rows])
        return keyboard

    async def build_jobs_menu(self) -> Keyboard:
        """Build the keyboard listing the jobs seen during the last minute.

        Raises:
            UpstreamQueryError: If the job inventory cannot be fetched.
        """
        end = datetime.now(UTC)
        jobs = await self.prometheus.label_values("job", end - JOBS_LOOKBACK, end)
        states = await self._alert_states("job", jobs)

        buttons = []
        for job, has_alerts in zip(jobs, states, strict=True):
            if has_alerts is None:
                continue
            buttons.append(
                await self.button(self._label(job, has_alerts), CallbackKind.JOB, job_name=job)
            )

        keyboard = self._layout(buttons)
        keyboard.add_row(await self.button(CLOSE_MENU_TEXT, CallbackKind.CLOSE))
        logger.debug("Built jobs menu with %d jobs", len(buttons))
        return keyboard

    async def build_targets_menu(self, job_name: str) -> Keyboard:
        """Build the keyboard listing the active targets of ``job_name``.

        Raises:
            UpstreamQueryError: If the target inventory cannot be fetched.
        """
        targets: list[Target] = []
        for target in await self.prometheus.targets():
            if not target.job or not target.instance:
                logger.warning("Skipping target without job/instance labels: %s", target.labels)
                continue
            if target.job == job_name:
                targets.append(target)
        targets.sort(key=lambda t: t.instance)

        instances = [t.instance for t in targets]
        states = await self._alert_states("instance", instances)

        buttons = []
        for instance, has_alerts in zip(instances, states, strict=True):
            if has_alerts is None:
                continue
            buttons.append(
                await self.button(
                    self._label(instance, has_alerts),
                    CallbackKind.TARGET,
                    job_name=job_name,
                    target_name=instance,
                )
            )

        logger.debug("Built targets menu for %s with %d targets", job_name, len(buttons))
        return self._layout(buttons)
