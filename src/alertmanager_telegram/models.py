"""Data models shared by the bot components.

Alerts, silences, targets and alert groups are read-only projections of
the Alertmanager and Prometheus payloads. Each keeps the decoded JSON in
``raw`` so the plain JSON output path can echo what the upstream service
returned.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

# Alertmanager and Prometheus emit nanosecond precision timestamps
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp as emitted by Alertmanager/Prometheus."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = _FRACTION_RE.sub(r"\1", str(value))
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _str_map(value: Any) -> dict[str, str]:
    if not value:
        return {}
    return {str(k): str(v) for k, v in dict(value).items()}


# ============================================================================
# Callback intents
# ============================================================================


class CallbackKind(Enum):
    """Menu action stored behind a callback token."""

    JOB = "job"
    TARGET = "target"
    JOBS = "jobs"
    TARGETS = "targets"
    CLOSE = "close"
    SILENCE = "silence"


REQUIRED_PARAMS: dict[CallbackKind, tuple[str, ...]] = {
    CallbackKind.JOB: ("job_name",),
    CallbackKind.TARGET: ("job_name", "target_name"),
    CallbackKind.JOBS: (),
    CallbackKind.TARGETS: ("job_name",),
    CallbackKind.CLOSE: (),
    CallbackKind.SILENCE: ("instance", "alertname"),
}


@dataclass(frozen=True)
class CallbackIntent:
    """A menu action plus the parameters it needs.

    Attributes:
        kind: The action to run when the button is clicked.
        params: String parameters; the required keys depend on ``kind``.
    """

    kind: CallbackKind
    params: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        missing = [key for key in REQUIRED_PARAMS[self.kind] if not self.params.get(key)]
        if missing:
            raise ValueError(
                f"callback intent '{self.kind.value}' is missing params: {', '.join(missing)}"
            )
        object.__setattr__(self, "params", dict(self.params))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON compatible dictionary."""
        return {"type": self.kind.value, "data": dict(self.params)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CallbackIntent:
        """Deserialize from a dictionary produced by ``to_dict``."""
        return cls(kind=CallbackKind(data["type"]), params=_str_map(data.get("data")))


# ============================================================================
# Alertmanager / Prometheus projections
# ============================================================================


@dataclass(frozen=True)
class Alert:
    """A single alert, either fetched from the API or received by webhook."""

    labels: Mapping[str, str]
    annotations: Mapping[str, str]
    status: str
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    updated_at: datetime | None = None
    fingerprint: str = ""
    generator_url: str = ""
    state: str = ""
    silenced_by: tuple[str, ...] = ()
    inhibited_by: tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Alert:
        """Create an Alert from an Alertmanager v2 ``GettableAlert``.

        The API only returns alerts that have not been resolved, so the
        status is always ``firing``; the Alertmanager processing state
        (active, suppressed, unprocessed) is kept in ``state``.
        """
        status = data.get("status") or {}
        return cls(
            labels=_str_map(data.get("labels")),
            annotations=_str_map(data.get("annotations")),
            status="firing",
            starts_at=parse_timestamp(data.get("startsAt")),
            ends_at=parse_timestamp(data.get("endsAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            fingerprint=str(data.get("fingerprint", "")),
            generator_url=str(data.get("generatorURL", "")),
            state=str(status.get("state", "")),
            silenced_by=tuple(status.get("silencedBy") or ()),
            inhibited_by=tuple(status.get("inhibitedBy") or ()),
            raw=dict(data),
        )

    @classmethod
    def from_webhook(cls, data: Mapping[str, Any]) -> Alert:
        """Create an Alert from one entry of a webhook payload."""
        return cls(
            labels=_str_map(data.get("labels")),
            annotations=_str_map(data.get("annotations")),
            status=str(data.get("status", "")),
            starts_at=parse_timestamp(data.get("startsAt")),
            ends_at=parse_timestamp(data.get("endsAt")),
            fingerprint=str(data.get("fingerprint", "")),
            generator_url=str(data.get("generatorURL", "")),
            raw=dict(data),
        )


@dataclass(frozen=True)
class Matcher:
    """A silence label matcher."""

    name: str
    value: str
    is_regex: bool = False
    is_equal: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the Alertmanager v2 matcher shape."""
        return {
            "name": self.name,
            "value": self.value,
            "isRegex": self.is_regex,
            "isEqual": self.is_equal,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Matcher:
        return cls(
            name=str(data["name"]),
            value=str(data["value"]),
            is_regex=bool(data.get("isRegex", False)),
            is_equal=bool(data.get("isEqual", True)),
        )


@dataclass(frozen=True)
class Silence:
    """A silence as returned by the Alertmanager v2 API."""

    id: str
    status: str
    matchers: tuple[Matcher, ...]
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    comment: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Silence:
        status = data.get("status") or {}
        return cls(
            id=str(data.get("id", "")),
            status=str(status.get("state", "")),
            matchers=tuple(Matcher.from_dict(m) for m in data.get("matchers") or ()),
            starts_at=parse_timestamp(data.get("startsAt")),
            ends_at=parse_timestamp(data.get("endsAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            created_by=str(data.get("createdBy", "")),
            comment=str(data.get("comment", "")),
            raw=dict(data),
        )


@dataclass(frozen=True)
class Target:
    """An active Prometheus scrape target."""

    labels: Mapping[str, str]
    health: str
    scrape_url: str = ""
    last_error: str = ""

    @property
    def job(self) -> str:
        return self.labels.get("job", "")

    @property
    def instance(self) -> str:
        return self.labels.get("instance", "")

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Target:
        return cls(
            labels=_str_map(data.get("labels")),
            health=str(data.get("health", "")),
            scrape_url=str(data.get("scrapeUrl", "")),
            last_error=str(data.get("lastError", "")),
        )


@dataclass(frozen=True)
class AlertGroup:
    """The alert group delivered by an Alertmanager webhook."""

    status: str
    alerts: tuple[Alert, ...]
    group_labels: Mapping[str, str]
    common_labels: Mapping[str, str] = field(default_factory=dict)
    common_annotations: Mapping[str, str] = field(default_factory=dict)
    receiver: str = ""
    external_url: str = ""
    version: str = ""
    group_key: str = ""
    truncated_alerts: int = 0
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_firing(self) -> bool:
        return self.status == "firing"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AlertGroup:
        """Create an AlertGroup from a decoded webhook body.

        Raises:
            ValueError: If the body is not a webhook payload.
        """
        if not isinstance(data, Mapping):
            raise ValueError("webhook payload must be a JSON object")
        alerts = data.get("alerts") or []
        if not isinstance(alerts, list):
            raise ValueError("webhook payload 'alerts' must be a list")
        return cls(
            status=str(data.get("status", "")),
            alerts=tuple(Alert.from_webhook(a) for a in alerts),
            group_labels=_str_map(data.get("groupLabels")),
            common_labels=_str_map(data.get("commonLabels")),
            common_annotations=_str_map(data.get("commonAnnotations")),
            receiver=str(data.get("receiver", "")),
            external_url=str(data.get("externalURL", "")),
            version=str(data.get("version", "")),
            group_key=str(data.get("groupKey", "")),
            truncated_alerts=int(data.get("truncatedAlerts") or 0),
            raw=dict(data),
        )


@dataclass(frozen=True)
class AlertmanagerStatus:
    version: str
    uptime: datetime


@dataclass(frozen=True)
class BuildInfo:
    version: str


@dataclass(frozen=True)
class RuntimeInfo:
    start_time: datetime


# ============================================================================
# Rendering
# ============================================================================

ViewKind = Literal["alerts", "silences", "alert_group"]


@dataclass(frozen=True)
class RenderView:
    """Tagged value handed to the template renderer."""

    kind: ViewKind
    data: Sequence[Alert] | Sequence[Silence] | AlertGroup

    @classmethod
    def alerts(cls, alerts: Sequence[Alert]) -> RenderView:
        return cls(kind="alerts", data=tuple(alerts))

    @classmethod
    def silences(cls, silences: Sequence[Silence]) -> RenderView:
        return cls(kind="silences", data=tuple(silences))

    @classmethod
    def alert_group(cls, group: AlertGroup) -> RenderView:
        return cls(kind="alert_group", data=group)


def kind_of(value: Any) -> str:
    """Return the coarse category of a value handed to a template.

    ``"list"`` for alert and silence collections, ``"group"`` for a single
    webhook alert group.
    """
    if isinstance(value, RenderView):
        return "group" if value.kind == "alert_group" else "list"
    if isinstance(value, AlertGroup):
        return "group"
    if isinstance(value, (list, tuple)):
        return "list"
    return "other"


# ============================================================================
# Chat messages
# ============================================================================


@dataclass(frozen=True)
class InlineButton:
    """An inline keyboard button backed by a session token."""

    text: str
    token: str

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "callback_data": self.token}


@dataclass
class Keyboard:
    """An inline keyboard laid out as rows of buttons."""

    rows: list[list[InlineButton]] = field(default_factory=list)

    @property
    def buttons(self) -> list[InlineButton]:
        return [button for row in self.rows for button in row]

    def add_row(self, *buttons: InlineButton) -> None:
        self.rows.append(list(buttons))

    def to_markup(self) -> dict[str, Any]:
        """Serialize to a Telegram ``InlineKeyboardMarkup``."""
        return {"inline_keyboard": [[b.to_dict() for b in row] for row in self.rows]}


class PlanOperation(Enum):
    """Chat operation requested from the dispatcher."""

    SEND = "send"
    EDIT = "edit"
    DELETE = "delete"
    EDIT_MARKUP = "edit_markup"


PARSE_MODE_HTML = "HTML"


@dataclass(frozen=True)
class MessagePlan:
    """A single outbound chat operation.

    Attributes:
        operation: What to do with the message.
        chat_id: Target chat.
        text: Message text (ignored for delete and edit_markup).
        message_id: Existing message, required for every operation but send.
        parse_mode: Telegram parse mode or None for plain text.
        reply_markup: Inline keyboard attached to the (last) message.
    """

    operation: PlanOperation
    chat_id: int
    text: str = ""
    message_id: int | None = None
    parse_mode: str | None = None
    reply_markup: Keyboard | None = None

    def __post_init__(self) -> None:
        if self.operation is not PlanOperation.SEND and self.message_id is None:
            raise ValueError(f"{self.operation.value} requires a message_id")

    @classmethod
    def send(
        cls,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: Keyboard | None = None,
    ) -> MessagePlan:
        return cls(
            PlanOperation.SEND,
            chat_id,
            text,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
        )

    @classmethod
    def edit(
        cls,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: Keyboard | None = None,
    ) -> MessagePlan:
        return cls(
            PlanOperation.EDIT,
            chat_id,
            text,
            message_id=message_id,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
        )

    @classmethod
    def delete(cls, chat_id: int, message_id: int) -> MessagePlan:
        return cls(PlanOperation.DELETE, chat_id, message_id=message_id)

    @classmethod
    def strip_markup(cls, chat_id: int, message_id: int) -> MessagePlan:
        """Remove the inline keyboard of an existing message."""
        return cls(
            PlanOperation.EDIT_MARKUP,
            chat_id,
            message_id=message_id,
            reply_markup=Keyboard(),
        )
