"""Tests for the shared data models."""

from datetime import UTC, datetime

import pytest

from alertmanager_telegram.models import (
    Alert,
    AlertGroup,
    CallbackIntent,
    CallbackKind,
    InlineButton,
    Keyboard,
    Matcher,
    MessagePlan,
    PlanOperation,
    RenderView,
    Silence,
    Target,
    kind_of,
    parse_timestamp,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def webhook_payload() -> dict:
    """A firing webhook body as sent by Alertmanager."""
    return {
        "version": "4",
        "groupKey": '{}:{alertname="InstanceDown", instance="db1:9100"}',
        "truncatedAlerts": 0,
        "status": "firing",
        "receiver": "telegram",
        "groupLabels": {"alertname": "InstanceDown", "instance": "db1:9100"},
        "commonLabels": {"alertname": "InstanceDown", "instance": "db1:9100", "job": "node"},
        "commonAnnotations": {"summary": "db1 is down"},
        "externalURL": "http://alertmanager:9093",
        "alerts": [
            {
                "status": "firing",
                "labels": {"alertname": "InstanceDown", "instance": "db1:9100"},
                "annotations": {"summary": "db1 is down"},
                "startsAt": "2024-05-01T10:00:00.123456789Z",
                "endsAt": "0001-01-01T00:00:00Z",
                "generatorURL": "http://prometheus:9090/graph",
                "fingerprint": "abc123",
            }
        ],
    }


# ============================================================================
# Timestamp Tests
# ============================================================================


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_nanoseconds_are_truncated(self) -> None:
        """Test that nanosecond precision is accepted."""
        value = parse_timestamp("2024-05-01T10:00:00.123456789Z")
        assert value == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=UTC)

    def test_offset(self) -> None:
        """Test explicit offsets."""
        value = parse_timestamp("2024-05-01T13:00:00+03:00")
        assert value is not None
        assert value.astimezone(UTC).hour == 10

    def test_empty(self) -> None:
        """Test that empty values parse to None."""
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_invalid_raises(self) -> None:
        """Test that garbage raises ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


# ============================================================================
# CallbackIntent Tests
# ============================================================================


class TestCallbackIntent:
    """Tests for CallbackIntent."""

    def test_required_params(self) -> None:
        """Test that each kind enforces its required params."""
        with pytest.raises(ValueError, match="job_name"):
            CallbackIntent(CallbackKind.JOB)
        with pytest.raises(ValueError, match="target_name"):
            CallbackIntent(CallbackKind.TARGET, {"job_name": "node"})
        with pytest.raises(ValueError, match="alertname"):
            CallbackIntent(CallbackKind.SILENCE, {"instance": "db1"})

    def test_no_params_needed(self) -> None:
        """Test kinds without parameters."""
        assert CallbackIntent(CallbackKind.JOBS).params == {}
        assert CallbackIntent(CallbackKind.CLOSE).params == {}

    def test_extra_params_allowed(self) -> None:
        """Test that optional params are kept."""
        intent = CallbackIntent(
            CallbackKind.JOB, {"job_name": "node", "leave_last_message": "yes"}
        )
        assert intent.params["leave_last_message"] == "yes"

    def test_dict_round_trip(self) -> None:
        """Test serialization used by the Redis store."""
        intent = CallbackIntent(CallbackKind.TARGET, {"job_name": "node", "target_name": "db1"})
        data = intent.to_dict()
        assert data == {"type": "target", "data": {"job_name": "node", "target_name": "db1"}}
        assert CallbackIntent.from_dict(data) == intent

    def test_unknown_kind(self) -> None:
        """Test that unknown kinds are rejected."""
        with pytest.raises(ValueError):
            CallbackIntent.from_dict({"type": "reboot", "data": {}})


# ============================================================================
# API Projection Tests
# ============================================================================


class TestAlert:
    """Tests for Alert."""

    def test_from_api(self) -> None:
        """Test decoding a GettableAlert."""
        alert = Alert.from_api(
            {
                "labels": {"alertname": "HighLoad", "instance": "web1"},
                "annotations": {"summary": "load"},
                "startsAt": "2024-05-01T10:00:00Z",
                "endsAt": "2024-05-01T11:00:00Z",
                "updatedAt": "2024-05-01T10:05:00Z",
                "fingerprint": "f1",
                "generatorURL": "http://prom",
                "receivers": [{"name": "telegram"}],
                "status": {"state": "suppressed", "silencedBy": ["s1"], "inhibitedBy": []},
            }
        )
        assert alert.status == "firing"
        assert alert.state == "suppressed"
        assert alert.silenced_by == ("s1",)
        assert alert.labels["instance"] == "web1"
        assert alert.starts_at == datetime(2024, 5, 1, 10, tzinfo=UTC)
        assert alert.raw["fingerprint"] == "f1"


class TestSilence:
    """Tests for Silence and Matcher."""

    def test_from_api(self) -> None:
        """Test decoding a GettableSilence."""
        silence = Silence.from_api(
            {
                "id": "s1",
                "status": {"state": "active"},
                "matchers": [{"name": "instance", "value": "db1", "isRegex": False}],
                "startsAt": "2024-05-01T10:00:00Z",
                "endsAt": "2024-05-01T11:00:00Z",
                "updatedAt": "2024-05-01T10:00:00Z",
                "createdBy": "alice",
                "comment": "maintenance",
            }
        )
        assert silence.is_active
        assert silence.matchers == (Matcher("instance", "db1"),)
        assert silence.created_by == "alice"

    def test_expired_is_not_active(self) -> None:
        """Test that expired silences are not active."""
        silence = Silence.from_api({"id": "s2", "status": {"state": "expired"}, "matchers": []})
        assert not silence.is_active

    def test_matcher_to_dict(self) -> None:
        """Test that matchers default to exact equality."""
        assert Matcher("alertname", "InstanceDown").to_dict() == {
            "name": "alertname",
            "value": "InstanceDown",
            "isRegex": False,
            "isEqual": True,
        }


class TestTarget:
    """Tests for Target."""

    def test_from_api(self) -> None:
        """Test decoding an active target."""
        target = Target.from_api(
            {
                "labels": {"job": "node", "instance": "db1:9100"},
                "health": "up",
                "scrapeUrl": "http://db1:9100/metrics",
                "lastError": "",
            }
        )
        assert target.job == "node"
        assert target.instance == "db1:9100"
        assert target.health == "up"

    def test_missing_labels(self) -> None:
        """Test that missing labels read as empty strings."""
        target = Target.from_api({"labels": {}, "health": "down"})
        assert target.job == ""
        assert target.instance == ""


class TestAlertGroup:
    """Tests for AlertGroup."""

    def test_from_dict(self, webhook_payload: dict) -> None:
        """Test decoding a webhook body."""
        group = AlertGroup.from_dict(webhook_payload)
        assert group.is_firing
        assert group.group_labels == {"alertname": "InstanceDown", "instance": "db1:9100"}
        assert len(group.alerts) == 1
        assert group.alerts[0].status == "firing"
        assert group.alerts[0].starts_at == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=UTC)
        assert group.receiver == "telegram"

    def test_resolved(self, webhook_payload: dict) -> None:
        """Test a resolved group."""
        webhook_payload["status"] = "resolved"
        assert not AlertGroup.from_dict(webhook_payload).is_firing

    def test_not_an_object(self) -> None:
        """Test that non-object bodies are rejected."""
        with pytest.raises(ValueError):
            AlertGroup.from_dict(["not", "a", "group"])  # type: ignore[arg-type]

    def test_alerts_not_a_list(self, webhook_payload: dict) -> None:
        """Test that a malformed alerts field is rejected."""
        webhook_payload["alerts"] = "oops"
        with pytest.raises(ValueError, match="alerts"):
            AlertGroup.from_dict(webhook_payload)


# ============================================================================
# Rendering Tests
# ============================================================================


class TestKindOf:
    """Tests for kind_of."""

    def test_collections_are_lists(self) -> None:
        """Test alert and silence collections."""
        assert kind_of(RenderView.alerts([])) == "list"
        assert kind_of(RenderView.silences([])) == "list"
        assert kind_of([]) == "list"
        assert kind_of(()) == "list"

    def test_group(self, webhook_payload: dict) -> None:
        """Test a single alert group."""
        group = AlertGroup.from_dict(webhook_payload)
        assert kind_of(group) == "group"
        assert kind_of(RenderView.alert_group(group)) == "group"

    def test_other(self) -> None:
        """Test anything else."""
        assert kind_of("text") == "other"


# ============================================================================
# Chat Message Tests
# ============================================================================


class TestKeyboard:
    """Tests for Keyboard."""

    def test_to_markup(self) -> None:
        """Test Telegram markup serialization."""
        keyboard = Keyboard()
        keyboard.add_row(InlineButton("a", "t1"), InlineButton("b", "t2"))
        keyboard.add_row(InlineButton("c", "t3"))
        assert keyboard.to_markup() == {
            "inline_keyboard": [
                [{"text": "a", "callback_data": "t1"}, {"text": "b", "callback_data": "t2"}],
                [{"text": "c", "callback_data": "t3"}],
            ]
        }
        assert [b.token for b in keyboard.buttons] == ["t1", "t2", "t3"]

    def test_empty(self) -> None:
        """Test that an empty keyboard clears the markup."""
        assert Keyboard().to_markup() == {"inline_keyboard": []}


class TestMessagePlan:
    """Tests for MessagePlan."""

    def test_send_needs_no_message_id(self) -> None:
        """Test send plans."""
        plan = MessagePlan.send(1, "hi")
        assert plan.operation is PlanOperation.SEND
        assert plan.message_id is None

    @pytest.mark.parametrize("operation", [PlanOperation.EDIT, PlanOperation.DELETE])
    def test_message_id_required(self, operation: PlanOperation) -> None:
        """Test that edits and deletes need a message id."""
        with pytest.raises(ValueError, match="message_id"):
            MessagePlan(operation, 1, "text")

    def test_strip_markup(self) -> None:
        """Test the keyboard removal plan."""
        plan = MessagePlan.strip_markup(1, 42)
        assert plan.operation is PlanOperation.EDIT_MARKUP
        assert plan.reply_markup is not None
        assert plan.reply_markup.to_markup() == {"inline_keyboard": []}
