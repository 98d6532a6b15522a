"""
Unit tests for the webhook envelope.
Tests read/write precedence, merge laws, stored-data seeding and the
terminal respond state.
"""
import pytest
from structlog.testing import capture_logs

from mailbots.shared.logging_config import listener_name
from mailbots.webhooks import DispatchState, ResponseKeyNotAllowedError, WebhookEnvelope


@pytest.fixture
def envelope(task_created_payload):
    return WebhookEnvelope(task_created_payload)


class TestGet:
    """Test reads through the envelope."""

    def test_reads_incoming_value(self, envelope):
        assert envelope.get("task.reference_email.subject") == "Remember this"

    def test_default_when_absent(self, envelope):
        assert envelope.get("task.nothing", "default") == "default"
        assert envelope.get("task.nothing") is None

    def test_written_value_wins(self, envelope):
        envelope.set("task.reference_email.subject", "Changed")
        assert envelope.get("task.reference_email.subject") == "Changed"

    @pytest.mark.parametrize("falsy", [0, "", False, None, []])
    def test_written_falsy_value_wins(self, envelope, falsy):
        envelope.set("task.reference_email.subject", falsy)
        assert envelope.get("task.reference_email.subject", "default") == falsy

    def test_mappings_merge_with_written_keys_winning(self, envelope):
        envelope.set("task.reference_email", {"subject": "New", "reply_to": "me@example.com"})
        reference = envelope.get("task.reference_email")

        assert reference["subject"] == "New"
        assert reference["reply_to"] == "me@example.com"
        assert reference["from"] == "sender@example.com"

    def test_response_only_ignores_incoming(self, envelope):
        assert envelope.get("task.command", response_only=True) is None

    def test_request_json_is_not_modified(self, envelope, task_created_payload):
        envelope.set("task.reference_email.subject", "Changed")
        assert task_created_payload["task"]["reference_email"]["subject"] == "Remember this"


class TestSet:
    """Test merge and replacement laws."""

    def test_set_then_get_returns_value(self, envelope):
        envelope.set("webhook.status", "info")
        assert envelope.get("webhook.status") == "info"

    def test_shallow_merge_law(self, envelope):
        envelope.set("settings", {"a": 1, "b": 1})
        before = envelope.get("settings")

        envelope.set("settings", {"b": 2, "c": 3})

        assert envelope.get("settings") == {**before, "b": 2, "c": 3}

    def test_merge_is_shallow(self, envelope):
        envelope.set("settings", {"page": {"a": 1}})
        envelope.set("settings", {"page": {"b": 2}})
        assert envelope.get("settings") == {"page": {"b": 2}}

    def test_merge_false_replaces(self, envelope):
        envelope.set("settings", {"a": 1})
        envelope.set("settings", {"b": 2}, merge=False)
        assert envelope.get("settings") == {"b": 2}

    def test_lists_are_replaced_not_concatenated(self, envelope):
        envelope.set("send_messages", [{"to": "a"}])
        envelope.set("send_messages", [{"to": "b"}])
        assert envelope.get("send_messages") == [{"to": "b"}]

    def test_scalar_replaces_mapping(self, envelope):
        envelope.set("settings", {"a": 1})
        envelope.set("settings", "flat")
        assert envelope.get("settings") == "flat"

    def test_mapping_replaces_list(self, envelope):
        envelope.set("settings", [1, 2])
        envelope.set("settings", {"a": 1})
        assert envelope.get("settings") == {"a": 1}

    def test_merge_carries_incoming_keys_into_sent_body(self, envelope):
        envelope.set("task.reference_email", {"subject": "New"})
        envelope.respond()

        reference_email = envelope.body["task"]["reference_email"]
        assert reference_email["subject"] == "New"
        assert reference_email["from"] == "sender@example.com"
        assert reference_email["to"] == ["memorize@my-bot.eml.bot"]

    def test_merge_false_drops_incoming_keys(self, envelope):
        envelope.set("task.reference_email", {"subject": "New"}, merge=False)
        assert envelope.response_json["task"]["reference_email"] == {"subject": "New"}

    def test_nested_write_after_merge_leaves_request_untouched(self):
        payload = {"task": {"meta": {"labels": {"a": 1}}}}
        envelope = WebhookEnvelope(payload)

        envelope.set("task.meta", {"owner": "me"})
        envelope.set("task.meta.labels.b", 2)

        assert payload == {"task": {"meta": {"labels": {"a": 1}}}}
        assert envelope.get("task.meta") == {"owner": "me", "labels": {"a": 1, "b": 2}}

    def test_set_returns_stored_value(self, envelope):
        envelope.set("settings", {"a": 1})
        assert envelope.set("settings", {"b": 2}) == {"a": 1, "b": 2}


class TestStoredData:
    """Test task and mailbot stored-data helpers."""

    def test_get_task_data(self, envelope):
        assert envelope.get_task_data("counter") == 1
        assert envelope.get_task_data("missing", 42) == 42
        assert envelope.get_task_data()["memorize"] == {"frequency": "1week"}

    def test_partial_write_keeps_original_keys(self, envelope):
        envelope.set_task_data("memorize.frequency", "2weeks")

        stored = envelope.response_json["task"]["stored_data"]
        assert stored["counter"] == 1
        assert stored["memorize"] == {"frequency": "2weeks"}

    def test_dict_write_merges_into_original(self, envelope):
        envelope.set_task_data({"extra": True})
        assert envelope.response_json["task"]["stored_data"] == {
            "counter": 1,
            "memorize": {"frequency": "1week"},
            "extra": True,
        }

    def test_seeding_happens_once(self, envelope):
        envelope.set_task_data("counter", 2)
        envelope.response_json["task"]["stored_data"].pop("memorize")
        envelope.set_task_data("counter", 3)

        assert "memorize" not in envelope.response_json["task"]["stored_data"]
        assert envelope.get_task_data("counter") == 3

    def test_seeding_copies_incoming_data(self, envelope, task_created_payload):
        envelope.set_task_data("memorize.frequency", "daily")
        assert task_created_payload["task"]["stored_data"]["memorize"] == {"frequency": "1week"}

    def test_mailbot_data(self, envelope):
        envelope.set_mailbot_data("theme", "dark")
        assert envelope.get_mailbot_data("theme") == "dark"
        assert envelope.get_mailbot_data("enabled") is True
        assert envelope.response_json["mailbot"]["stored_data"] == {"enabled": True, "theme": "dark"}

    def test_seeding_without_incoming_data(self):
        envelope = WebhookEnvelope({"event": "task.created"})
        envelope.set_task_data("foo", "bar")
        assert envelope.response_json["task"]["stored_data"] == {"foo": "bar"}

    def test_key_without_value_rejected(self, envelope):
        with pytest.raises(TypeError):
            envelope.set_task_data("counter")

    def test_bad_key_type_rejected(self, envelope):
        with pytest.raises(TypeError):
            envelope.set_mailbot_data(42, "x")


class TestRespond:
    """Test the terminal respond state."""

    def test_initial_state(self, envelope):
        assert envelope.state == DispatchState.RECEIVED
        assert envelope.is_unhandled()
        assert not envelope.already_responded
        assert envelope.body == {"version": "1"}

    def test_respond_merges_partial(self, envelope):
        envelope.set("webhook.status", "info")
        assert envelope.respond({"extra": 1}) is True

        assert envelope.body == {"version": "1", "webhook": {"status": "info"}, "extra": 1}
        assert envelope.state == DispatchState.RESPONDED

    def test_second_respond_is_ignored(self, envelope):
        envelope.respond({"first": True})
        assert envelope.respond({"second": True}) is False
        assert envelope.body == {"version": "1", "first": True}

    def test_sent_status_is_a_snapshot(self, envelope):
        assert envelope.response_status == 200
        envelope.status_code = 201
        envelope.respond()
        envelope.status_code = 500
        assert envelope.response_status == 201

    def test_sent_body_is_a_snapshot(self, envelope):
        envelope.respond()
        envelope.set("late", "write")
        assert "late" not in envelope.body

    def test_is_unhandled_after_write(self, envelope):
        envelope.set("webhook.status", "info")
        assert not envelope.is_unhandled()

    def test_no_transition_after_terminal_state(self, envelope):
        envelope.respond()
        assert envelope.transition(DispatchState.SINGLE_FIRE) is False
        assert envelope.state == DispatchState.RESPONDED

    @pytest.mark.asyncio
    async def test_wait_responded(self, envelope):
        envelope.respond({"done": True})
        body = await envelope.wait_responded()
        assert body["done"] is True


class TestFutHookRestrictions:
    """Test which keys FollowUpThen hook handlers may write."""

    @pytest.fixture
    def fut_envelope(self):
        return WebhookEnvelope({
            "event": "mailbot.interbot_event",
            "payload": {"fut_hook": "onFutCreateUser"},
        })

    @pytest.mark.parametrize("path", [
        "futUiAddition",
        "futUiAdditionBehavior.closeTask",
        "task.stored_data.x",
        "skillStatus",
        "endRequest",
    ])
    def test_allowed_keys(self, fut_envelope, path):
        fut_envelope.set(path, 1)
        assert fut_envelope.get(path) == 1

    def test_other_keys_rejected(self, fut_envelope):
        with pytest.raises(ResponseKeyNotAllowedError) as exc_info:
            fut_envelope.set("send_messages", [])
        assert exc_info.value.key == "send_messages"

    def test_regular_interbot_event_unrestricted(self):
        envelope = WebhookEnvelope({"event": "mailbot.interbot_event", "payload": {}})
        envelope.set("send_messages", [])
        assert not envelope.is_fut_hook()


class TestConflictWarnings:
    """Test optional warnings when listeners write the same path."""

    def _write_as(self, envelope, name, path, value):
        token = listener_name.set(name)
        try:
            envelope.set(path, value)
        finally:
            listener_name.reset(token)

    def test_warns_on_same_path_from_two_listeners(self):
        envelope = WebhookEnvelope({"event": "x"}, warn_on_conflicts=True)
        envelope.transition(DispatchState.MULTI_FIRE)

        with capture_logs() as logs:
            self._write_as(envelope, "first", "settings.foo", 1)
            self._write_as(envelope, "second", "settings.foo", 2)

        warnings = [entry for entry in logs if entry["log_level"] == "warning"]
        assert len(warnings) == 1
        assert warnings[0]["path"] == "settings.foo"
        assert warnings[0]["previous_listener"] == "first"
        assert envelope.get("settings.foo") == 2

    def test_no_warning_for_different_paths_or_when_disabled(self):
        enabled = WebhookEnvelope({"event": "x"}, warn_on_conflicts=True)
        enabled.transition(DispatchState.MULTI_FIRE)
        disabled = WebhookEnvelope({"event": "x"})
        disabled.transition(DispatchState.MULTI_FIRE)

        with capture_logs() as logs:
            self._write_as(enabled, "first", "settings.foo", 1)
            self._write_as(enabled, "second", "settings.shoe", 2)
            self._write_as(disabled, "first", "settings.foo", 1)
            self._write_as(disabled, "second", "settings.foo", 2)

        assert not [entry for entry in logs if entry["log_level"] == "warning"]
