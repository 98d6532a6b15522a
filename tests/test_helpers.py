"""
Unit tests for webhook helpers and the settings page skeleton.
"""
import pytest

from mailbots.webhooks import ConfigurationError, SettingsPage, WebhookHelpers


@pytest.fixture
def webhook(task_created_payload):
    return WebhookHelpers(task_created_payload)


class TestEmail:
    """Test email helpers."""

    def test_send_email_appends(self, webhook):
        webhook.send_email({"to": "a@example.com", "subject": "One"})
        webhook.send_email({"to": "b@example.com", "subject": "Two"})

        messages = webhook.get("send_messages")
        assert [message["subject"] for message in messages] == ["One", "Two"]
        assert all(message["type"] == "email" for message in messages)

    def test_send_email_returns_mutable_message(self, webhook):
        message = webhook.send_email({"to": "a@example.com", "subject": "One"})
        message["subject"] = "Changed"
        assert webhook.get("send_messages")[0]["subject"] == "Changed"

    def test_send_email_does_not_mutate_argument(self, webhook):
        email = {"to": "a@example.com", "subject": "One"}
        webhook.send_email(email)
        assert "type" not in email

    def test_quick_reply_text(self, webhook):
        message = webhook.quick_reply("Got it")
        assert message == {
            "to": "sender@example.com",
            "subject": "Got it",
            "body": [{"type": "text", "text": "Got it"}],
            "type": "email",
        }

    def test_quick_reply_uses_reply_to(self, webhook):
        webhook.set("task.reference_email.reply_to", "reply@example.com")
        assert webhook.quick_reply("Hi")["to"] == "reply@example.com"

    def test_quick_reply_dict(self, webhook):
        message = webhook.quick_reply({"subject": "Hi", "body": [{"type": "html", "html": "<b>x</b>"}]})
        assert message["body"][0]["type"] == "html"

    def test_quick_reply_malformed(self, webhook):
        with pytest.raises(ValueError):
            webhook.quick_reply({"subject": "Hi"})
        with pytest.raises(TypeError):
            webhook.quick_reply(42)

    def test_email_method(self, webhook):
        assert webhook.get_email_method() == "to"

        webhook.set("task.reference_email", {"to": ["x@example.com"], "cc": "Memorize@my-bot.eml.bot"})
        assert webhook.get_email_method() == "cc"

        webhook.set("task.reference_email", {"to": [], "cc": []})
        assert webhook.get_email_method() == "bcc"

    def test_all_contacts(self, webhook):
        webhook.set("task.reference_email", {
            "to": ["friend@example.com", "invite@bot.com", "sender@example.com"],
            "cc": ["colleague@example.com"],
        })
        assert webhook.get_all_contacts() == ["friend@example.com", "colleague@example.com"]


class TestTask:
    """Test task helpers."""

    def test_trigger_time(self, webhook):
        webhook.set_trigger_time("3days")
        webhook.set_trigger_timestamp(1546300800)
        assert webhook.get("task.trigger_timeformat") == "3days"
        assert webhook.get("task.trigger_time") == 1546300800

    def test_complete_and_discard(self, webhook):
        webhook.complete_task()
        webhook.discard_task()
        assert webhook.response_json["task"] == {"completed": 1, "discard": 1}

    def test_invite(self, webhook):
        webhook.invite(["a@example.com"])
        assert webhook.get("mailbot.invite") == ["a@example.com"]
        with pytest.raises(TypeError):
            webhook.invite("a@example.com")

    def test_reference_email(self, webhook):
        webhook.set_reference_email({"subject": "New"})
        reference = webhook.get_reference_email()
        assert reference["subject"] == "New"
        assert reference["from"] == "sender@example.com"

    def test_payload_sections(self, webhook):
        assert webhook.get_source() == {"from": "sender@example.com"}
        assert webhook.get_user()["email"] == "sender@example.com"
        assert webhook.get_task()["id"] == 1001
        assert webhook.get_mailbot() == {"stored_data": {"enabled": True}}
        assert webhook.get_trigger() is None

    def test_webhook_status(self, webhook):
        webhook.set_webhook_status("Saved", level="warn")
        assert webhook.get("webhook") == {"status": "warn", "message": "Saved"}
        with pytest.raises(ValueError):
            webhook.set_webhook_status("x", level="loud")

    def test_search_keys(self, webhook):
        webhook.add_search_keys(["a", "b"])
        webhook.add_search_keys(["b", "c"])
        webhook.remove_search_keys(["old"])

        assert webhook.get("taskUpdates.search_keys") == ["a", "b", "c"]
        assert webhook.get("taskUpdates.remove_search_keys") == ["old"]

    def test_has_search_key(self):
        webhook = WebhookHelpers({"task": {"search_keys": ["urgent"]}})
        assert webhook.has_search_key("urgent")
        assert not webhook.has_search_key("later")

    def test_skill_markers(self):
        webhook = WebhookHelpers({
            "payload": {"task": {"stored_data": {"runtime": {
                "add_skill": {"memorize": True},
                "remove_skill": {"remind": True},
            }}}}
        })
        assert webhook.skill_marked_for_setup("memorize") is True
        assert webhook.skill_marked_for_removal("remind") is True
        assert webhook.skill_marked_for_setup("remind") is None

    def test_fut_ui_blocks_accumulate(self, webhook):
        webhook.add_fut_ui_blocks([{"type": "title"}])
        webhook.add_fut_ui_blocks([{"type": "text"}])
        assert webhook.get("futUiAddition") == [{"type": "title"}, {"type": "text"}]


class TestSettingsPage:
    """Test the settings page skeleton."""

    def test_requires_namespace(self, webhook):
        with pytest.raises(ConfigurationError):
            webhook.settings_page(namespace="")

    def test_page_registered_on_response(self, webhook):
        page = webhook.settings_page(namespace="memorize", title="Memorize")
        page.insert("frequency", {"type": "string", "title": "Frequency"}, {"ui:autofocus": True})
        page.populate({"frequency": "1week"})
        page.set_url_params({"tab": "memorize"})

        form = webhook.get("settings.memorize")
        assert form is page.to_dict()
        assert form["JSONSchema"]["properties"]["frequency"]["title"] == "Frequency"
        assert form["uiSchema"] == {"frequency": {"ui:autofocus": True}}
        assert form["formData"] == {"frequency": "1week"}
        assert form["formMeta"] == {"menuTitle": "Memorize", "urlParams": {"tab": "memorize"}}

    def test_pages_from_different_namespaces_coexist(self, webhook):
        SettingsPage(webhook, namespace="one")
        SettingsPage(webhook, namespace="two", menu_title="Second")

        assert set(webhook.get("settings")) == {"one", "two"}
        assert webhook.get("settings.two.formMeta.menuTitle") == "Second"
        assert webhook.get("settings.one.formMeta.menuTitle") == "one"
