"""
Webhook Helpers
Convenience operations handlers use to read the task and shape the response.

Every helper goes through ``WebhookEnvelope.get``/``set`` so the merge rules
apply uniformly; none of them write to ``response_json`` directly.
"""
from typing import Any, Dict, List, Optional, Union

from .envelope import WebhookEnvelope
from .errors import ConfigurationError


def _address_list(field: Any) -> List[str]:
    if isinstance(field, list):
        return [str(address).strip().lower() for address in field]
    if isinstance(field, str):
        return [address.strip().lower() for address in field.split(",") if address.strip()]
    return []


class SettingsPage:
    """
    Skeleton of one settings form under ``settings.<namespace>``.

    Only the container and its metadata are managed here; form fields are
    inserted as raw JSON Schema / uiSchema pairs.
    """

    def __init__(self, webhook: WebhookEnvelope, namespace: str, title: str = "", menu_title: Optional[str] = None):
        if not namespace:
            raise ConfigurationError("A namespace is required")

        self.webhook = webhook
        self.namespace = namespace
        self.form = {
            "JSONSchema": {"title": title, "type": "object", "properties": {}},
            "uiSchema": {},
            "formData": {},
            "formMeta": {"menuTitle": menu_title or title or namespace},
        }
        webhook.set("settings", {namespace: self.form})

    @property
    def json_schema(self) -> Dict[str, Any]:
        return self.form["JSONSchema"]

    @property
    def ui_schema(self) -> Dict[str, Any]:
        return self.form["uiSchema"]

    @property
    def form_data(self) -> Dict[str, Any]:
        return self.form["formData"]

    @property
    def form_meta(self) -> Dict[str, Any]:
        return self.form["formMeta"]

    def insert(self, name: str, json_schema: Dict[str, Any], ui_schema: Optional[Dict[str, Any]] = None) -> None:
        """Add a raw form element."""
        self.json_schema["properties"][name] = json_schema
        if ui_schema:
            self.ui_schema[name] = ui_schema

    def set_url_params(self, url_params: Dict[str, str]) -> None:
        self.form_meta["urlParams"] = url_params

    def populate(self, form_data: Dict[str, Any]) -> None:
        """Fill form values, usually from stored mailbot data."""
        self.form_data.update(form_data)

    def to_dict(self) -> Dict[str, Any]:
        return self.form


class WebhookHelpers(WebhookEnvelope):
    """Envelope plus the task, email and UI helpers exposed as ``bot.webhook``."""

    # Task and email

    def get_reference_email(self) -> Optional[Dict[str, Any]]:
        return self.get("task.reference_email")

    def set_reference_email(self, reference_email: Dict[str, Any]) -> Any:
        return self.set("task.reference_email", reference_email)

    def get_reply_to(self) -> Optional[str]:
        """Reply-to of the reference email if set, otherwise the sender."""
        reply_to = self.get("task.reference_email.reply_to")
        if reply_to:
            return reply_to
        return self.get("source.from")

    def get_email_method(self) -> str:
        """How the bot was addressed on the reference email: ``to``, ``cc`` or ``bcc``."""
        command = str(self.get("task.command", "") or "").lower()
        # FollowUpThen serves the same bot under a second domain
        alt_command = command.replace("followupthen.com", "fut.io")
        addressed = {command, alt_command}

        if addressed & set(_address_list(self.get("task.reference_email.to", []))):
            return "to"
        if addressed & set(_address_list(self.get("task.reference_email.cc", []))):
            return "cc"
        return "bcc"

    def send_email(self, email: Dict[str, Any]) -> Dict[str, Any]:
        """
        Queue an email on ``send_messages``.

        Returns the queued message dict; changes made to it afterwards are
        part of the response.
        """
        message = dict(email, type="email")
        messages = list(self.get("send_messages", []) or [])
        messages.append(message)
        self.set("send_messages", messages, merge=False)
        return self.get("send_messages")[-1]

    def quick_reply(self, message: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
        """Reply to the sender with a text message or a ``{subject, body}`` dict."""
        if isinstance(message, str):
            subject = message
            body = [{"type": "text", "text": message}]
        elif isinstance(message, dict):
            subject = message.get("subject")
            body = message.get("body")
            if not subject or not isinstance(body, list):
                raise ValueError("Email subject and body are missing or malformed")
        else:
            raise TypeError(f"Unknown type given to quick_reply: {type(message).__name__}")

        return self.send_email({"to": self.get_reply_to(), "subject": subject, "body": body})

    def set_trigger_time(self, time: str) -> None:
        """Reschedule the task with a natural-language time such as ``3days``."""
        self.set("task.trigger_timeformat", time)

    def set_trigger_timestamp(self, timestamp: int) -> None:
        self.set("task.trigger_time", timestamp)

    def invite(self, invitees: List[str]) -> None:
        if not isinstance(invitees, list):
            raise TypeError("Invitees should be a list of email addresses")
        self.set("mailbot.invite", invitees)

    def complete_task(self) -> None:
        self.set("task.completed", 1)

    def discard_task(self) -> None:
        self.set("task.discard", 1)

    def get_all_contacts(self) -> List[str]:
        """Recipients of the reference email, excluding invite addresses and the user's own."""
        recipients = _address_list(self.get("task.reference_email.to", [])) + _address_list(
            self.get("task.reference_email.cc", [])
        )
        own = set(_address_list(self.get("user.emails", [])))
        return [email for email in recipients if not email.startswith("invite") and email not in own]

    # Payload sections

    def get_source(self) -> Optional[Dict[str, Any]]:
        return self.get("source")

    def get_trigger(self) -> Optional[Dict[str, Any]]:
        return self.get("trigger")

    def get_user(self) -> Optional[Dict[str, Any]]:
        return self.get("user")

    def get_task(self) -> Optional[Dict[str, Any]]:
        return self.get("task")

    def get_mailbot(self) -> Optional[Dict[str, Any]]:
        return self.get("mailbot")

    # Webhook status and UI

    def set_webhook_status(self, message: str, level: str = "info") -> None:
        """Message shown to the user about this webhook; level is info, warn or error."""
        if level not in ("info", "warn", "error"):
            raise ValueError(f"Unknown webhook status level: {level}")
        self.set("webhook.status", level)
        self.set("webhook.message", message)

    def add_fut_ui_blocks(self, ui_blocks: List[Dict[str, Any]]) -> None:
        existing = list(self.get("futUiAddition", []) or [])
        self.set("futUiAddition", existing + list(ui_blocks))

    def settings_page(self, namespace: str, title: str = "", menu_title: Optional[str] = None) -> SettingsPage:
        return SettingsPage(self, namespace=namespace, title=title, menu_title=menu_title)

    # Search keys

    def add_search_keys(self, keys: List[str]) -> None:
        search_keys = list(self.get("taskUpdates.search_keys", []) or [])
        for key in keys:
            if key not in search_keys:
                search_keys.append(key)
        self.set("taskUpdates.search_keys", search_keys)

    def remove_search_keys(self, keys: List[str]) -> None:
        self.set("taskUpdates.remove_search_keys", list(keys))

    def has_search_key(self, key: str) -> bool:
        return key in (self.get("task.search_keys", []) or [])

    # Skill lifecycle

    def skill_marked_for_setup(self, data_namespace: str) -> Any:
        return self.get(f"payload.task.stored_data.runtime.add_skill.{data_namespace}")

    def skill_marked_for_removal(self, data_namespace: str) -> Any:
        return self.get(f"payload.task.stored_data.runtime.remove_skill.{data_namespace}")
