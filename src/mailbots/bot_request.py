"""
Bot Request
The object every listener receives for one webhook.
"""
import uuid
from typing import Any, Dict, Optional

import structlog

from .shared.config import API_VERSION, Settings
from .webhooks.errors import ConfigurationError
from .webhooks.helpers import WebhookHelpers
from .webhooks.paths import get_path
from .webhooks.triggers import task_command

logger = structlog.get_logger(__name__)


class BotRequest:
    """
    Per-request handle passed to listeners.

    Attributes:
        webhook: Envelope with read/write helpers for this webhook
        command: Task command without its ``@domain`` suffix
        action: ``action.format`` of an action webhook
        event: Event name of the webhook
        config: Bot settings
        request: Underlying HTTP request, when dispatched over HTTP
        skills: Free-form namespace listeners and skills may populate
        request_id: Unique id of this request
    """

    def __init__(
        self,
        payload: Optional[Dict[str, Any]],
        config: Optional[Settings] = None,
        request: Any = None,
        request_id: Optional[str] = None,
    ):
        self.config = config
        self.request = request
        self.request_id = request_id or str(uuid.uuid4())
        self.skills: Dict[str, Any] = {}

        monitoring = config.monitoring if config is not None else None
        self.webhook = WebhookHelpers(
            payload,
            namespace=config.event_namespace if config is not None else "mailbot",
            warn_on_conflicts=bool(monitoring and monitoring.warn_on_response_conflicts),
        )

        request_json = self.webhook.request_json
        self.command = task_command(request_json) or ""
        self.action = get_path(request_json, "action.format", None)
        self.event = request_json.get("event")

        self._check_version()

    def _check_version(self) -> None:
        version = self.webhook.request_json.get("version")
        if version and str(version) != API_VERSION:
            logger.warning(
                "Webhook version does not match library version; this can cause unexpected behavior",
                webhook_version=str(version),
                library_version=API_VERSION,
            )

    def get(self, path, default: Any = None, response_only: bool = False) -> Any:
        return self.webhook.get(path, default, response_only)

    def set(self, path, value: Any, merge: bool = True) -> Any:
        return self.webhook.set(path, value, merge)

    def admin_url(self, *parts) -> str:
        """URL under the admin UI, tagged with the address of whoever sent the task."""
        if self.config is None or not self.config.mailbots_admin:
            raise ConfigurationError("mailbots framework not configured")
        sender = self.get("task.reference_email.from") or self.get("user.email")
        return self.config.admin_url(*parts, sender=sender)

    def settings_url(self, *parts) -> str:
        """URL of this bot's settings page, optionally pointing at a sub-page."""
        if self.config is None or not self.config.mailbot_id:
            raise ConfigurationError("mailbots framework not configured")
        return self.admin_url("skills", self.config.mailbot_id, "settings", *parts)

    def __repr__(self):
        return f"BotRequest(event={self.event!r}, request_id={self.request_id!r})"
