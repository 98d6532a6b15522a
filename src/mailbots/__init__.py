"""
MailBots - webhook framework for email-native bots.

Receives MailBots webhooks, routes each event to registered listeners and
sends back the JSON response they build together.
"""

from .bot_request import BotRequest
from .mailbots import MailBots
from .shared.config import API_VERSION, Settings, get_settings
from .webhooks import (
    ConfigurationError,
    DispatchState,
    InvalidTriggerError,
    MailBotsError,
    ResponseKeyNotAllowedError,
    WebhookEnvelope,
    WebhookValidationError,
)

__version__ = "1.0.0"

__all__ = [
    "API_VERSION",
    "BotRequest",
    "ConfigurationError",
    "DispatchState",
    "InvalidTriggerError",
    "MailBots",
    "MailBotsError",
    "ResponseKeyNotAllowedError",
    "Settings",
    "WebhookEnvelope",
    "WebhookValidationError",
    "get_settings",
]
