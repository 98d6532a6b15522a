"""
Webhook dispatch engine.

Envelope, trigger conditions, listener registry, dispatcher and signature
validation for inbound MailBots webhooks.
"""

from .dispatcher import (
    GENERIC_ERROR_MESSAGE,
    Dispatcher,
    DispatcherStats,
    catch_unhandled_event,
    default_error_handler,
)
from .envelope import DispatchState, WebhookEnvelope
from .errors import (
    ConfigurationError,
    InvalidTriggerError,
    MailBotsError,
    ResponseKeyNotAllowedError,
    WebhookValidationError,
)
from .helpers import SettingsPage, WebhookHelpers
from .paths import MISSING
from .registry import Listener, ListenerRegistry
from .security import SIGNATURE_HEADER, TIMESTAMP_HEADER, WebhookSecurity, validate_webhook
from .triggers import Literal, Pattern, Predicate, as_trigger, matches

__all__ = [
    "GENERIC_ERROR_MESSAGE",
    "Dispatcher",
    "DispatcherStats",
    "catch_unhandled_event",
    "default_error_handler",
    "DispatchState",
    "WebhookEnvelope",
    "ConfigurationError",
    "InvalidTriggerError",
    "MailBotsError",
    "ResponseKeyNotAllowedError",
    "WebhookValidationError",
    "SettingsPage",
    "WebhookHelpers",
    "MISSING",
    "Listener",
    "ListenerRegistry",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "WebhookSecurity",
    "validate_webhook",
    "Literal",
    "Pattern",
    "Predicate",
    "as_trigger",
    "matches",
]
