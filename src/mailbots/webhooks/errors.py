"""
Webhook error types.

Configuration errors are raised synchronously while a bot is being set up.
Handler errors are whatever a listener raises; they never leave the
dispatcher except when the error handler itself fails.
"""


class MailBotsError(Exception):
    """Base class for errors raised by the framework."""


class ConfigurationError(MailBotsError, ValueError):
    """The bot, a listener or a helper was set up with invalid values."""


class InvalidTriggerError(ConfigurationError):
    """A trigger condition is not a string, compiled pattern or callable."""

    def __init__(self, condition):
        self.condition = condition
        super().__init__(f"Unrecognized trigger condition: {type(condition).__name__}")


class WebhookValidationError(MailBotsError):
    """An inbound webhook failed signature or timestamp validation."""


class ResponseKeyNotAllowedError(MailBotsError):
    """A handler wrote a response key that the current event does not accept."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"Setting {key} is not allowed in this handler. "
            "FollowUpThen hook responses may only set futUiAddition, "
            "futUiAdditionBehavior, task, skillStatus or endRequest"
        )
