"""
Shared fixtures for the MailBots test suite.
"""
import pytest

from mailbots import BotRequest, MailBots, Settings
from mailbots.shared.config import Environment
from mailbots.webhooks import Dispatcher, ListenerRegistry, catch_unhandled_event


@pytest.fixture
def settings():
    """Settings for a configured bot in the testing environment."""
    return Settings(
        environment=Environment.TESTING,
        client_id="test-client-id",
        client_secret="test-client-secret",
        mailbot_id="1234",
        mailbots_admin="https://app.followupthen.com/",
    )


@pytest.fixture
def mailbot(settings):
    """A bot with no listeners registered yet."""
    return MailBots(settings)


@pytest.fixture
def registry():
    return ListenerRegistry()


@pytest.fixture
def dispatcher(registry):
    """Dispatcher over an empty registry; tests finalize it when they need the catch-all."""
    return Dispatcher(registry)


@pytest.fixture
def finalized_dispatcher(registry, dispatcher):
    registry.finalize(catch_unhandled_event)
    return dispatcher


@pytest.fixture
def make_bot(settings):
    """Build a BotRequest for a payload."""
    def _make(payload):
        return BotRequest(payload, config=settings)
    return _make


@pytest.fixture
def task_created_payload():
    """A task.created webhook addressed to memorize@."""
    return {
        "version": "1",
        "event": "task.created",
        "task": {
            "id": 1001,
            "command": "memorize@my-bot.eml.bot",
            "reference_email": {
                "to": ["memorize@my-bot.eml.bot"],
                "cc": [],
                "from": "sender@example.com",
                "subject": "Remember this",
            },
            "stored_data": {"counter": 1, "memorize": {"frequency": "1week"}},
        },
        "source": {"from": "sender@example.com"},
        "user": {"email": "sender@example.com", "emails": ["sender@example.com"]},
        "mailbot": {"stored_data": {"enabled": True}},
    }


@pytest.fixture
def settings_viewed_payload():
    return {"version": "1", "event": "mailbot.settings_viewed", "mailbot": {"stored_data": {}}}
