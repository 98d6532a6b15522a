"""
MailBots
Registration surface for bot developers.

    from mailbots import MailBots

    mailbot = MailBots()

    @mailbot.on_command("memorize")
    async def memorize(bot):
        bot.webhook.quick_reply("Got it")
        bot.webhook.respond()

    mailbot.listen()
"""
import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Optional

import structlog
import uvicorn

from .app import create_app
from .bot_request import BotRequest
from .shared.config import Settings, get_settings
from .shared.logging_config import initialize_logging
from .webhooks.dispatcher import Dispatcher, ErrorHandler, catch_unhandled_event
from .webhooks.envelope import WebhookEnvelope
from .webhooks.errors import ConfigurationError
from .webhooks.registry import ListenerCallback, ListenerRegistry
from .webhooks.triggers import (
    SearchTerm,
    action_trigger,
    command_trigger,
    fut_hook_trigger,
    payload_type_trigger,
)

logger = structlog.get_logger(__name__)

SKILL_ENTRY_POINT = "register"


def _import_skill_file(path: Path) -> ModuleType:
    """Import a skill module from a file path."""
    spec = importlib.util.spec_from_file_location(f"mailbots_skill_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Skill file could not be imported: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _skill_entry_point(module: ModuleType) -> Optional[ListenerCallback]:
    entry_point = getattr(module, SKILL_ENTRY_POINT, None)
    return entry_point if callable(entry_point) else None


def _fut_hook(hook: str):
    """Build the registration method for one FollowUpThen hook."""

    def register(self, callback: Optional[ListenerCallback] = None):
        return self.on(fut_hook_trigger(self.config.event_namespace, hook), callback, multi_fire=True)

    register.__doc__ = f"Multi-fire listener for the ``{hook}`` FollowUpThen hook."
    return register


class MailBots:
    """
    One bot: its settings, listeners, error handler and HTTP app.

    Every ``on*`` method takes the callback as its last argument or, when
    it is omitted, returns a decorator.
    """

    def __init__(self, settings: Optional[Settings] = None, **overrides: Any):
        if settings is None:
            settings = Settings(**overrides) if overrides else get_settings()
        elif overrides:
            settings = settings.model_copy(update=overrides)

        if not settings.client_id or not settings.client_secret:
            raise ConfigurationError(
                "MailBots is not configured: CLIENT_ID and CLIENT_SECRET are required"
            )

        self.config = settings
        self.registry = ListenerRegistry()
        self.dispatcher = Dispatcher(self.registry)
        self._app = None

        logger.debug("MailBots instance created", mailbot_id=settings.mailbot_id, webhook_route=settings.webhook_route)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on(self, condition: Any, callback: Optional[ListenerCallback] = None, multi_fire: bool = False):
        """
        Register a listener for webhooks matching ``condition``.

        Args:
            condition: Event name, compiled regex or ``fn(payload) -> bool``
            callback: ``fn(bot)``, sync or async
            multi_fire: Run alongside every other matching multi-fire listener
                instead of competing for first match
        """
        if callback is None:
            def decorator(fn: ListenerCallback) -> ListenerCallback:
                self.registry.add(condition, fn, multi_fire=multi_fire)
                return fn
            return decorator

        self.registry.add(condition, callback, multi_fire=multi_fire)
        return callback

    def on_command(self, search: SearchTerm, callback: Optional[ListenerCallback] = None):
        """Task created with a command equal to (or matching) ``search``."""
        return self.on(command_trigger("task.created", search), callback)

    def on_trigger(self, search: SearchTerm, callback: Optional[ListenerCallback] = None):
        """Task became due; matched on its command."""
        return self.on(command_trigger("task.triggered", search), callback)

    def on_task_viewed(self, search: SearchTerm, callback: Optional[ListenerCallback] = None):
        return self.on(command_trigger("task.viewed", search), callback)

    def on_action(self, search: SearchTerm, callback: Optional[ListenerCallback] = None):
        """Email action received; matched on ``action.format``."""
        return self.on(action_trigger(search), callback)

    def on_event(self, search: SearchTerm, callback: Optional[ListenerCallback] = None):
        """Custom event posted to the bot; matched on ``payload.type``."""
        return self.on(payload_type_trigger(self.config.event_namespace, search), callback)

    def on_settings_viewed(self, callback: Optional[ListenerCallback] = None):
        """All of these fire so that each skill can add its own settings page."""
        return self.on(f"{self.config.event_namespace}.settings_viewed", callback, multi_fire=True)

    def on_settings_submit(self, callback: Optional[ListenerCallback] = None):
        return self.on(f"{self.config.event_namespace}.settings_onsubmit", callback, multi_fire=True)

    def before_settings_saved(self, callback: Optional[ListenerCallback] = None):
        """
        Runs before settings are saved. Responding with a failed webhook
        status aborts the save.
        """
        return self.on(f"{self.config.event_namespace}.settings_pre_save", callback, multi_fire=True)

    on_fut_create_user = _fut_hook("onFutCreateUser")
    on_fut_create_non_user = _fut_hook("onFutCreateNonUser")
    on_fut_preview_user = _fut_hook("onFutPreviewUser")
    on_fut_preview_non_user = _fut_hook("onFutPreviewNonUser")
    on_fut_view_user = _fut_hook("onFutViewUser")
    on_fut_view_non_user = _fut_hook("onFutViewNonUser")
    on_fut_trigger_user = _fut_hook("onFutTriggerUser")
    on_fut_trigger_non_user = _fut_hook("onFutTriggerNonUser")
    on_fut_task_update = _fut_hook("onFutTaskUpdate")
    on_fut_action = _fut_hook("onFutAction")

    def set_error_handler(self, handler: Optional[ErrorHandler] = None):
        """
        Replace the default error handler.

        ``handler(error, bot)`` may respond itself. Errors it raises are not
        caught.
        """
        if handler is None:
            def decorator(fn: ErrorHandler) -> ErrorHandler:
                self.dispatcher.set_error_handler(fn)
                return fn
            return decorator

        self.dispatcher.set_error_handler(handler)
        return handler

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    def load_skill(self, skill: Any, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Register the listeners of one skill, or of every skill in a directory.

        Args:
            skill: ``fn(mailbot, config)``, a module defining ``register(mailbot, config)``,
                a path to such a module, or a directory of them
            config: Passed through to each skill

        Raises:
            ConfigurationError: If ``skill`` is none of the above
        """
        if isinstance(skill, ModuleType):
            self._load_skill_module(skill, config)
            return

        if callable(skill):
            skill(self, config)
            logger.debug("Skill loaded", skill=getattr(skill, "__name__", repr(skill)))
            return

        if isinstance(skill, (str, Path)):
            path = Path(skill)
            if path.is_file():
                self._load_skill_module(_import_skill_file(path), config)
                return
            if path.is_dir():
                self._load_skill_directory(path, config)
                return

        raise ConfigurationError(f"Skill type unrecognized by load_skill(): {skill!r}")

    def _load_skill_module(self, module: ModuleType, config: Optional[Dict[str, Any]]) -> None:
        entry_point = _skill_entry_point(module)
        if entry_point is None:
            raise ConfigurationError(
                f"Skill module {module.__name__} does not define {SKILL_ENTRY_POINT}(mailbot, config)"
            )
        entry_point(self, config)
        logger.debug("Skill loaded", skill=module.__name__)

    def _load_skill_directory(self, directory: Path, config: Optional[Dict[str, Any]]) -> None:
        for path in sorted(directory.iterdir()):
            if path.is_dir() or path.suffix != ".py":
                continue

            module = _import_skill_file(path)
            entry_point = _skill_entry_point(module)
            if entry_point is None:
                logger.warning(
                    "Skill file was not loaded; it does not define an entry point that accepts mailbot",
                    path=str(path),
                    entry_point=SKILL_ENTRY_POINT,
                )
                continue

            entry_point(self, config)
            logger.debug("Skill loaded", skill=path.stem, path=str(path))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def finalize(self) -> None:
        """Append the catch-all listener; later single-fire listeners never run."""
        self.registry.finalize(catch_unhandled_event)

    def create_request(
        self,
        payload: Optional[Dict[str, Any]],
        request: Any = None,
        request_id: Optional[str] = None,
    ) -> BotRequest:
        return BotRequest(payload, config=self.config, request=request, request_id=request_id)

    async def handle_webhook(
        self,
        payload: Optional[Dict[str, Any]],
        request: Any = None,
        request_id: Optional[str] = None,
    ) -> WebhookEnvelope:
        """
        Dispatch one webhook payload.

        Returns once the webhook has been answered; the envelope's ``body``
        and ``response_status`` are what should be sent back.
        """
        self.finalize()
        bot = self.create_request(payload, request=request, request_id=request_id)
        return await self.dispatcher.dispatch_until_responded(bot)

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def export_app(self):
        """The FastAPI app serving this bot, for use with any ASGI server."""
        self.finalize()
        if self._app is None:
            self._app = create_app(self)
        return self._app

    @property
    def app(self):
        return self.export_app()

    def listen(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Configure logging and serve the webhook route with uvicorn."""
        initialize_logging(self.config)
        app = self.export_app()

        host = host or self.config.host
        port = port or self.config.port
        logger.info("Your MailBot is listening", host=host, port=port, webhook_route=self.config.webhook_route)

        # Logging is already configured; keep uvicorn from replacing the handlers
        uvicorn.run(app, host=host, port=port, log_config=None)
