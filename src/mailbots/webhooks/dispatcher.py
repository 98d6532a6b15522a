"""
Webhook Dispatcher
Routes one inbound webhook to the listeners registered on a bot.

Dispatch runs in two phases:

1. Every matching multi-fire listener runs concurrently. If at least one
   matched, the accumulated response is sent once they have all settled.
2. Otherwise the first matching single-fire listener, in registration
   order, runs alone and is expected to respond.

Each listener call is wrapped so that its errors go to the bot's error
handler instead of the HTTP layer. Only a failure of the error handler
itself leaves ``dispatch``.
"""
import asyncio
import inspect
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from ..shared.logging_config import CorrelationContext, listener_name
from .envelope import DispatchState, WebhookEnvelope
from .errors import ConfigurationError
from .registry import Listener, ListenerRegistry
from .triggers import event_of, matches

logger = structlog.get_logger(__name__)

ErrorHandler = Callable[[Exception, Any], Any]

GENERIC_ERROR_MESSAGE = (
    "Your MailBot caught an unhandled error. Please contact the bot developer. "
    "If you are the bot developer, use mailbot.set_error_handler() to fail gracefully. "
    "View application logs for details."
)


def default_error_handler(error: Exception, bot) -> None:
    """Log the error and reply with a generic 500 failure body."""
    config = getattr(bot, "config", None)
    silenced = config is not None and config.monitoring.silence_default_error_handler
    if not silenced:
        logger.error(
            "Unhandled error in webhook listener",
            error=str(error),
            error_type=type(error).__name__,
            exc_info=error,
        )

    if bot.webhook.already_responded:
        return

    bot.webhook.status_code = 500
    bot.webhook.respond({"webhook": {"status": "failed", "message": GENERIC_ERROR_MESSAGE}})


def catch_unhandled_event(bot) -> None:
    """Acknowledge events no listener claimed."""
    event = bot.event or ""
    logger.debug("Event unhandled", webhook_event=event)
    bot.webhook.respond({
        "webhook": {
            "status": "success",
            "message": f"Webhook received but not handled: {event}",
        }
    })


class DispatcherStats:
    """Counters for dispatcher activity since startup."""

    def __init__(self):
        self.webhooks_received = 0
        self.multi_fire_invocations = 0
        self.single_fire_invocations = 0
        self.handler_errors = 0
        self.unhandled_events = 0
        self.total_dispatch_time_ms = 0.0
        self.average_dispatch_time_ms = 0.0
        self.dispatches_completed = 0
        self.started_at = datetime.now(timezone.utc)

    def record_dispatch(self, duration_ms: float) -> None:
        self.dispatches_completed += 1
        self.total_dispatch_time_ms += duration_ms
        self.average_dispatch_time_ms = self.total_dispatch_time_ms / self.dispatches_completed

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary for serialization."""
        uptime = datetime.now(timezone.utc) - self.started_at
        return {
            "webhooks_received": self.webhooks_received,
            "multi_fire_invocations": self.multi_fire_invocations,
            "single_fire_invocations": self.single_fire_invocations,
            "handler_errors": self.handler_errors,
            "unhandled_events": self.unhandled_events,
            "dispatches_completed": self.dispatches_completed,
            "average_dispatch_time_ms": round(self.average_dispatch_time_ms, 2),
            "uptime_seconds": int(uptime.total_seconds()),
            "started_at": self.started_at.isoformat(),
        }


class Dispatcher:
    """
    Runs the listeners of one registry against incoming webhooks.

    The registry and error handler belong to a single bot; nothing here is
    shared between bots.
    """

    def __init__(self, registry: ListenerRegistry, error_handler: Optional[ErrorHandler] = None):
        self.registry = registry
        self.error_handler = error_handler
        self.stats = DispatcherStats()
        self._background: Set[asyncio.Task] = set()

    def set_error_handler(self, handler: ErrorHandler) -> None:
        if not callable(handler):
            raise ConfigurationError(f"Error handler must be callable, got {type(handler).__name__}")
        self.error_handler = handler

    # ------------------------------------------------------------------
    # Error boundary
    # ------------------------------------------------------------------

    async def _handle_error(self, error: Exception, bot) -> None:
        """Pass ``error`` to the error handler. Errors raised by the handler propagate."""
        handler = self.error_handler or default_error_handler
        result = handler(error, bot)
        if inspect.isawaitable(result):
            await result

    async def _invoke(self, listener: Listener, bot) -> Any:
        token = listener_name.set(listener.name)
        started = time.perf_counter()
        try:
            result = listener.callback(bot)
            if inspect.isawaitable(result):
                result = await result
            logger.debug(
                "Listener finished",
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                multi_fire=listener.multi_fire,
            )
            return result
        except Exception as e:
            self.stats.handler_errors += 1
            logger.warning("Listener raised an error", error=str(e), error_type=type(e).__name__)
            await self._handle_error(e, bot)
        finally:
            listener_name.reset(token)

    async def _should_fire(self, listener: Listener, bot) -> bool:
        """Evaluate a trigger; a condition that raises counts as a listener error."""
        token = listener_name.set(listener.name)
        try:
            return matches(listener.trigger, bot.webhook.request_json)
        except Exception as e:
            self.stats.handler_errors += 1
            logger.warning("Trigger condition raised an error", error=str(e), error_type=type(e).__name__)
            await self._handle_error(e, bot)
            return False
        finally:
            listener_name.reset(token)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_multi_fire(self, bot) -> bool:
        """Run all matching multi-fire listeners; True if any matched."""
        envelope: WebhookEnvelope = bot.webhook
        envelope.transition(DispatchState.MULTI_FIRE)

        matched: List[Listener] = []
        for listener in list(self.registry.multi_fire):
            if await self._should_fire(listener, bot):
                matched.append(listener)

        if not matched:
            return False

        logger.debug("Running multi-fire listeners", listeners=[listener.name for listener in matched])
        self.stats.multi_fire_invocations += len(matched)

        # Wait for every listener; a failing sibling never cancels the others
        outcomes = await asyncio.gather(
            *(self._invoke(listener, bot) for listener in matched),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return True

    async def _run_single_fire(self, bot) -> None:
        """Run the first matching single-fire listener only."""
        envelope: WebhookEnvelope = bot.webhook
        envelope.transition(DispatchState.SINGLE_FIRE)

        for listener in list(self.registry.single_fire):
            if not await self._should_fire(listener, bot):
                if envelope.already_responded:
                    return
                continue

            is_catch_all = listener is self.registry.catch_all
            if is_catch_all:
                self.stats.unhandled_events += 1
            else:
                self.stats.single_fire_invocations += 1

            await self._invoke(listener, bot)
            if is_catch_all:
                envelope.mark_unhandled()
            return

        self.stats.unhandled_events += 1
        logger.info("No listener matched webhook", webhook_event=event_of(envelope.request_json))
        envelope.respond()
        envelope.mark_unhandled()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def dispatch(self, bot) -> WebhookEnvelope:
        """
        Run one webhook through both phases and make sure it was answered.

        Returns:
            The envelope, in the RESPONDED or UNHANDLED state
        """
        envelope: WebhookEnvelope = bot.webhook
        started = time.perf_counter()
        self.stats.webhooks_received += 1

        with CorrelationContext(bot.request_id, bot.event):
            logger.info("Webhook received", webhook_event=bot.event)
            try:
                fired = await self._run_multi_fire(bot)

                if envelope.already_responded:
                    logger.debug("Webhook answered during multi-fire phase", state=envelope.state.value)
                elif fired:
                    envelope.respond()
                else:
                    await self._run_single_fire(bot)
                    if not envelope.already_responded:
                        logger.warning("Listener finished without responding; sending accumulated response")
                        envelope.respond()
            finally:
                duration_ms = (time.perf_counter() - started) * 1000
                self.stats.record_dispatch(duration_ms)
                logger.info(
                    "Webhook dispatched",
                    webhook_event=bot.event,
                    state=envelope.state.value,
                    status_code=envelope.response_status,
                    duration_ms=round(duration_ms, 2),
                )

        return envelope

    async def dispatch_until_responded(self, bot) -> WebhookEnvelope:
        """
        Dispatch and return as soon as the webhook has been answered.

        A listener may respond and keep working; the remainder of its
        dispatch continues in the background and failures there are logged.
        Errors raised before a response exists propagate to the caller.
        """
        envelope: WebhookEnvelope = bot.webhook
        dispatch_task = asyncio.create_task(self.dispatch(bot))
        responded_task = asyncio.create_task(envelope.wait_responded())

        done, _ = await asyncio.wait({dispatch_task, responded_task}, return_when=asyncio.FIRST_COMPLETED)

        if dispatch_task in done:
            responded_task.cancel()
            dispatch_task.result()
        else:
            logger.debug("Response sent before dispatch finished; continuing in background", request_id=bot.request_id)
            self._background.add(dispatch_task)
            dispatch_task.add_done_callback(self._on_background_done)

        return envelope

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Webhook dispatch failed after the response was sent",
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error,
            )

    @property
    def pending(self) -> int:
        """Dispatches still running after their response was sent."""
        return len(self._background)

    async def drain(self) -> None:
        """Wait for background dispatches, used on shutdown."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
