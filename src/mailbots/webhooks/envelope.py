"""
Webhook Envelope
Request/response JSON pair for one inbound webhook.

The envelope owns the read and write rules handlers use to layer partial
updates onto a single outgoing document, and the terminal "responded"
state that guarantees exactly one response is sent per request.
"""
import asyncio
import copy
from enum import Enum
from typing import Any, Dict, Optional, Set

import structlog

from ..shared.config import API_VERSION
from ..shared.logging_config import get_listener_name
from .errors import ResponseKeyNotAllowedError
from .paths import MISSING, combine, get_path, has_path, is_mergeable, resolve, set_path

logger = structlog.get_logger(__name__)

TASK_DATA_ROOT = "task.stored_data"
MAILBOT_DATA_ROOT = "mailbot.stored_data"

# Response keys a FollowUpThen hook handler may write
FUT_HOOK_ALLOWED_PREFIXES = (
    "futUiAddition",
    "futUiAdditionBehavior",
    "task",
    "skillStatus",
    "endRequest",
)


class DispatchState(str, Enum):
    """Lifecycle of one webhook through the dispatcher."""
    RECEIVED = "received"
    MULTI_FIRE = "multi_fire"
    SINGLE_FIRE = "single_fire"
    RESPONDED = "responded"
    UNHANDLED = "unhandled"

    @property
    def is_terminal(self) -> bool:
        return self in (DispatchState.RESPONDED, DispatchState.UNHANDLED)


def _path_string(path) -> str:
    if isinstance(path, str):
        return path
    return ".".join(str(key) for key in path)


class WebhookEnvelope:
    """
    Inbound payload plus the response being built for it.

    ``request_json`` is never written to. ``response_json`` starts as
    ``{"version": API_VERSION}`` and is mutated by handlers through
    ``get``/``set`` until ``respond`` freezes the body that is sent.
    """

    def __init__(
        self,
        request_json: Optional[Dict[str, Any]],
        namespace: str = "mailbot",
        warn_on_conflicts: bool = False,
    ):
        self.request_json: Dict[str, Any] = request_json if request_json is not None else {}
        self.response_json: Dict[str, Any] = {"version": API_VERSION}
        self.namespace = namespace
        self.status_code = 200
        self.state = DispatchState.RECEIVED
        self.warn_on_conflicts = warn_on_conflicts

        self._sent_body: Optional[Dict[str, Any]] = None
        self._sent_status: Optional[int] = None
        self._responded = asyncio.Event()
        self._seeded: Set[str] = set()
        self._writers: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def transition(self, state: DispatchState) -> bool:
        """Move to ``state`` unless a terminal state was already reached."""
        if self.state.is_terminal:
            return False
        logger.debug("Dispatch state changed", previous=self.state.value, current=state.value)
        self.state = state
        return True

    def mark_unhandled(self) -> None:
        """Record that no listener handled this event, even if the catch-all replied."""
        self.state = DispatchState.UNHANDLED

    @property
    def already_responded(self) -> bool:
        return self._sent_body is not None

    @property
    def body(self) -> Dict[str, Any]:
        """The document sent to the caller, or the pending one if nothing was sent yet."""
        if self._sent_body is not None:
            return self._sent_body
        return self.response_json

    @property
    def response_status(self) -> int:
        """HTTP status sent with the body; later changes to ``status_code`` do not apply."""
        if self._sent_status is not None:
            return self._sent_status
        return self.status_code

    async def wait_responded(self) -> Dict[str, Any]:
        await self._responded.wait()
        return self._sent_body

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def get(self, path, default: Any = None, response_only: bool = False) -> Any:
        """
        Current value at ``path``.

        A value written to the response wins over the incoming value, even
        when it is falsy. When both are mappings they are shallow-merged with
        response keys taking precedence.

        Args:
            path: Dotted path such as ``task.reference_email.subject``
            default: Returned when neither side holds a value
            response_only: Ignore the incoming payload
        """
        pending = get_path(self.response_json, path)
        original = MISSING if response_only else get_path(self.request_json, path)
        return resolve(pending, original, default)

    def set(self, path, value: Any, merge: bool = True) -> Any:
        """
        Write ``value`` at ``path`` on the response.

        Mappings are shallow-merged into the mapping ``get(path)`` currently
        returns, so incoming keys are carried into the response, unless
        ``merge`` is false. Lists and scalars always replace. Returns the
        value now stored.
        """
        path_key = _path_string(path)
        self._check_allowed(path_key)

        pending = get_path(self.response_json, path)
        original = get_path(self.request_json, path) if merge and is_mergeable(value) else MISSING
        if is_mergeable(original):
            # Nested writes after the merge must never reach request_json
            original = copy.deepcopy(original)
        existing = resolve(pending, original, MISSING)
        stored = combine(existing, value, merge)
        set_path(self.response_json, path, stored)

        self._record_writer(path_key)
        logger.debug("Response value set", path=path_key, merged=stored is not value)
        return stored

    def has(self, path) -> bool:
        """True if ``path`` was written on the response."""
        return has_path(self.response_json, path)

    def _check_allowed(self, path_key: str) -> None:
        if not self.is_fut_hook():
            return
        if path_key.startswith(FUT_HOOK_ALLOWED_PREFIXES):
            return
        raise ResponseKeyNotAllowedError(path_key)

    def is_fut_hook(self) -> bool:
        """True when handling an inter-bot event raised by a FollowUpThen hook."""
        payload = self.request_json.get("payload")
        return (
            self.request_json.get("event") == f"{self.namespace}.interbot_event"
            and isinstance(payload, dict)
            and "fut_hook" in payload
        )

    def _record_writer(self, path_key: str) -> None:
        if not self.warn_on_conflicts or self.state != DispatchState.MULTI_FIRE:
            return

        writer = get_listener_name() or "unknown"
        previous = self._writers.get(path_key)
        if previous is not None and previous != writer:
            logger.warning(
                "Response path written by more than one listener; last write wins",
                path=path_key,
                previous_listener=previous,
                current_listener=writer,
            )
        self._writers[path_key] = writer

    # ------------------------------------------------------------------
    # Stored data
    # ------------------------------------------------------------------

    def _seed(self, root: str) -> None:
        """Copy incoming stored data forward once so partial writes merge against it."""
        if root in self._seeded:
            return
        self._seeded.add(root)

        if has_path(self.response_json, root):
            return
        incoming = get_path(self.request_json, root)
        if incoming is MISSING:
            return
        set_path(self.response_json, root, copy.deepcopy(incoming))

    def _get_data(self, root: str, key: Optional[str], default: Any) -> Any:
        path = f"{root}.{key}" if key else root
        return self.get(path, default)

    def _set_data(self, root: str, key_or_data, value: Any = MISSING, merge: bool = True) -> Any:
        self._seed(root)
        if isinstance(key_or_data, dict):
            return self.set(root, key_or_data, merge)
        if isinstance(key_or_data, str):
            if value is MISSING:
                raise TypeError("A value is required when setting stored data by key")
            return self.set(f"{root}.{key_or_data}", value, merge)
        raise TypeError(f"Stored data must be set with a dict or a key, got {type(key_or_data).__name__}")

    def get_task_data(self, key: Optional[str] = None, default: Any = None) -> Any:
        """Read from ``task.stored_data``."""
        return self._get_data(TASK_DATA_ROOT, key, default)

    def set_task_data(self, key_or_data, value: Any = MISSING, merge: bool = True) -> Any:
        """
        Write to ``task.stored_data``.

        Accepts either a dict merged into the stored data or a path
        relative to it plus a value:
            set_task_data({"memorize": {"count": 1}})
            set_task_data("memorize.count", 2)
        """
        return self._set_data(TASK_DATA_ROOT, key_or_data, value, merge)

    def get_mailbot_data(self, key: Optional[str] = None, default: Any = None) -> Any:
        """Read from ``mailbot.stored_data``."""
        return self._get_data(MAILBOT_DATA_ROOT, key, default)

    def set_mailbot_data(self, key_or_data, value: Any = MISSING, merge: bool = True) -> Any:
        """Write to ``mailbot.stored_data``; same forms as ``set_task_data``."""
        return self._set_data(MAILBOT_DATA_ROOT, key_or_data, value, merge)

    # ------------------------------------------------------------------
    # Terminal send
    # ------------------------------------------------------------------

    def respond(self, partial: Optional[Dict[str, Any]] = None) -> bool:
        """
        Merge ``partial`` into the response and send it.

        Only the first call sends. Later calls are ignored and return False.
        """
        if self.already_responded:
            logger.warning(
                "Webhook already responded; ignoring additional response",
                state=self.state.value,
                listener=get_listener_name(),
            )
            return False

        if partial:
            self.response_json.update(partial)

        self._sent_body = copy.deepcopy(self.response_json)
        self._sent_status = self.status_code
        self.transition(DispatchState.RESPONDED)
        self._responded.set()

        logger.debug("Webhook response sent", status_code=self.status_code, keys=sorted(self._sent_body))
        return True

    def is_unhandled(self) -> bool:
        """True if nothing but the version was written to the response."""
        return self.response_json == {"version": API_VERSION}

    def __repr__(self):
        return (
            f"WebhookEnvelope(event={self.request_json.get('event')!r}, "
            f"state={self.state.value}, responded={self.already_responded})"
        )
