"""
Trigger conditions deciding whether a listener applies to a webhook.

A condition is one of three shapes, fixed when the listener is registered:

    Literal("task.created")             exact event name
    Pattern(re.compile(r"^task\\."))    regex searched in the event name
    Predicate(fn)                       fn(payload) -> truthy

``as_trigger`` turns what developers pass to ``on()`` into one of these and
``matches`` is the only place they are evaluated.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Optional, Union

from .errors import InvalidTriggerError
from .paths import get_path


@dataclass(frozen=True)
class Literal:
    """Matches one event name exactly."""
    name: str

    def describe(self) -> str:
        return self.name


@dataclass(frozen=True, eq=False)
class Pattern:
    """Matches event names the regex finds a match in."""
    regex: "re.Pattern"

    def __eq__(self, other):
        if not isinstance(other, Pattern):
            return NotImplemented
        return (self.regex.pattern, self.regex.flags) == (other.regex.pattern, other.regex.flags)

    def __hash__(self):
        return hash((Pattern, self.regex.pattern, self.regex.flags))

    def describe(self) -> str:
        return f"/{self.regex.pattern}/"


@dataclass(frozen=True, eq=False)
class Predicate:
    """
    Matches when ``fn(payload)`` is truthy.

    Predicates built by the registration helpers carry a ``key`` describing
    what they test, so two registrations of the same condition compare
    equal. Without a key, equality falls back to the function's identity.
    """
    fn: Callable[[Dict[str, Any]], Any]
    key: Optional[Hashable] = None
    label: str = field(default="", compare=False)

    def __eq__(self, other):
        if not isinstance(other, Predicate):
            return NotImplemented
        if self.key is not None or other.key is not None:
            return self.key == other.key
        return self.fn is other.fn

    def __hash__(self):
        if self.key is not None:
            return hash((Predicate, self.key))
        return hash((Predicate, id(self.fn)))

    def describe(self) -> str:
        return self.label or getattr(self.fn, "__qualname__", repr(self.fn))


Trigger = Union[Literal, Pattern, Predicate]


def as_trigger(condition: Any) -> Trigger:
    """Interpret a registration argument; raises InvalidTriggerError for anything else."""
    if isinstance(condition, (Literal, Pattern, Predicate)):
        return condition
    if isinstance(condition, str):
        return Literal(condition)
    if isinstance(condition, re.Pattern):
        return Pattern(condition)
    if callable(condition):
        return Predicate(condition)
    raise InvalidTriggerError(condition)


def event_of(payload: Dict[str, Any]) -> str:
    event = payload.get("event") if isinstance(payload, dict) else None
    return "" if event is None else str(event)


def matches(trigger: Trigger, payload: Dict[str, Any]) -> bool:
    """Evaluate ``trigger`` against the raw webhook payload."""
    if isinstance(trigger, Literal):
        return event_of(payload) == trigger.name
    if isinstance(trigger, Pattern):
        return trigger.regex.search(event_of(payload)) is not None
    if isinstance(trigger, Predicate):
        return bool(trigger.fn(payload))
    raise InvalidTriggerError(trigger)


# ----------------------------------------------------------------------
# Scoped conditions used by on_command, on_action, on_event, ...
# ----------------------------------------------------------------------

SearchTerm = Union[str, "re.Pattern"]


def task_command(payload: Dict[str, Any]) -> Optional[str]:
    """The task's command address without its ``@domain`` part."""
    command = get_path(payload, "task.command", None)
    if not isinstance(command, str) or not command:
        return None
    return command.split("@")[0]


def _search_key(search: SearchTerm) -> Hashable:
    if isinstance(search, re.Pattern):
        return ("pattern", search.pattern, search.flags)
    return ("literal", search)


def search_matches(search: SearchTerm, value: Any) -> bool:
    """Exact equality for strings, regex search for patterns. Missing values never match."""
    if value is None:
        return False
    if isinstance(search, re.Pattern):
        return search.search(str(value)) is not None
    return value == search


def scoped_trigger(event: str, extract: Callable[[Dict[str, Any]], Any], search: SearchTerm, scope: str) -> Predicate:
    """
    Predicate requiring ``event`` AND a value pulled from the payload to match ``search``.

    Args:
        event: Event name the webhook must carry
        extract: Pulls the compared value (command, action, payload type) from the payload
        search: Exact string or compiled regex
        scope: Short name of what is compared, used for equality and logs
    """
    if not isinstance(search, (str, re.Pattern)):
        raise InvalidTriggerError(search)

    def condition(payload):
        return event_of(payload) == event and search_matches(search, extract(payload))

    label = f"{event} {scope}={search.pattern if isinstance(search, re.Pattern) else search}"
    return Predicate(condition, key=(scope, event, _search_key(search)), label=label)


def command_trigger(event: str, search: SearchTerm) -> Predicate:
    return scoped_trigger(event, task_command, search, "command")


def action_trigger(search: SearchTerm) -> Predicate:
    return scoped_trigger(
        "task.action_received", lambda payload: get_path(payload, "action.format", None), search, "action"
    )


def payload_type_trigger(namespace: str, search: SearchTerm) -> Predicate:
    return scoped_trigger(
        f"{namespace}.event_received", lambda payload: get_path(payload, "payload.type", None), search, "payload_type"
    )


def fut_hook_trigger(namespace: str, hook: str) -> Predicate:
    """Inter-bot event raised by FollowUpThen for one of its lifecycle hooks."""
    event = f"{namespace}.interbot_event"

    def condition(payload):
        hook_payload = payload.get("payload")
        return event_of(payload) == event and isinstance(hook_payload, dict) and hook_payload.get("fut_hook") == hook

    return Predicate(condition, key=("fut_hook", event, hook), label=f"{event} fut_hook={hook}")
