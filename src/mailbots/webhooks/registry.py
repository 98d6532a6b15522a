"""
Listener Registry
Ordered single-fire and multi-fire listeners owned by one bot.

Listeners are only ever appended. Single-fire order decides which listener
wins; multi-fire order carries no meaning at dispatch time.
"""
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import structlog

from .errors import ConfigurationError
from .triggers import Pattern, Trigger, as_trigger

logger = structlog.get_logger(__name__)

ListenerCallback = Callable[..., Any]

CATCH_ALL = Pattern(re.compile(r".*"))


@dataclass
class Listener:
    """A trigger condition and the callback it guards."""
    trigger: Trigger
    callback: ListenerCallback
    multi_fire: bool = False
    name: str = ""

    def __post_init__(self):
        if not self.name:
            self.name = getattr(self.callback, "__name__", None) or repr(self.callback)

    def same_registration(self, trigger: Trigger, callback: ListenerCallback) -> bool:
        return self.trigger == trigger and self.callback is callback

    def to_dict(self):
        return {
            "name": self.name,
            "trigger": self.trigger.describe(),
            "multi_fire": self.multi_fire,
        }


class ListenerRegistry:
    """Two append-only listener sequences plus the catch-all appended last."""

    def __init__(self):
        self.single_fire: List[Listener] = []
        self.multi_fire: List[Listener] = []
        self.catch_all: Optional[Listener] = None

    @property
    def finalized(self) -> bool:
        return self.catch_all is not None

    def add(self, condition: Any, callback: ListenerCallback, multi_fire: bool = False) -> Optional[Listener]:
        """
        Register a listener.

        Returns the new listener, or None if the same condition was already
        registered with the same callback on the same sequence.

        Raises:
            InvalidTriggerError: ``condition`` is not a string, regex or callable
            ConfigurationError: ``callback`` is not callable
        """
        trigger = as_trigger(condition)
        if not callable(callback):
            raise ConfigurationError(f"Listener callback must be callable, got {type(callback).__name__}")

        sequence = self.multi_fire if multi_fire else self.single_fire
        for existing in sequence:
            if existing.same_registration(trigger, callback):
                logger.debug("Duplicate listener ignored", listener=existing.name, trigger=trigger.describe())
                return None

        listener = Listener(trigger=trigger, callback=callback, multi_fire=multi_fire)
        sequence.append(listener)

        if self.finalized and not multi_fire:
            logger.warning(
                "Single-fire listener registered after the catch-all; it will never run",
                listener=listener.name,
                trigger=trigger.describe(),
            )
        else:
            logger.debug(
                "Listener registered",
                listener=listener.name,
                trigger=trigger.describe(),
                multi_fire=multi_fire,
            )
        return listener

    def finalize(self, catch_all_callback: ListenerCallback) -> Listener:
        """Append the catch-all single-fire listener once."""
        if self.catch_all is None:
            self.catch_all = Listener(trigger=CATCH_ALL, callback=catch_all_callback, name="catch_unhandled_event")
            self.single_fire.append(self.catch_all)
            logger.debug("Listener registry finalized", single_fire=len(self.single_fire), multi_fire=len(self.multi_fire))
        return self.catch_all

    def __len__(self):
        return len(self.single_fire) + len(self.multi_fire)

    def to_dict(self):
        return {
            "single_fire": [listener.to_dict() for listener in self.single_fire],
            "multi_fire": [listener.to_dict() for listener in self.multi_fire],
        }
