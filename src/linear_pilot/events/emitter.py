"""Event sinks for agent observability.

- EventEmitter: abstract interface
- LoggingEventEmitter: one log record per event
- CompositeEventEmitter: fans out to several sinks
- NullEventEmitter: discards events

A failing sink is logged and never interrupts the phase that emitted the
event.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from src.linear_pilot.events.models import EventType, PilotEvent


logger = logging.getLogger(__name__)

EVENT_LOG_LEVELS: Dict[EventType, int] = {
    EventType.STATE_TRANSITION: logging.INFO,
    EventType.COMPLETION: logging.INFO,
    EventType.ERROR: logging.ERROR,
}


class EventEmitter(ABC):
    @abstractmethod
    async def emit(self, event: PilotEvent) -> None:
        """Publish ``event`` to the sink."""


class LoggingEventEmitter(EventEmitter):
    """Writes each event as a log record with its fields in ``extra``."""

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    async def emit(self, event: PilotEvent) -> None:
        self._logger.log(
            EVENT_LOG_LEVELS.get(event.event_type, logging.INFO),
            "%s: %s",
            event.event_type.value,
            event.subject,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Delegates to several sinks; one failing sink does not starve the rest."""

    def __init__(self, emitters: Iterable[EventEmitter] = ()):
        self._emitters = list(emitters)

    async def emit(self, event: PilotEvent) -> None:
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception:
                logger.exception(
                    "Event sink %s failed",
                    type(emitter).__name__,
                    extra={"event_type": event.event_type.value, "subject": event.subject},
                )


class NullEventEmitter(EventEmitter):
    async def emit(self, event: PilotEvent) -> None:
        return None
