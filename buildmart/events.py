"""Domain events published by the services once their transaction has committed.

Each envelope is kept in the bounded ``published_events`` buffer and handed to
the in-process subscribers registered for its type.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Callable
from typing import Any

from buildmart.core.context import get_correlation_id

EventEnvelope = dict[str, Any]
EventHandler = Callable[[EventEnvelope], None]

published_events: deque[EventEnvelope] = deque(maxlen=500)
_subscribers: dict[str, list[EventHandler]] = defaultdict(list)


def subscribe(event_type: str, handler: EventHandler) -> None:
    handlers = _subscribers[event_type]
    if handler not in handlers:
        handlers.append(handler)


def publish(event_type: str, payload: dict[str, Any], *, actor_user_id: str | None = None) -> EventEnvelope:
    envelope: EventEnvelope = {
        "event_type": event_type,
        "payload": payload,
        "correlation_id": get_correlation_id(),
        "actor_user_id": actor_user_id,
    }
    published_events.append(envelope)
    for handler in list(_subscribers.get(event_type, ())):
        handler(envelope)
    return envelope
