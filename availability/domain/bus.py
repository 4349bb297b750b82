"""Synchronous in-process message bus."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventBus:
    """Publish/subscribe bus keyed by message type.

    Handlers run synchronously, in registration order, on the publishing
    thread. A handler exception propagates to the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable]] = defaultdict(list)

    def subscribe(self, message_type: type, handler: Callable) -> None:
        self._subscribers[message_type].append(handler)

    def publish(self, message: Any) -> None:
        handlers = list(self._subscribers.get(type(message), []))
        logger.debug("Publishing %s to %d handler(s)", type(message).__name__, len(handlers))
        for handler in handlers:
            handler(message)
