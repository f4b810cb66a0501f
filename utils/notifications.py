"""
Change notifications for real-time subscribers.

UI collaborators register callbacks to refresh when proposals change. The
engines publish after their transaction has committed; they behave the same
with or without subscribers, and a failing subscriber never affects the
mutation that triggered it.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

WILDCARD = '*'

Subscriber = Callable[[str, Dict[str, Any]], None]


class ChangeNotifier:
    """Simple in-process publish-subscribe channel."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        """
        Register ``callback`` for ``topic`` (or ``'*'`` for every topic).

        Returns:
            A function that removes the subscription when called.
        """
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe():
            self.unsubscribe(topic, callback)

        return unsubscribe

    def unsubscribe(self, topic: str, callback: Subscriber) -> None:
        with self._lock:
            callbacks = self._subscribers.get(topic, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """
        Deliver ``payload`` to every subscriber of ``topic``.

        Returns:
            Number of subscribers that handled the event without raising.
        """
        with self._lock:
            callbacks = list(self._subscribers.get(topic, [])) + list(self._subscribers.get(WILDCARD, []))

        delivered = 0
        for callback in callbacks:
            try:
                callback(topic, payload)
                delivered += 1
            except Exception:
                logger.exception("Subscriber %r failed for topic %s", callback, topic)
        return delivered


# Default channel used by the HTTP application
change_notifier = ChangeNotifier()
