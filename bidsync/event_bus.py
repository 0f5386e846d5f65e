# bidsync/event_bus.py
from typing import Any, Callable, Dict, List

from utils.logger import logger

Handler = Callable[..., None]

class EventBus:
    """
    Lightweight synchronous pub/sub for entity change notifications.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, List[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a synchronous callback; returns a function that removes it."""
        self._subs.setdefault(topic, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._subs.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, topic: str, *payload: Any) -> None:
        """Publish an event to subscribers in registration order."""
        for h in list(self._subs.get(topic, [])):
            try:
                h(*payload)
            except Exception:
                logger.exception(f"EventBus handler failed on topic={topic}")

    def subscriber_count(self, topic: str) -> int:
        return len(self._subs.get(topic, []))


def topic_for(kind: str) -> str:
    return f"{kind}.update"

