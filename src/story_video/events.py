"""Typed publish/subscribe channel between runs and their transports."""

import logging
from typing import Awaitable, Callable, Union

from story_video.models import ProgressEvent, RunFailed, RunFinished

logger = logging.getLogger(__name__)

RunEvent = Union[ProgressEvent, RunFinished, RunFailed]
Subscriber = Callable[[RunEvent], Awaitable[None]]

ALL_SESSIONS = "*"


class ProgressChannel:
    """Delivers run events to subscribers keyed by session id.

    Subscribers are async callables. A subscriber that raises is logged and
    skipped; transport problems never fail the run that published the event.
    """

    def __init__(self):
        self.subscribers: dict[str, list[Subscriber]] = {}

    def subscribe(self, session_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for one session's events.

        Returns:
            A function that removes the subscription; calling it twice is harmless.
        """
        self.subscribers.setdefault(session_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self.subscribers.get(session_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self.subscribers.pop(session_id, None)

        return unsubscribe

    def subscribe_all(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every session's events."""
        return self.subscribe(ALL_SESSIONS, callback)

    def subscriber_count(self, session_id: str) -> int:
        return len(self.subscribers.get(session_id, []))

    async def publish(self, event: RunEvent) -> None:
        """Deliver ``event`` to its session's subscribers, then to global ones."""
        callbacks = [
            *self.subscribers.get(event.session_id, []),
            *self.subscribers.get(ALL_SESSIONS, []),
        ]
        for callback in callbacks:
            try:
                await callback(event)
            except Exception as e:
                logger.warning(
                    f"Subscriber failed on {type(event).__name__} for session "
                    f"{event.session_id}: {e}"
                )
