"""EventBus and share event types consumed by other subsystems."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class ShareEventType(Enum):
    """Types of sharing notifications (versioning, trash, encryption listen to these)."""

    PRE_UNSHARE = "pre_unshare"
    PRE_UNSHARE_ALL = "pre_unshareAll"
    POST_SHARED = "post_shared"


@dataclass(frozen=True, slots=True)
class ShareEvent:
    """Immutable record of a sharing mutation.

    Attributes:
        event_type: The kind of mutation.
        item_type: Item type of the affected share(s).
        item_source: Item source of the affected share(s).
        payload: Full edge payload (``post_shared``, ``pre_unshare``) or
            ``{"shares": [...]}`` (``pre_unshareAll``).
    """

    event_type: ShareEventType
    item_type: str
    item_source: str
    payload: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Fans sharing notifications out to listeners.

    Listeners are awaited one at a time, in the order they were added.
    A listener that raises is logged and skipped, so the share
    mutation that produced the event still goes through.
    """

    def __init__(self) -> None:
        self._listeners: dict[ShareEventType, list[Callable[..., Any]]] = defaultdict(list)

    def register(self, event_type: ShareEventType, handler: Callable[..., Any]) -> None:
        """Listen for *event_type* with the coroutine function *handler*."""
        self._listeners[event_type].append(handler)

    def unregister(self, event_type: ShareEventType, handler: Callable[..., Any]) -> bool:
        """Stop *handler* listening for *event_type*. Return False if it was not listening."""
        listeners = self._listeners.get(event_type, [])
        if handler not in listeners:
            return False
        listeners.remove(handler)
        return True

    async def emit(self, event: ShareEvent) -> None:
        """Await every listener of ``event.event_type`` with *event*."""
        # Listeners may unregister themselves while being notified
        for handler in tuple(self._listeners.get(event.event_type, ())):
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Share listener %r raised on %s for %s %s",
                    handler,
                    event.event_type.value,
                    event.item_type,
                    event.item_source,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        """Number of registrations over all event types."""
        return sum(map(len, self._listeners.values()))

    def clear(self) -> None:
        """Drop every listener."""
        self._listeners.clear()
