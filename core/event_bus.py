"""
In-process pub/sub for marketplace events.

publish() runs every handler for the event's type, in the order they were
subscribed, on the publishing thread. By then the order or invoice write
has committed, so a failing handler is logged and skipped.
"""

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, List, Type, Union

from core.events import MarketplaceEvent

logger = logging.getLogger(__name__)

Handler = Callable[[MarketplaceEvent], None]


class EventBus:
    """
    Routes events to handlers keyed by event class name.

    Usage:
        bus = EventBus()
        bus.subscribe(OrderPlaced, handle_order_placed(invoice_service))
        bus.publish(OrderPlaced.create(order=order))
    """

    def __init__(self):
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Union[str, Type[MarketplaceEvent]], handler: Handler):
        """
        Register a handler.

        Args:
            event_type: Event class, or its name (e.g. 'OrderPlaced')
            handler: Called with each published event of that type
        """
        name = event_type if isinstance(event_type, str) else event_type.__name__
        self._handlers[name].append(handler)

    def publish(self, event: MarketplaceEvent) -> int:
        """
        Deliver an event.

        Returns:
            Number of handlers that completed without raising
        """
        name = type(event).__name__
        handlers = self._handlers.get(name, [])
        delivered = 0

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(handler, "__name__", repr(handler)),
                    name,
                    event.event_id,
                )
            else:
                delivered += 1

        if handlers:
            logger.debug(f"{name} {event.event_id} delivered to {delivered}/{len(handlers)} handlers")
        return delivered
