"""
Broadcast channel seam for decision and trade-executed events.

Delivery is at-most-once and best effort: publish never raises.
"""
import logging
from typing import List, Optional, Protocol

import httpx

from .schemas import BroadcastEvent

logger = logging.getLogger("persona_trader.agents.broadcast")


class Broadcaster(Protocol):
    async def publish(self, event: BroadcastEvent) -> bool:
        ...


class InMemoryBroadcaster:
    """Keeps published events in a list. Used when no transport is configured."""

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self.events: List[BroadcastEvent] = []

    async def publish(self, event: BroadcastEvent) -> bool:
        self.events.append(event)
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]
        return True


class WebhookBroadcaster:
    """POSTs each event as JSON to a fan-out service."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def publish(self, event: BroadcastEvent) -> bool:
        try:
            response = await self.client.post(self.url, json=event.model_dump(mode="json"))
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Broadcast of {event.event_type} {event.id} failed: {e}")
            return False

    async def close(self):
        await self.client.aclose()
