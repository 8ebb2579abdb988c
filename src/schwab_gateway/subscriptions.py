"""Stream Subscription Registry.

Tracks which instruments are streamed and issues ADD / UNSUBS commands over
the stream session. At most one live entry exists per instrument.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import asyncio
import logging

from src.schwab_gateway.mapping import get_stream_service
from src.schwab_gateway.models import ConcurrentMap, Instrument
from src.schwab_gateway.streaming import StreamSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionEntry:
    """An active stream registration."""
    name: str
    request_id: int
    correlation_id: str
    service: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SubscriptionRegistry:
    """Remove-then-add subscription management.

    Example:
        registry = SubscriptionRegistry(session)
        await registry.subscribe(Instrument(name="AAPL"))
        registry.names  # ["AAPL"]
    """

    def __init__(self, session: StreamSession, fields: Optional[list[int]] = None):
        self._session = session
        self._fields = ",".join(str(f) for f in (fields if fields is not None else range(10)))
        self._entries = ConcurrentMap()
        self._locks: dict[str, asyncio.Lock] = {}
        session.on_close(self.clear)

    @property
    def entries(self) -> dict[str, SubscriptionEntry]:
        return self._entries.snapshot()

    @property
    def names(self) -> list[str]:
        return sorted(self._entries.snapshot())

    def get(self, name: str) -> Optional[SubscriptionEntry]:
        return self._entries.get(name)

    def _lock_for(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    async def subscribe(self, instrument: Instrument) -> SubscriptionEntry:
        """Replace any existing registration with a fresh ADD."""
        async with self._lock_for(instrument.name):
            await self._remove(instrument.name)
            service = get_stream_service(instrument)
            cmd = await self._session.send(
                service,
                "ADD",
                {"keys": instrument.name, "fields": self._fields},
            )
            entry = SubscriptionEntry(
                name=instrument.name,
                request_id=cmd.request_id,
                correlation_id=cmd.correlation_id,
                service=service,
            )
            self._entries[instrument.name] = entry
            logger.info(f"Subscribed {instrument.name} on {service} (request {cmd.request_id})")
            return entry

    async def unsubscribe(self, instrument: Instrument) -> bool:
        """Remove a live registration. Returns False if none existed."""
        async with self._lock_for(instrument.name):
            return await self._remove(instrument.name)

    async def _remove(self, name: str) -> bool:
        entry = self._entries.pop(name, None)
        if entry is None:
            return False
        await self._session.send(entry.service, "UNSUBS", {"keys": name})
        logger.info(f"Unsubscribed {name} from {entry.service}")
        return True

    def clear(self) -> None:
        """Forget all entries. Runs whenever the session closes."""
        self._entries.clear()
