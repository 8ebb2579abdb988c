"""Streaming Quote Aggregation.

Decodes level-one data items into normalized points and folds them into
each instrument's time-bucketed groups.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import logging

from src.schwab_gateway.events import EventSink
from src.schwab_gateway.mapping import get_stream_map, get_value, is_quote_service
from src.schwab_gateway.models import ConcurrentMap, Point, PointGroup

logger = logging.getLogger(__name__)


@dataclass
class _PointDraft:
    """Last observed values per instrument. Streams only send changed fields."""
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None
    bid_size: Optional[float] = None
    ask_size: Optional[float] = None


class QuoteAggregator:
    """Turns stream data items into published PointGroups.

    Only instruments already present in the shared instrument map are
    tracked; unknown keys are ignored.

    Example:
        aggregator = QuoteAggregator(snapshot.instruments, events)
        session.on_data(aggregator.process)
    """

    def __init__(self, instruments: ConcurrentMap, events: Optional[EventSink] = None):
        self._instruments = instruments
        self._events = events or EventSink()
        self._drafts: dict[str, _PointDraft] = {}

    async def process(self, item: dict) -> list[PointGroup]:
        """Handle one data item ({service, content: [...]})."""
        service = item.get("service")
        if not is_quote_service(service):
            return []

        fields = get_stream_map(service)
        published = []
        for data in item.get("content") or []:
            group = self.apply(fields, data)
            if group is not None:
                published.append(group)
                await self._events.publish_point(group)
        return published

    def apply(self, fields: dict[str, str], data: dict) -> Optional[PointGroup]:
        """Fold one content entry into its instrument. None if dropped."""
        name = str(data.get("key", ""))
        instrument = self._instruments.get(name)
        if instrument is None:
            logger.debug(f"Quote for untracked instrument {name!r} ignored")
            return None

        draft = self._drafts.setdefault(name, _PointDraft())
        draft.bid = get_value(data.get(fields.get("Bid Price")), draft.bid)
        draft.ask = get_value(data.get(fields.get("Ask Price")), draft.ask)
        draft.last = get_value(data.get(fields.get("Last Price")), draft.last)
        draft.bid_size = get_value(data.get(fields.get("Bid Size")), draft.bid_size)
        draft.ask_size = get_value(data.get(fields.get("Ask Size")), draft.ask_size)

        last = draft.last if draft.last else (draft.bid if draft.bid is not None else draft.ask)
        bid = draft.bid if draft.bid is not None else last
        ask = draft.ask if draft.ask is not None else last
        if bid is None or ask is None or last is None:
            return None

        point = Point(
            instrument=name,
            bid=bid,
            ask=ask,
            last=last,
            bid_size=draft.bid_size or 0.0,
            ask_size=draft.ask_size or 0.0,
            time=datetime.now(timezone.utc),
        )
        return instrument.add_point(point)
