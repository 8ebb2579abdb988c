"""Gateway Event Sink.

Injected observability handle: components publish aggregated quotes and
report errors here instead of through a process-wide bus.
"""

from typing import Any, Callable
import asyncio
import logging

from src.schwab_gateway.errors import ErrorDetail
from src.schwab_gateway.models import PointGroup

logger = logging.getLogger(__name__)

PointCallback = Callable[[PointGroup], Any]
ErrorCallback = Callable[[ErrorDetail], Any]


class EventSink:
    """Fan-out of quote and error events to registered callbacks.

    Example:
        sink = EventSink()
        sink.on_point(my_quote_handler)
        sink.on_error(my_error_handler)
        gateway = SchwabGateway(config, events=sink)
    """

    def __init__(self):
        self._point_callbacks: list[PointCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    def on_point(self, callback: PointCallback) -> None:
        """Register handler for aggregated quote events."""
        self._point_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register handler for reported errors."""
        self._error_callbacks.append(callback)

    async def publish_point(self, group: PointGroup) -> None:
        await self._dispatch(self._point_callbacks, group)

    async def report_error(self, error: BaseException, source: str = "") -> ErrorDetail:
        detail = ErrorDetail.from_exception(error, source)
        logger.warning(f"{source or 'gateway'}: {detail.code.value} {detail.message}")
        await self._dispatch(self._error_callbacks, detail)
        return detail

    async def _dispatch(self, callbacks: list[Callable[[Any], Any]], payload: Any) -> None:
        for cb in callbacks:
            try:
                result = cb(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Event callback error: {e}")
