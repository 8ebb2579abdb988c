"""Schwab Order Orchestration.

Submits and cancels orders via REST with optimistic local updates, then
re-syncs the account once per batch. One failing order never aborts its
siblings.
"""

from typing import Any, Awaitable, Callable, Optional
import logging

from src.schwab_gateway.account_sync import AccountSynchronizer
from src.schwab_gateway.client import SchwabRestClient
from src.schwab_gateway.errors import RequestError, Result
from src.schwab_gateway.mapping import get_order_payload, get_remote_id
from src.schwab_gateway.models import AccountSnapshot, Instrument, Order, OrderStatus

logger = logging.getLogger(__name__)

# Ensures an instrument is streamed; returns a Result
SubscribeFn = Callable[[Instrument], Awaitable[Result[Any]]]


class OrderOrchestrator:
    """Order submit/cancel pipeline with post-batch reconciliation.

    Example:
        orchestrator = OrderOrchestrator(client, synchronizer, snapshot, gateway.ensure_subscribed)
        result = await orchestrator.create_orders(order_a, order_b)
        result.data    # orders that were accepted
        result.errors  # one entry per rejected order
    """

    def __init__(
        self,
        client: SchwabRestClient,
        synchronizer: AccountSynchronizer,
        snapshot: AccountSnapshot,
        subscribe: Optional[SubscribeFn] = None,
    ):
        self._client = client
        self._synchronizer = synchronizer
        self._snapshot = snapshot
        self._subscribe = subscribe

    async def create_orders(self, *orders: Order) -> Result[list[Order]]:
        """Submit each order, then re-sync the account once."""
        result: Result[list[Order]] = Result(data=[])
        for order in orders:
            try:
                result.data.append(await self._create_order(order))
            except Exception as e:
                logger.error(f"Order {order.id} ({order.name}) failed: {e}")
                result.add_error(e, f"create_order:{order.id}")

        await self._reconcile(result)
        return result

    async def delete_orders(self, *orders: Order) -> Result[list[Order]]:
        """Cancel each order, then re-sync the account once."""
        result: Result[list[Order]] = Result(data=[])
        for order in orders:
            try:
                result.data.append(await self._delete_order(order))
            except Exception as e:
                logger.error(f"Cancel of order {order.id} ({order.transaction.id}) failed: {e}")
                result.add_error(e, f"delete_order:{order.id}")

        await self._reconcile(result)
        return result

    async def _create_order(self, order: Order) -> Order:
        self._snapshot.orders[order.id] = order

        if self._subscribe:
            subscription = await self._subscribe(order.transaction.instrument)
            if not subscription.success:
                logger.warning(f"Could not stream {order.name} for order {order.id}")

        payload = get_order_payload(order)
        resp = await self._client.place_order(self._synchronizer.account_code, payload)
        remote_id = get_remote_id(resp.headers.get("Location"))
        if not remote_id:
            raise RequestError(
                f"Order {order.id} returned no order id ({resp.status_code})",
                resp.status_code,
            )

        order.transaction.id = remote_id
        order.transaction.status = OrderStatus.FILLED
        logger.info(f"Order {order.id} submitted as {remote_id}: {order.side.value} {order.volume} {order.name}")
        return order

    async def _delete_order(self, order: Order) -> Order:
        await self._client.cancel_order(self._synchronizer.account_code, order.transaction.id)
        order.transaction.status = OrderStatus.CANCELED
        logger.info(f"Order {order.id} ({order.transaction.id}) canceled")
        return order

    async def _reconcile(self, result: Result) -> None:
        synced = await self._synchronizer.sync()
        if not synced.success:
            result.errors.extend(synced.errors)
