"""Schwab Account Synchronization.

Fetches balance, open orders and positions and swaps them into the shared
AccountSnapshot. Used at connect time and after every order mutation.
"""

from typing import Optional
import asyncio
import logging

from src.schwab_gateway.client import SchwabRestClient
from src.schwab_gateway.errors import GatewayError, ReconciliationError, RequestError, Result
from src.schwab_gateway.events import EventSink
from src.schwab_gateway.mapping import get_account_positions, get_balance, get_order, get_position
from src.schwab_gateway.models import AccountSnapshot, Order

logger = logging.getLogger(__name__)


def _first_by_key(items: list[Order], key) -> dict[str, Order]:
    result: dict[str, Order] = {}
    for item in items:
        result.setdefault(key(item), item)
    return result


class AccountSynchronizer:
    """Single source of truth refresh for the account mirror.

    Example:
        sync = AccountSynchronizer(client, snapshot, events)
        await sync.resolve_account_code()
        result = await sync.sync()
    """

    def __init__(
        self,
        client: SchwabRestClient,
        snapshot: AccountSnapshot,
        events: Optional[EventSink] = None,
    ):
        self._client = client
        self._snapshot = snapshot
        self._events = events or EventSink()
        self._account_code = ""
        self._sync_count = 0

    @property
    def account_code(self) -> str:
        return self._account_code

    @account_code.setter
    def account_code(self, value: str) -> None:
        self._account_code = value

    @property
    def sync_count(self) -> int:
        return self._sync_count

    async def resolve_account_code(self) -> str:
        """Map the plain account number to Schwab's encrypted account code."""
        numbers = await self._client.get_account_numbers()
        descriptor = self._snapshot.descriptor
        for item in numbers:
            if not descriptor or str(item.get("accountNumber")) == descriptor:
                self._account_code = item.get("hashValue", "")
                logger.info(f"Resolved account code for {descriptor or 'default account'}")
                return self._account_code
        raise RequestError(f"Account {descriptor} not found")

    async def fetch_orders(self, criteria: Optional[dict] = None) -> list[Order]:
        """Open orders only (no close time)."""
        data = await self._client.get_orders(self._account_code, criteria)
        return [get_order(o) for o in data if not o.get("closeTime")]

    async def fetch_positions(self, criteria: Optional[dict] = None) -> list[Order]:
        data = await self._client.get_account(self._account_code, criteria)
        return [get_position(p) for p in get_account_positions(data)]

    async def sync(self, criteria: Optional[dict] = None) -> Result[AccountSnapshot]:
        """Fetch and atomically replace balance, orders and positions."""
        try:
            account, orders = await asyncio.gather(
                self._client.get_account(self._account_code),
                self.fetch_orders(criteria),
            )
            positions = [get_position(p) for p in get_account_positions(account)]
            balance = get_balance(account)
        except Exception as e:
            message = e.message if isinstance(e, GatewayError) else str(e)
            error = ReconciliationError(f"Account sync failed: {message}")
            await self._events.report_error(error, "account_sync")
            return Result.fail(error, "account_sync")

        self._snapshot.replace(
            balance,
            _first_by_key(orders, lambda o: o.id),
            _first_by_key(positions, lambda p: p.name),
        )
        added = self._snapshot.register_instruments(
            [p.transaction.instrument for p in positions]
        )
        self._sync_count += 1
        if added:
            logger.info(f"Discovered instruments from positions: {', '.join(added)}")
        logger.debug(
            f"Account synced: balance={balance} orders={len(orders)} positions={len(positions)}"
        )
        return Result.ok(self._snapshot)
