"""Schwab Gateway Facade.

Composes credentials, REST client, stream session, subscriptions, quote
aggregation, account sync and order orchestration behind one capability
interface. No public operation raises; each returns a Result.
"""

from datetime import datetime
from typing import Any, Callable, Optional, Protocol, runtime_checkable
import asyncio
import logging

import httpx

from src.logging_config import SessionContext
from src.schwab_gateway.account_sync import AccountSynchronizer
from src.schwab_gateway.client import SchwabRestClient
from src.schwab_gateway.config import GatewayConfig
from src.schwab_gateway.credentials import CredentialState, CredentialStore, TokenRefresher
from src.schwab_gateway.errors import RequestError, Result
from src.schwab_gateway.events import EventSink
from src.schwab_gateway.mapping import get_bar, get_options, get_price
from src.schwab_gateway.models import AccountSnapshot, Dom, Instrument, Order, PointGroup
from src.schwab_gateway.order_manager import OrderOrchestrator
from src.schwab_gateway.quotes import QuoteAggregator
from src.schwab_gateway.streaming import StreamerInfo, StreamSession
from src.schwab_gateway.subscriptions import SubscriptionEntry, SubscriptionRegistry

logger = logging.getLogger(__name__)


@runtime_checkable
class Gateway(Protocol):
    """Capability interface every brokerage adapter implements."""

    @property
    def account(self) -> AccountSnapshot:
        ...

    async def connect(self) -> Result[bool]:
        ...

    async def disconnect(self) -> Result[bool]:
        ...

    async def subscribe(self, instrument: Instrument) -> Result[SubscriptionEntry]:
        ...

    async def unsubscribe(self, instrument: Instrument) -> Result[bool]:
        ...

    async def get_account(self, criteria: Optional[dict] = None) -> Result[AccountSnapshot]:
        ...

    async def get_orders(self, criteria: Optional[dict] = None) -> Result[list[Order]]:
        ...

    async def get_positions(self, criteria: Optional[dict] = None) -> Result[list[Order]]:
        ...

    async def create_orders(self, *orders: Order) -> Result[list[Order]]:
        ...

    async def delete_orders(self, *orders: Order) -> Result[list[Order]]:
        ...

    async def get_dom(self, instrument: Instrument, criteria: Optional[dict] = None) -> Result[Dom]:
        ...

    async def get_points(
        self, instrument: Instrument, criteria: Optional[dict] = None
    ) -> Result[list[PointGroup]]:
        ...

    async def get_options(
        self,
        instrument: Instrument,
        criteria: Optional[dict] = None,
        min_date: Optional[datetime] = None,
        max_date: Optional[datetime] = None,
        count: Optional[int] = None,
    ) -> Result[list[Instrument]]:
        ...


class SchwabGateway:
    """Schwab implementation of the Gateway interface.

    Example:
        gateway = SchwabGateway(GatewayConfig(client_id="...", client_secret="...",
                                              refresh_token="...", account_number="12345678"))
        gateway.events.on_point(handle_quote)
        await gateway.connect()
        await gateway.subscribe(Instrument(name="AAPL"))
        await gateway.create_orders(order)
        await gateway.disconnect()
    """

    def __init__(
        self,
        config: GatewayConfig,
        events: Optional[EventSink] = None,
        http: Optional[httpx.AsyncClient] = None,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self._config = config
        self._events = events or EventSink()
        self._account = AccountSnapshot(descriptor=config.account_number)
        self._store = CredentialStore(CredentialState(
            access_token=config.access_token,
            refresh_token=config.refresh_token,
            client_id=config.client_id,
            client_secret=config.client_secret,
        ))
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=config.request_timeout)
        self._client = SchwabRestClient(config, self._store, self._http)
        self._refresher = TokenRefresher(
            self._store,
            self._http,
            config.token_url,
            interval=config.token_refresh_interval,
            events=self._events,
        )
        self._session = StreamSession(self._store, self._events, connect=connect)
        self._registry = SubscriptionRegistry(self._session, config.stream_fields)
        self._aggregator = QuoteAggregator(self._account.instruments, self._events)
        self._session.on_data(self._aggregator.process)
        self._synchronizer = AccountSynchronizer(self._client, self._account, self._events)
        self._orders = OrderOrchestrator(
            self._client, self._synchronizer, self._account, self.ensure_subscribed
        )

    @property
    def account(self) -> AccountSnapshot:
        return self._account

    @property
    def events(self) -> EventSink:
        return self._events

    @property
    def credentials(self) -> CredentialStore:
        return self._store

    @property
    def session(self) -> StreamSession:
        return self._session

    @property
    def subscriptions(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def is_connected(self) -> bool:
        return self._session.is_open

    # -- Lifecycle ---------------------------------------------------------

    async def connect(self) -> Result[bool]:
        """Authenticate, sync the account, open the stream and subscribe."""
        await self._stop_tasks()
        if self._http.is_closed:
            self._rebind_http(httpx.AsyncClient(timeout=self._config.request_timeout))

        with SessionContext(account=self._account.descriptor):
            try:
                token = await self._refresher.refresh()
                if not token.success:
                    return Result(errors=token.errors)

                await self._synchronizer.resolve_account_code()
                result: Result[bool] = Result(data=True)
                synced = await self._synchronizer.sync()
                result.errors.extend(synced.errors)

                preferences = await self._client.get_user_preference()
                streamer = StreamerInfo.from_preferences(preferences)
                await self._session.connect(streamer, self._config.stream_url)
                self._refresher.start()

                instruments = list(self._account.instruments.values())
                subscriptions = await asyncio.gather(*(self.subscribe(i) for i in instruments))
                for subscription in subscriptions:
                    result.errors.extend(subscription.errors)
            except Exception as e:
                logger.error(f"Connect failed: {e}")
                await self.disconnect()
                return Result.fail(e, "connect")

        logger.info(f"Gateway connected ({len(instruments)} instruments streaming)")
        return result

    async def disconnect(self) -> Result[bool]:
        """Stop background tasks and release the socket. Idempotent."""
        try:
            await self._stop_tasks()
            if self._owns_http and not self._http.is_closed:
                await self._http.aclose()
        except Exception as e:
            return Result.fail(e, "disconnect")
        return Result.ok(True)

    async def _stop_tasks(self) -> None:
        await self._refresher.stop()
        await self._session.close()
        self._registry.clear()

    def _rebind_http(self, http: httpx.AsyncClient) -> None:
        self._http = http
        self._client = SchwabRestClient(self._config, self._store, http)
        self._refresher = TokenRefresher(
            self._store,
            http,
            self._config.token_url,
            interval=self._config.token_refresh_interval,
            events=self._events,
        )
        account_code = self._synchronizer.account_code
        self._synchronizer = AccountSynchronizer(self._client, self._account, self._events)
        self._synchronizer.account_code = account_code
        self._orders = OrderOrchestrator(
            self._client, self._synchronizer, self._account, self.ensure_subscribed
        )

    # -- Streaming ---------------------------------------------------------

    async def subscribe(self, instrument: Instrument) -> Result[SubscriptionEntry]:
        """Track the instrument and (re)register it on the stream."""
        try:
            self._account.instruments.add_if_absent(instrument.name, instrument)
            tracked = self._account.instruments[instrument.name]
            return Result.ok(await self._registry.subscribe(tracked))
        except Exception as e:
            return Result.fail(e, f"subscribe:{instrument.name}")

    async def ensure_subscribed(self, instrument: Instrument) -> Result[SubscriptionEntry]:
        entry = self._registry.get(instrument.name)
        if entry is not None:
            return Result.ok(entry)
        return await self.subscribe(instrument)

    async def unsubscribe(self, instrument: Instrument) -> Result[bool]:
        try:
            return Result.ok(await self._registry.unsubscribe(instrument))
        except Exception as e:
            return Result.fail(e, f"unsubscribe:{instrument.name}")

    # -- Account -----------------------------------------------------------

    async def get_account(self, criteria: Optional[dict] = None) -> Result[AccountSnapshot]:
        return await self._synchronizer.sync(criteria)

    async def get_orders(self, criteria: Optional[dict] = None) -> Result[list[Order]]:
        try:
            return Result.ok(await self._synchronizer.fetch_orders(criteria))
        except Exception as e:
            return Result.fail(e, "get_orders")

    async def get_positions(self, criteria: Optional[dict] = None) -> Result[list[Order]]:
        try:
            return Result.ok(await self._synchronizer.fetch_positions(criteria))
        except Exception as e:
            return Result.fail(e, "get_positions")

    async def create_orders(self, *orders: Order) -> Result[list[Order]]:
        return await self._orders.create_orders(*orders)

    async def delete_orders(self, *orders: Order) -> Result[list[Order]]:
        return await self._orders.delete_orders(*orders)

    # -- Market Data -------------------------------------------------------

    async def get_dom(self, instrument: Instrument, criteria: Optional[dict] = None) -> Result[Dom]:
        """Latest quote as a single-level book."""
        try:
            data = await self._client.get_quotes([instrument.name], criteria)
            if instrument.name not in data:
                raise RequestError(f"No quote returned for {instrument.name}")
            point = get_price(data[instrument.name], instrument.name)
            return Result.ok(Dom(bids=[point], asks=[point]))
        except Exception as e:
            return Result.fail(e, "get_dom")

    async def get_points(
        self, instrument: Instrument, criteria: Optional[dict] = None
    ) -> Result[list[PointGroup]]:
        """Historical bars from price history."""
        try:
            data = await self._client.get_price_history(instrument.name, criteria)
            return Result.ok([get_bar(c, instrument.name) for c in data.get("candles") or []])
        except Exception as e:
            return Result.fail(e, "get_points")

    async def get_options(
        self,
        instrument: Instrument,
        criteria: Optional[dict] = None,
        min_date: Optional[datetime] = None,
        max_date: Optional[datetime] = None,
        count: Optional[int] = None,
    ) -> Result[list[Instrument]]:
        """Option chain flattened into option instruments."""
        props: dict[str, Any] = {}
        if min_date:
            props["fromDate"] = min_date.strftime("%Y-%m-%d")
        if max_date:
            props["toDate"] = max_date.strftime("%Y-%m-%d")
        if count:
            props["strikeCount"] = count
        try:
            chain = await self._client.get_option_chain(instrument.name, {**props, **(criteria or {})})
            return Result.ok(get_options(chain))
        except Exception as e:
            return Result.fail(e, "get_options")
