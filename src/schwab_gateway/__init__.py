"""Schwab Trading Gateway.

Streams level-one quotes and manages orders, positions and balances against
Schwab's Trader and Market Data APIs behind a uniform Gateway interface.

Example:
    from src.schwab_gateway import SchwabGateway, GatewayConfig, Instrument

    gateway = SchwabGateway(GatewayConfig(
        client_id="YOUR_APP_KEY",
        client_secret="YOUR_APP_SECRET",
        refresh_token="YOUR_REFRESH_TOKEN",
        account_number="12345678",
    ))
    gateway.events.on_point(print)
    result = await gateway.connect()
    await gateway.subscribe(Instrument(name="AAPL"))
"""

from src.schwab_gateway.account_sync import AccountSynchronizer
from src.schwab_gateway.client import SchwabRestClient
from src.schwab_gateway.config import GatewayConfig
from src.schwab_gateway.credentials import (
    CredentialState,
    CredentialStore,
    TokenRefresher,
)
from src.schwab_gateway.errors import (
    AuthError,
    ConnectError,
    DecodeError,
    ErrorCode,
    ErrorDetail,
    GatewayError,
    ReconciliationError,
    RequestError,
    Result,
)
from src.schwab_gateway.events import EventSink
from src.schwab_gateway.gateway import Gateway, SchwabGateway
from src.schwab_gateway.models import (
    AccountSnapshot,
    ConcurrentMap,
    Derivative,
    Dom,
    Instrument,
    InstrumentType,
    OptionSide,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Point,
    PointGroup,
    TimeSpan,
    Transaction,
)
from src.schwab_gateway.order_manager import OrderOrchestrator
from src.schwab_gateway.quotes import QuoteAggregator
from src.schwab_gateway.streaming import (
    SessionState,
    StreamCommand,
    StreamerInfo,
    StreamSession,
)
from src.schwab_gateway.subscriptions import SubscriptionEntry, SubscriptionRegistry

__all__ = [
    # Facade
    "Gateway",
    "SchwabGateway",
    "GatewayConfig",
    "EventSink",
    # Credentials
    "CredentialState",
    "CredentialStore",
    "TokenRefresher",
    # REST
    "SchwabRestClient",
    "AccountSynchronizer",
    "OrderOrchestrator",
    # Streaming
    "StreamSession",
    "StreamCommand",
    "StreamerInfo",
    "SessionState",
    "SubscriptionRegistry",
    "SubscriptionEntry",
    "QuoteAggregator",
    # Models
    "AccountSnapshot",
    "ConcurrentMap",
    "Derivative",
    "Dom",
    "Instrument",
    "InstrumentType",
    "OptionSide",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Point",
    "PointGroup",
    "TimeSpan",
    "Transaction",
    # Errors
    "ErrorCode",
    "ErrorDetail",
    "Result",
    "GatewayError",
    "ConnectError",
    "AuthError",
    "RequestError",
    "DecodeError",
    "ReconciliationError",
]
