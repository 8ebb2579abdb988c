"""Schwab DTO Mapping.

Pure translation between Schwab wire shapes and the internal models.
No I/O happens here.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from src.schwab_gateway.models import (
    Derivative,
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

# =====================================================================
# Lookup Tables
# =====================================================================

_ASSET_TYPES = {
    "EQUITY": InstrumentType.EQUITY,
    "ETF": InstrumentType.EQUITY,
    "COLLECTIVE_INVESTMENT": InstrumentType.EQUITY,
    "MUTUAL_FUND": InstrumentType.EQUITY,
    "OPTION": InstrumentType.OPTION,
    "FUTURE": InstrumentType.FUTURE,
    "FUTURE_OPTION": InstrumentType.FUTURE_OPTION,
    "FOREX": InstrumentType.FOREX,
    "INDEX": InstrumentType.INDEX,
}

_EXTERNAL_ASSET_TYPES = {
    InstrumentType.EQUITY: "EQUITY",
    InstrumentType.OPTION: "OPTION",
    InstrumentType.FUTURE: "FUTURE",
    InstrumentType.FUTURE_OPTION: "FUTURE_OPTION",
    InstrumentType.FOREX: "FOREX",
    InstrumentType.INDEX: "INDEX",
}

_ORDER_STATUSES = {
    "AWAITING_PARENT_ORDER": OrderStatus.PENDING,
    "AWAITING_CONDITION": OrderStatus.PENDING,
    "AWAITING_STOP_CONDITION": OrderStatus.PENDING,
    "AWAITING_MANUAL_REVIEW": OrderStatus.PENDING,
    "AWAITING_RELEASE_TIME": OrderStatus.PENDING,
    "PENDING_ACTIVATION": OrderStatus.PENDING,
    "PENDING_ACKNOWLEDGEMENT": OrderStatus.PENDING,
    "NEW": OrderStatus.SUBMITTED,
    "ACCEPTED": OrderStatus.SUBMITTED,
    "QUEUED": OrderStatus.SUBMITTED,
    "WORKING": OrderStatus.SUBMITTED,
    "AWAITING_UR_OUT": OrderStatus.SUBMITTED,
    "PENDING_CANCEL": OrderStatus.SUBMITTED,
    "PENDING_REPLACE": OrderStatus.SUBMITTED,
    "PENDING_RECALL": OrderStatus.SUBMITTED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELED,
    "REPLACED": OrderStatus.CANCELED,
    "REJECTED": OrderStatus.REJECTED,
    "EXPIRED": OrderStatus.EXPIRED,
}

_ORDER_TYPES = {
    "MARKET": OrderType.MARKET,
    "LIMIT": OrderType.LIMIT,
    "STOP": OrderType.STOP,
    "STOP_LIMIT": OrderType.STOP_LIMIT,
}

_INSTRUCTIONS = {
    "BUY": OrderSide.BUY,
    "BUY_TO_OPEN": OrderSide.BUY,
    "BUY_TO_CLOSE": OrderSide.BUY_TO_COVER,
    "BUY_TO_COVER": OrderSide.BUY_TO_COVER,
    "SELL": OrderSide.SELL,
    "SELL_TO_CLOSE": OrderSide.SELL,
    "SELL_TO_OPEN": OrderSide.SELL_SHORT,
    "SELL_SHORT": OrderSide.SELL_SHORT,
}

_EQUITY_INSTRUCTIONS = {
    OrderSide.BUY: "BUY",
    OrderSide.SELL: "SELL",
    OrderSide.SELL_SHORT: "SELL_SHORT",
    OrderSide.BUY_TO_COVER: "BUY_TO_COVER",
}

_OPTION_INSTRUCTIONS = {
    OrderSide.BUY: "BUY_TO_OPEN",
    OrderSide.SELL: "SELL_TO_CLOSE",
    OrderSide.SELL_SHORT: "SELL_TO_OPEN",
    OrderSide.BUY_TO_COVER: "BUY_TO_CLOSE",
}

# Streaming service per instrument type
STREAM_SERVICES = {
    InstrumentType.EQUITY: "LEVELONE_EQUITIES",
    InstrumentType.INDEX: "LEVELONE_EQUITIES",
    InstrumentType.OPTION: "LEVELONE_OPTIONS",
    InstrumentType.FUTURE: "LEVELONE_FUTURES",
    InstrumentType.FUTURE_OPTION: "LEVELONE_FUTURES_OPTIONS",
    InstrumentType.FOREX: "LEVELONE_FOREX",
}

_LEVELONE_FIELDS = {
    "Bid Price": "1",
    "Ask Price": "2",
    "Last Price": "3",
    "Bid Size": "4",
    "Ask Size": "5",
}

# Field name -> content key, per streaming service
STREAM_FIELDS: dict[str, dict[str, str]] = {
    "LEVELONE_EQUITIES": _LEVELONE_FIELDS,
    "LEVELONE_FUTURES": _LEVELONE_FIELDS,
    "LEVELONE_FUTURES_OPTIONS": _LEVELONE_FIELDS,
    "LEVELONE_FOREX": _LEVELONE_FIELDS,
    "LEVELONE_OPTIONS": {
        "Bid Price": "2",
        "Ask Price": "3",
        "Last Price": "4",
        "Bid Size": "16",
        "Ask Size": "17",
    },
}


# =====================================================================
# Scalars
# =====================================================================


def get_value(raw: Any, default: Optional[float] = None) -> Optional[float]:
    """Parse a numeric field, keeping the default when absent or invalid."""
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def parse_time(raw: Any) -> Optional[datetime]:
    """Parse epoch milliseconds or an ISO-8601 string."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


def get_remote_id(location: Optional[str]) -> str:
    """Extract the order id from a Location reference (last path segment)."""
    if not location:
        return ""
    return location.rstrip("/").rsplit("/", 1)[-1]


# =====================================================================
# Streaming
# =====================================================================


def get_stream_service(instrument: Instrument) -> str:
    return STREAM_SERVICES.get(instrument.instrument_type, "LEVELONE_EQUITIES")


def get_stream_map(service: str) -> dict[str, str]:
    """Field table for a service; unknown services map no fields."""
    return STREAM_FIELDS.get(service, {})


def is_quote_service(service: Optional[str]) -> bool:
    return service in STREAM_FIELDS


# =====================================================================
# Vendor -> Internal
# =====================================================================


def get_instrument(data: dict) -> Instrument:
    instrument_type = _ASSET_TYPES.get(
        data.get("assetType", data.get("type", "EQUITY")), InstrumentType.EQUITY
    )
    instrument = Instrument(
        name=data.get("symbol", ""),
        instrument_type=instrument_type,
        description=data.get("description", ""),
    )
    if instrument_type == InstrumentType.OPTION and data.get("underlyingSymbol"):
        instrument.derivative = Derivative(
            underlying=data.get("underlyingSymbol", ""),
            side=OptionSide.PUT if data.get("putCall") == "PUT" else OptionSide.CALL,
        )
    return instrument


def get_order(data: dict) -> Order:
    legs = data.get("orderLegCollection") or [{}]
    leg = legs[0]
    instrument = get_instrument(leg.get("instrument", {}))
    volume = float(data.get("quantity", leg.get("quantity", 0)) or 0)
    order_id = str(data.get("orderId", ""))
    transaction = Transaction(
        instrument=instrument,
        id=order_id,
        status=_ORDER_STATUSES.get(data.get("status", ""), OrderStatus.PENDING),
        volume=volume,
        current_volume=float(data.get("filledQuantity", 0) or 0),
        price=float(data.get("price", data.get("stopPrice", 0)) or 0),
        time=parse_time(data.get("enteredTime")),
    )
    return Order(
        id=order_id or transaction.instrument.name,
        transaction=transaction,
        side=_INSTRUCTIONS.get(leg.get("instruction", "BUY"), OrderSide.BUY),
        type=_ORDER_TYPES.get(data.get("orderType", "MARKET"), OrderType.MARKET),
        time_span=TimeSpan.GTC if data.get("duration") == "GOOD_TILL_CANCEL" else TimeSpan.DAY,
        volume=volume,
        price=get_value(data.get("price")),
        activation_price=get_value(data.get("stopPrice")),
        orders=[get_order(child) for child in data.get("childOrderStrategies", [])],
    )


def get_position(data: dict) -> Order:
    instrument = get_instrument(data.get("instrument", {}))
    long_qty = float(data.get("longQuantity", 0) or 0)
    short_qty = float(data.get("shortQuantity", 0) or 0)
    volume = long_qty or short_qty
    price = float(data.get("averagePrice", 0) or 0)
    return Order(
        transaction=Transaction(
            instrument=instrument,
            status=OrderStatus.FILLED,
            volume=volume,
            current_volume=volume,
            price=price,
        ),
        side=OrderSide.BUY if long_qty > 0 else OrderSide.SELL,
        volume=volume,
        price=price,
    )


def get_balance(data: dict) -> float:
    aggregated = data.get("aggregatedBalance")
    if aggregated:
        return float(aggregated.get("currentLiquidationValue", 0) or 0)
    account = data.get("securitiesAccount", data)
    balances = account.get("currentBalances", {})
    return float(balances.get("liquidationValue", 0) or 0)


def get_account_positions(data: dict) -> list[dict]:
    account = data.get("securitiesAccount", data)
    return account.get("positions", []) or []


def get_price(data: dict, symbol: str = "") -> Point:
    quote = data.get("quote", data)
    last = get_value(quote.get("lastPrice"), 0.0)
    return Point(
        instrument=symbol or data.get("symbol", ""),
        bid=get_value(quote.get("bidPrice"), last),
        ask=get_value(quote.get("askPrice"), last),
        last=last,
        bid_size=get_value(quote.get("bidSize"), 0.0),
        ask_size=get_value(quote.get("askSize"), 0.0),
        time=parse_time(quote.get("quoteTime")) or datetime.now(timezone.utc),
    )


def get_bar(data: dict, symbol: str = "") -> PointGroup:
    close = float(data.get("close", 0) or 0)
    return PointGroup(
        instrument=symbol,
        time=parse_time(data.get("datetime")) or datetime.now(timezone.utc),
        open=float(data.get("open", 0) or 0),
        high=float(data.get("high", 0) or 0),
        low=float(data.get("low", 0) or 0),
        close=close,
        bid=close,
        ask=close,
        volume=float(data.get("volume", 0) or 0),
        count=1,
    )


def get_option(data: dict, chain: dict) -> Instrument:
    name = data.get("symbol", "")
    last = get_value(data.get("last"), 0.0)
    point = Point(
        instrument=name,
        bid=get_value(data.get("bid"), last),
        ask=get_value(data.get("ask"), last),
        last=last,
        bid_size=get_value(data.get("bidSize"), 0.0),
        ask_size=get_value(data.get("askSize"), 0.0),
        time=parse_time(data.get("quoteTimeInLong")) or datetime.now(timezone.utc),
    )
    instrument = Instrument(
        name=name,
        instrument_type=InstrumentType.OPTION,
        description=data.get("description", ""),
        derivative=Derivative(
            underlying=chain.get("symbol", ""),
            strike=float(data.get("strikePrice", 0) or 0),
            expiration=parse_time(data.get("expirationDate")),
            side=OptionSide.PUT if data.get("putCall") == "PUT" else OptionSide.CALL,
            open_interest=float(data.get("openInterest", 0) or 0),
            volatility=float(data.get("volatility", 0) or 0),
            delta=float(data.get("delta", 0) or 0),
            gamma=float(data.get("gamma", 0) or 0),
            theta=float(data.get("theta", 0) or 0),
            vega=float(data.get("vega", 0) or 0),
        ),
    )
    instrument.add_point(point)
    return instrument


def get_options(chain: dict) -> list[Instrument]:
    """Flatten put then call expiration maps into option instruments."""
    options = []
    for key in ("putExpDateMap", "callExpDateMap"):
        for strikes in (chain.get(key) or {}).values():
            for contracts in strikes.values():
                options.extend(get_option(c, chain) for c in contracts)
    return options


# =====================================================================
# Internal -> Vendor
# =====================================================================


def get_order_payload(order: Order) -> dict:
    """Translate an internal order into Schwab's order schema."""
    instrument = order.transaction.instrument
    instructions = (
        _OPTION_INSTRUCTIONS
        if instrument.instrument_type == InstrumentType.OPTION
        else _EQUITY_INSTRUCTIONS
    )
    payload: dict[str, Any] = {
        "orderType": order.type.name,
        "session": "NORMAL",
        "duration": "GOOD_TILL_CANCEL" if order.time_span == TimeSpan.GTC else "DAY",
        "orderStrategyType": "TRIGGER" if order.orders else "SINGLE",
        "orderLegCollection": [{
            "instruction": instructions[order.side],
            "quantity": order.volume,
            "instrument": {
                "symbol": instrument.name,
                "assetType": _EXTERNAL_ASSET_TYPES[instrument.instrument_type],
            },
        }],
    }
    if order.type in (OrderType.LIMIT, OrderType.STOP_LIMIT) and order.price is not None:
        payload["price"] = order.price
    if order.type in (OrderType.STOP, OrderType.STOP_LIMIT) and order.activation_price is not None:
        payload["stopPrice"] = order.activation_price
    if order.orders:
        payload["childOrderStrategies"] = [get_order_payload(o) for o in order.orders]
    return payload
