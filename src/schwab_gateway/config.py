"""Gateway Configuration.

Connection, credential and scheduling settings for the Schwab gateway.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class GatewayConfig:
    """Configuration for a Schwab gateway connection."""
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    # Plain account number, resolved to the encrypted account code on connect
    account_number: str = ""
    data_url: str = "https://api.schwabapi.com"
    stream_url: str = "wss://streamer-api.schwab.com/ws"
    token_refresh_interval: float = 60.0
    request_timeout: float = 30.0
    stream_fields: list[int] = field(default_factory=lambda: list(range(10)))
    # Open order query window
    order_lookback_days: int = 100
    order_lookahead_days: int = 5
    max_order_results: int = 50

    @property
    def trader_url(self) -> str:
        return f"{self.data_url}/trader/v1"

    @property
    def marketdata_url(self) -> str:
        return f"{self.data_url}/marketdata/v1"

    @property
    def token_url(self) -> str:
        return f"{self.data_url}/v1/oauth/token"

    @classmethod
    def from_settings(cls, settings: Any) -> "GatewayConfig":
        """Build a config from environment-backed Settings."""
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            access_token=settings.access_token,
            refresh_token=settings.refresh_token,
            account_number=settings.account_number,
            data_url=settings.data_url,
            stream_url=settings.stream_url,
            token_refresh_interval=settings.token_refresh_interval,
            request_timeout=settings.request_timeout,
        )
