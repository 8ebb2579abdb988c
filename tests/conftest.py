"""Pytest configuration and shared fixtures."""

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest
from websockets.exceptions import ConnectionClosedOK

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


ACCOUNT_NUMBER = "12345678"
ACCOUNT_CODE = "HASH123"


class FakeWebSocket:
    """In-memory stand-in for a streamer socket.

    Outbound frames are decoded into ``sent``; inbound frames are queued
    with ``push``. A LOGIN command is acknowledged with ``login_code``
    unless it is None.
    """

    def __init__(self, login_code=0):
        self.login_code = login_code
        self.sent = []
        self.url = ""
        self.closed = False
        self._inbox = asyncio.Queue()

    async def send(self, raw):
        message = json.loads(raw)
        self.sent.append(message)
        if message["command"] == "LOGIN" and self.login_code is not None:
            self.push({"response": [{
                "service": "ADMIN",
                "command": "LOGIN",
                "requestid": message["requestid"],
                "content": {"code": self.login_code, "msg": "login"},
            }]})

    async def recv(self):
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True

    def push(self, message):
        if isinstance(message, (dict, list)):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def drop(self, error=None):
        """Simulate the transport failing; recv raises the error."""
        self._inbox.put_nowait(error or ConnectionClosedOK(None, None))

    def commands(self, command=None):
        return [m for m in self.sent if command is None or m["command"] == command]


class FakeSchwabApi:
    """Route table behind an httpx.MockTransport.

    Routes map (method, path) to (status, json, headers) or to a callable
    taking the request. Unrouted requests answer 404.
    """

    def __init__(self):
        self.requests = []
        self.routes = {}
        self.route("POST", "/v1/oauth/token", json={
            "access_token": "access-2",
            "refresh_token": "refresh-2",
            "expires_in": 1800,
        })
        self.route("GET", "/trader/v1/accounts/accountNumbers", json=[
            {"accountNumber": "99990000", "hashValue": "OTHER"},
            {"accountNumber": ACCOUNT_NUMBER, "hashValue": ACCOUNT_CODE},
        ])
        self.route("GET", f"/trader/v1/accounts/{ACCOUNT_CODE}", json=account_payload())
        self.route("GET", f"/trader/v1/accounts/{ACCOUNT_CODE}/orders", json=[])
        self.route("GET", "/trader/v1/userPreference", json={
            "streamerInfo": [{
                "streamerSocketUrl": "wss://streamer.test/ws",
                "schwabClientCustomerId": "customer-1",
                "schwabClientCorrelId": "correl-1",
                "schwabClientChannel": "N9",
                "schwabClientFunctionId": "APIAPP",
            }],
        })

    def route(self, method, path, status=200, json=None, headers=None, handler=None):
        self.routes[(method, path)] = handler or (status, json, headers)

    def handle(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(route):
            return route(request)
        status, body, headers = route
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def http(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


def account_payload(positions=None, balance=1500.0):
    if positions is None:
        positions = [
            {
                "longQuantity": 10,
                "shortQuantity": 0,
                "averagePrice": 150.5,
                "instrument": {"symbol": "AAPL", "assetType": "EQUITY"},
            },
            {
                "longQuantity": 0,
                "shortQuantity": 5,
                "averagePrice": 410.0,
                "instrument": {"symbol": "MSFT", "assetType": "EQUITY"},
            },
        ]
    return {
        "securitiesAccount": {
            "accountNumber": ACCOUNT_NUMBER,
            "positions": positions,
            "currentBalances": {"liquidationValue": balance - 500},
        },
        "aggregatedBalance": {"currentLiquidationValue": balance},
    }


async def wait_until(predicate, timeout=1.0):
    """Yield to the loop until predicate() holds or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def ws_connect(fake_ws):
    """Connect factory handing out the fake socket."""

    async def connect(url):
        fake_ws.url = url
        return fake_ws

    return connect


@pytest.fixture
def schwab_api():
    return FakeSchwabApi()


@pytest.fixture
def settle():
    return wait_until


@pytest.fixture
def account_data():
    return account_payload
