"""Tests for the Schwab streamer session."""

import asyncio

import pytest


def _streamer():
    from src.schwab_gateway.streaming import StreamerInfo
    return StreamerInfo(
        socket_url="wss://streamer.test/ws",
        customer_id="customer-1",
        correlation_id="correl-1",
        channel="N9",
        function_id="APIAPP",
    )


def _session(ws_connect, events=None, login_timeout=1.0):
    from src.schwab_gateway.credentials import CredentialState, CredentialStore
    from src.schwab_gateway.streaming import StreamSession
    store = CredentialStore(CredentialState(access_token="access-1"))
    return StreamSession(store, events, connect=ws_connect, login_timeout=login_timeout)


# ═══════════════════════════════════════════════════════════════════════
# Test: Wire helpers
# ═══════════════════════════════════════════════════════════════════════


class TestWire:

    def test_streamer_info_from_preferences(self):
        from src.schwab_gateway.streaming import StreamerInfo
        info = StreamerInfo.from_preferences({"streamerInfo": [{
            "streamerSocketUrl": "wss://x",
            "schwabClientCustomerId": "c",
            "schwabClientCorrelId": "r",
            "schwabClientChannel": "N9",
            "schwabClientFunctionId": "APIAPP",
        }]})
        assert info.socket_url == "wss://x"
        assert info.customer_id == "c"
        assert info.function_id == "APIAPP"

    def test_streamer_info_missing(self):
        from src.schwab_gateway.streaming import StreamerInfo
        assert StreamerInfo.from_preferences({}).socket_url == ""

    def test_command_to_wire(self):
        from src.schwab_gateway.streaming import StreamCommand
        wire = StreamCommand(7, "LEVELONE_EQUITIES", "ADD", "customer-1", "corr", {"keys": "AAPL"}).to_wire()
        assert wire == {
            "requestid": "7",
            "service": "LEVELONE_EQUITIES",
            "command": "ADD",
            "SchwabClientCustomerId": "customer-1",
            "SchwabClientCorrelId": "corr",
            "parameters": {"keys": "AAPL"},
        }

    def test_decode_frame(self):
        from src.schwab_gateway.streaming import decode_frame
        assert decode_frame('{"notify": []}') == {"notify": []}
        assert decode_frame(b'[{"data": []}]') == {"data": []}
        assert decode_frame("") is None
        assert decode_frame("  ") is None

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", "42"])
    def test_decode_frame_rejects_malformed(self, raw):
        from src.schwab_gateway.errors import DecodeError
        from src.schwab_gateway.streaming import decode_frame
        with pytest.raises(DecodeError):
            decode_frame(raw)


# ═══════════════════════════════════════════════════════════════════════
# Test: Session lifecycle
# ═══════════════════════════════════════════════════════════════════════


class TestStreamSession:

    @pytest.mark.asyncio
    async def test_login_opens_session(self, fake_ws, ws_connect):
        from src.schwab_gateway.streaming import SessionState
        session = _session(ws_connect)
        assert session.state == SessionState.DISCONNECTED

        await session.connect(_streamer(), "wss://fallback/ws")

        assert session.is_open
        assert fake_ws.url == "wss://streamer.test/ws"
        login = fake_ws.commands("LOGIN")[0]
        assert login["service"] == "ADMIN"
        assert login["requestid"] == "1"
        assert login["SchwabClientCustomerId"] == "customer-1"
        assert login["parameters"] == {
            "Authorization": "access-1",
            "SchwabClientChannel": "N9",
            "SchwabClientFunctionId": "APIAPP",
        }
        await session.close()

    @pytest.mark.asyncio
    async def test_falls_back_to_configured_url(self, fake_ws, ws_connect):
        from src.schwab_gateway.streaming import StreamerInfo
        session = _session(ws_connect)
        await session.connect(StreamerInfo(), "wss://fallback/ws")
        assert fake_ws.url == "wss://fallback/ws"
        await session.close()

    @pytest.mark.asyncio
    async def test_rejected_login_closes(self, fake_ws, ws_connect):
        from src.schwab_gateway.errors import ConnectError
        from src.schwab_gateway.streaming import SessionState
        fake_ws.login_code = 3
        session = _session(ws_connect)
        with pytest.raises(ConnectError):
            await session.connect(_streamer())
        assert session.state == SessionState.CLOSED
        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_login_timeout(self, fake_ws, ws_connect):
        from src.schwab_gateway.errors import ConnectError
        fake_ws.login_code = None
        session = _session(ws_connect, login_timeout=0.05)
        with pytest.raises(ConnectError):
            await session.connect(_streamer())
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_socket_failure_is_connect_error(self):
        from src.schwab_gateway.errors import ConnectError
        from src.schwab_gateway.streaming import SessionState

        async def refuse(url):
            raise OSError("connection refused")

        session = _session(refuse)
        with pytest.raises(ConnectError):
            await session.connect(_streamer())
        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_send_without_socket(self, ws_connect):
        from src.schwab_gateway.errors import ConnectError
        session = _session(ws_connect)
        with pytest.raises(ConnectError):
            await session.send("LEVELONE_EQUITIES", "ADD", {})

    @pytest.mark.asyncio
    async def test_request_ids_follow_send_order(self, fake_ws, ws_connect):
        session = _session(ws_connect)
        await session.connect(_streamer())
        commands = await asyncio.gather(*(
            session.send("LEVELONE_EQUITIES", "ADD", {"keys": f"S{i}"}) for i in range(10)
        ))
        ids = [c.request_id for c in commands]
        assert len(set(ids)) == 10
        wire_ids = [int(m["requestid"]) for m in fake_ws.sent]
        assert wire_ids == sorted(wire_ids)
        assert wire_ids == list(range(1, 12))
        assert session.last_request_id == 11
        await session.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_ws, ws_connect):
        from src.schwab_gateway.streaming import SessionState
        session = _session(ws_connect)
        await session.connect(_streamer())
        await session.close()
        await session.close()
        assert session.state == SessionState.CLOSED
        assert fake_ws.closed


# ═══════════════════════════════════════════════════════════════════════
# Test: Receive loop
# ═══════════════════════════════════════════════════════════════════════


class TestReceiveLoop:

    @pytest.mark.asyncio
    async def test_data_items_reach_handlers(self, fake_ws, ws_connect, settle):
        session = _session(ws_connect)
        items = []
        session.on_data(items.append)
        await session.connect(_streamer())

        fake_ws.push({"data": [
            {"service": "LEVELONE_EQUITIES", "content": [{"key": "AAPL", "1": 10.0}]},
            {"service": "CHART_EQUITY", "content": []},
        ]})
        await settle(lambda: len(items) == 2)
        assert items[0]["service"] == "LEVELONE_EQUITIES"
        await session.close()

    @pytest.mark.asyncio
    async def test_malformed_frames_are_dropped(self, fake_ws, ws_connect, settle):
        session = _session(ws_connect)
        items = []
        session.on_data(items.append)
        await session.connect(_streamer())

        fake_ws.push("{broken")
        fake_ws.push("")
        fake_ws.push({"notify": [{"heartbeat": "1"}]})
        fake_ws.push({"data": [{"service": "LEVELONE_EQUITIES", "content": []}]})
        await settle(lambda: len(items) == 1)
        assert session.is_open
        await session.close()

    @pytest.mark.asyncio
    async def test_handler_error_is_reported(self, fake_ws, ws_connect, settle):
        from src.schwab_gateway.events import EventSink
        events = EventSink()
        reported = []
        events.on_error(reported.append)
        session = _session(ws_connect, events)
        seen = []

        def handler(item):
            seen.append(item)
            if len(seen) == 1:
                raise ValueError("bad item")

        session.on_data(handler)
        await session.connect(_streamer())

        fake_ws.push({"data": [{"service": "LEVELONE_EQUITIES", "content": []}]})
        fake_ws.push({"data": [{"service": "LEVELONE_EQUITIES", "content": []}]})
        await settle(lambda: len(seen) == 2)
        assert len(reported) == 1
        assert reported[0].source == "stream"
        assert session.is_open
        await session.close()

    @pytest.mark.asyncio
    async def test_transport_close_ends_session(self, fake_ws, ws_connect, settle):
        from src.schwab_gateway.errors import ErrorCode
        from src.schwab_gateway.events import EventSink
        from src.schwab_gateway.streaming import SessionState
        events = EventSink()
        reported = []
        events.on_error(reported.append)
        session = _session(ws_connect, events)
        await session.connect(_streamer())

        fake_ws.drop()
        await settle(lambda: session.state == SessionState.CLOSED)
        assert reported[0].code == ErrorCode.CONNECTION_FAILED
        await session.close()

    @pytest.mark.asyncio
    async def test_unexpected_receive_error_ends_session(self, fake_ws, ws_connect, settle):
        from src.schwab_gateway.errors import ErrorCode
        from src.schwab_gateway.events import EventSink
        from src.schwab_gateway.streaming import SessionState
        events = EventSink()
        reported = []
        events.on_error(reported.append)
        session = _session(ws_connect, events)
        await session.connect(_streamer())

        fake_ws.drop(RuntimeError("cannot call recv while another coroutine is waiting"))
        await settle(lambda: session.state == SessionState.CLOSED)

        assert reported[0].code == ErrorCode.CONNECTION_FAILED
        assert "RuntimeError" in reported[0].message
        await session.close()

    @pytest.mark.asyncio
    async def test_send_after_transport_loss(self, fake_ws, ws_connect, settle):
        from src.schwab_gateway.errors import ConnectError
        from src.schwab_gateway.streaming import SessionState
        session = _session(ws_connect)
        closed = []
        session.on_close(lambda: closed.append(session.state))
        await session.connect(_streamer())

        fake_ws.drop()
        await settle(lambda: session.state == SessionState.CLOSED)
        written = len(fake_ws.sent)

        with pytest.raises(ConnectError):
            await session.send("LEVELONE_EQUITIES", "ADD", {"keys": "MSFT"})
        assert len(fake_ws.sent) == written
        assert closed == [SessionState.CLOSED]
        await session.close()

    @pytest.mark.asyncio
    async def test_send_waiting_on_close(self, fake_ws, ws_connect):
        from src.schwab_gateway.errors import ConnectError
        session = _session(ws_connect)
        await session.connect(_streamer())

        async with session._send_lock:
            pending = asyncio.ensure_future(session.send("LEVELONE_EQUITIES", "ADD", {"keys": "MSFT"}))
            await asyncio.sleep(0)
            await session.close()

        with pytest.raises(ConnectError):
            await pending
        assert fake_ws.commands("ADD") == []

    @pytest.mark.asyncio
    async def test_socket_write_failure_is_connect_error(self, fake_ws, ws_connect):
        from websockets.exceptions import ConnectionClosedError
        from src.schwab_gateway.errors import ConnectError
        session = _session(ws_connect)
        await session.connect(_streamer())

        async def broken(raw):
            raise ConnectionClosedError(None, None)

        fake_ws.send = broken
        with pytest.raises(ConnectError):
            await session.send("LEVELONE_EQUITIES", "ADD", {"keys": "MSFT"})
        await session.close()
