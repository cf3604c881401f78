"""
Unit tests for the broker transport session
The asyncio_mqtt client is replaced by an in-memory fake broker
"""
import asyncio
import itertools
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, Mock, call

from asyncio_mqtt import MqttError

from tankwatch.core.error_handling import AuthError, ErrorCode, TransportError
from tankwatch.services.transport.mqtt_session import MqttSession, SessionState

TOPIC = "yl-home/home-1/+/report"


class FakeBroker:
    """Hands out FakeClients and can fail the next connects"""

    def __init__(self):
        self.clients = []
        self.connect_errors = []
        self.subscribe_errors = []

    def client(self, **kwargs):
        client = FakeClient(self, **kwargs)
        self.clients.append(client)
        return client


class FakeClient:
    def __init__(self, broker, **kwargs):
        self.broker = broker
        self.kwargs = kwargs
        self.subscriptions = []
        self.queue = asyncio.Queue()
        self.connected = False

    async def __aenter__(self):
        if self.broker.connect_errors:
            raise self.broker.connect_errors.pop(0)
        self.connected = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.connected = False
        return False

    @asynccontextmanager
    async def messages(self):
        async def stream():
            while True:
                item = await self.queue.get()
                if item is None:
                    return
                yield item
        yield stream()

    async def subscribe(self, topic, qos=0, timeout=10):
        if self.broker.subscribe_errors:
            raise self.broker.subscribe_errors.pop(0)
        self.subscriptions.append((topic, qos))

    def deliver(self, topic, payload):
        self.queue.put_nowait(SimpleNamespace(topic=topic, payload=payload))

    def drop(self):
        self.queue.put_nowait(None)


async def wait_until(predicate, timeout=2.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met in time")


@pytest.fixture
def broker(monkeypatch):
    broker = FakeBroker()
    monkeypatch.setattr(
        "tankwatch.services.transport.mqtt_session.Client", broker.client
    )
    return broker


@pytest.fixture
def token_provider():
    counter = itertools.count(1)
    provider = Mock()
    provider.get_token = AsyncMock(side_effect=lambda force=False: f"token-{next(counter)}")
    return provider


@pytest.fixture
def handler():
    return AsyncMock()


@pytest_asyncio.fixture
async def session(broker, token_provider, handler):
    session = MqttSession(
        host="broker.invalid",
        port=8003,
        home_id="home-1",
        token_provider=token_provider,
        on_message=handler,
        client_id="water-dashboard-test",
        reconnect_delay=0,
    )
    yield session
    await session.close()


def subscribed(session):
    return lambda: session.state == SessionState.SUBSCRIBED


class TestMqttSession:
    """Unit tests for MqttSession"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connects_with_token_and_subscribes(self, session, broker, handler):
        await session.start()
        await wait_until(subscribed(session))

        client = broker.clients[0]
        assert client.kwargs["username"] == "token-1"
        assert client.kwargs["password"] == ""
        assert client.kwargs["port"] == 8003
        assert client.subscriptions == [(TOPIC, 1)]

        client.deliver("yl-home/home-1/dev-1/report", b'{"event": "x"}')
        await wait_until(lambda: handler.await_count == 1)

        handler.assert_awaited_once_with("yl-home/home-1/dev-1/report", b'{"event": "x"}')
        assert session.get_status()["messages"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reconnect_refreshes_token(self, session, broker, token_provider):
        broker.connect_errors.append(MqttError("connection refused"))

        await session.start()
        await wait_until(subscribed(session))

        assert len(broker.clients) == 2
        assert broker.clients[1].kwargs["username"] == "token-2"
        assert token_provider.get_token.await_args_list == [call(force=False), call(force=True)]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_resubscribes_after_broker_drop(self, session, broker):
        await session.start()
        await wait_until(subscribed(session))

        broker.clients[0].drop()
        await wait_until(lambda: len(broker.clients) == 2 and subscribed(session)())

        assert broker.clients[1].subscriptions == [(TOPIC, 1)]
        assert session.get_status()["transport_failures"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auth_failure_is_retried(self, session, broker, token_provider):
        token_provider.get_token.side_effect = [AuthError("token endpoint down"), "token-ok"]

        await session.start()
        await wait_until(subscribed(session))

        assert broker.clients[0].kwargs["username"] == "token-ok"
        assert session.get_status()["auth_failures"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_force_reauthenticate_reconnects_with_new_token(self, session, broker):
        await session.start()
        await wait_until(subscribed(session))

        assert await session.force_reauthenticate() is True
        await wait_until(lambda: len(broker.clients) == 2 and subscribed(session)())

        assert broker.clients[1].kwargs["username"] == "token-2"
        assert broker.clients[0].connected is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_reauthentication_keeps_connection(self, session, broker, token_provider):
        await session.start()
        await wait_until(subscribed(session))

        token_provider.get_token.side_effect = AuthError("token endpoint down")

        assert await session.force_reauthenticate() is False
        await asyncio.sleep(0.05)
        assert len(broker.clients) == 1
        assert session.state == SessionState.SUBSCRIBED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_handler_errors_do_not_drop_connection(self, session, broker, handler):
        handler.side_effect = [RuntimeError("bad"), None]

        await session.start()
        await wait_until(subscribed(session))
        broker.clients[0].deliver("yl-home/home-1/dev-1/report", b"{}")
        broker.clients[0].deliver("yl-home/home-1/dev-1/report", b"{}")
        await wait_until(lambda: handler.await_count == 2)

        assert len(broker.clients) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_is_terminal(self, session, broker):
        await session.start()
        await wait_until(subscribed(session))

        await session.close()

        assert session.state == SessionState.CLOSED
        assert session.is_connected is False
        assert await session.force_reauthenticate() is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_heartbeat_reports_without_changing_state(self, session, broker):
        await session.start()
        await wait_until(subscribed(session))

        status = session.heartbeat()

        assert status["connected"] is True
        assert status["messages"] == 0
        assert status["seconds_since_last_message"] is None
        assert session.state == SessionState.SUBSCRIBED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connect_timeout_is_transport_error(self, session, broker):
        broker.connect_errors.append(asyncio.TimeoutError())

        with pytest.raises(TransportError) as exc_info:
            await session._connect_and_listen("token-1")

        assert exc_info.value.error_code == ErrorCode.BROKER_TIMEOUT
        assert session.state == SessionState.DISCONNECTED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connect_refused_is_transport_error(self, session, broker):
        broker.connect_errors.append(MqttError("connection refused"))

        with pytest.raises(TransportError) as exc_info:
            await session._connect_and_listen("token-1")

        assert exc_info.value.error_code == ErrorCode.BROKER_CONNECTION_ERROR

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        MqttError("not authorized"),
        asyncio.TimeoutError(),
    ])
    async def test_subscribe_failure_is_transport_error(self, session, broker, error):
        broker.subscribe_errors.append(error)

        with pytest.raises(TransportError) as exc_info:
            await session._connect_and_listen("token-1")

        assert exc_info.value.error_code == ErrorCode.BROKER_SUBSCRIBE_ERROR
        assert exc_info.value.details["topic"] == TOPIC
        assert broker.clients[0].connected is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_subscribe_failure_triggers_reconnect(self, session, broker):
        broker.subscribe_errors.append(asyncio.TimeoutError())

        await session.start()
        await wait_until(subscribed(session))

        assert len(broker.clients) == 2
        assert broker.clients[1].subscriptions == [(TOPIC, 1)]
        assert session.get_status()["transport_failures"] == 1
