"""
Broker Transport Session
Owns the persistent MQTT connection to the telemetry broker

The broker authenticates with a short-lived bearer token as the username,
so every reconnect fetches a fresh token first and a periodic forced
re-authentication drops the connection before the token expires.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from asyncio_mqtt import Client, MqttError

from tankwatch.core.error_handling import AuthError, ErrorCode, TransportError
from tankwatch.core.time_utils import SystemClock, format_duration

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None]]


class SessionState(str, Enum):
    """Connection lifecycle states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


class MqttSession:
    """
    Reconnecting MQTT subscriber.

    Features:
    - Fixed-delay reconnect that retries forever
    - Forced token refresh before every reconnect attempt
    - Subscription re-issued after every successful connect
    - Forced re-authentication that swaps the credential on a live session
    - Heartbeat diagnostics (connected flag, message count, silence, uptime)

    Topic structure:
    - yl-home/{home_id}/+/report - Reports from every device in the home
    """

    def __init__(
        self,
        host: str,
        port: int,
        home_id: str,
        token_provider,
        on_message: MessageHandler,
        client_id: Optional[str] = None,
        qos: int = 1,
        keepalive: int = 60,
        reconnect_delay: float = 5.0,
        connect_timeout: float = 30.0,
        clock=None
    ):
        """
        Initialize session.

        Args:
            host: Broker hostname
            port: Broker port
            home_id: Home whose device reports are subscribed
            token_provider: Object with async get_token(force)
            on_message: Coroutine called with (topic, payload) for each message
            client_id: MQTT client id (defaults to water-dashboard-{ms})
            qos: Subscription quality of service
            keepalive: MQTT keepalive in seconds
            reconnect_delay: Fixed delay between reconnect attempts
            connect_timeout: Bound on connect and subscribe
            clock: Object with now() -> epoch seconds
        """
        self.host = host
        self.port = port
        self.home_id = home_id
        self.token_provider = token_provider
        self.on_message = on_message
        self.clock = clock or SystemClock()
        self.client_id = client_id or f"water-dashboard-{int(self.clock.now() * 1000)}"
        self.qos = qos
        self.keepalive = keepalive
        self.reconnect_delay = reconnect_delay
        self.connect_timeout = connect_timeout

        self.state = SessionState.DISCONNECTED
        self._closed = False
        self._runner: Optional[asyncio.Task] = None
        self._connection: Optional[asyncio.Task] = None
        self._prefetched_token: Optional[str] = None

        self._started_at: Optional[float] = None
        self._last_message_at: Optional[float] = None
        self._stats = {
            'messages': 0,
            'connects': 0,
            'reconnect_attempts': 0,
            'auth_failures': 0,
            'transport_failures': 0,
            'forced_reauths': 0,
        }

    @property
    def topic(self) -> str:
        return f"yl-home/{self.home_id}/+/report"

    @property
    def is_connected(self) -> bool:
        return self.state in (
            SessionState.CONNECTED,
            SessionState.SUBSCRIBING,
            SessionState.SUBSCRIBED,
        )

    def _set_state(self, state: SessionState) -> None:
        if self._closed and state != SessionState.CLOSED:
            return
        if state != self.state:
            logger.debug(f"Session state {self.state.value} -> {state.value}")
        self.state = state

    async def start(self) -> None:
        """Start the connect/listen/reconnect loop in the background"""
        if self._closed:
            raise TransportError("Session is closed")
        if self._runner and not self._runner.done():
            logger.warning("MQTT session already running")
            return

        self._started_at = self.clock.now()
        self._runner = asyncio.create_task(self._run())

    async def _run(self) -> None:
        first_attempt = True

        while not self._closed:
            self._set_state(SessionState.CONNECTING)
            try:
                token = await self._acquire_token(first_attempt)
                first_attempt = False

                self._connection = asyncio.create_task(self._connect_and_listen(token))
                await asyncio.wait({self._connection})

                if self._connection.cancelled():
                    if self._closed:
                        break
                    logger.info("Reconnecting with refreshed credentials...")
                    self._stats['reconnect_attempts'] += 1
                    continue

                error = self._connection.exception()
                if error is not None:
                    raise error
                raise TransportError("Broker closed the message stream")

            except AuthError as e:
                first_attempt = False
                self._stats['auth_failures'] += 1
                logger.error(
                    f"❌ Authentication failed: {e.message}",
                    extra={'error_code': e.error_code.name}
                )
            except TransportError as e:
                self._stats['transport_failures'] += 1
                logger.error(
                    f"❌ MQTT connection error: {e.message}",
                    extra={'error_code': e.error_code.name}
                )
            except Exception as e:
                self._stats['transport_failures'] += 1
                logger.error(f"Unexpected error in MQTT session: {e}", exc_info=True)

            if self._closed:
                break

            self._set_state(SessionState.CONNECTING)
            self._stats['reconnect_attempts'] += 1
            logger.info(f"🔄 Reconnecting in {self.reconnect_delay:g}s...")
            await asyncio.sleep(self.reconnect_delay)

    async def _acquire_token(self, first_attempt: bool) -> str:
        if self._prefetched_token:
            token, self._prefetched_token = self._prefetched_token, None
            return token
        return await self.token_provider.get_token(force=not first_attempt)

    async def _connect_and_listen(self, token: str) -> None:
        """
        One connection lifetime: connect, subscribe, dispatch until the stream ends.

        Raises:
            TransportError: On connect, subscribe or stream failures
        """
        logger.info(f"Connecting to MQTT broker at {self.host}:{self.port}...")
        try:
            async with Client(
                hostname=self.host,
                port=self.port,
                username=token,
                password="",
                client_id=self.client_id,
                keepalive=self.keepalive,
                timeout=self.connect_timeout,
                clean_session=True,
            ) as client:
                self._set_state(SessionState.CONNECTED)
                self._stats['connects'] += 1
                logger.info("✓ Connected to MQTT broker")

                async with client.messages() as messages:
                    self._set_state(SessionState.SUBSCRIBING)
                    try:
                        await client.subscribe(
                            self.topic,
                            qos=self.qos,
                            timeout=self.connect_timeout
                        )
                    except (MqttError, asyncio.TimeoutError) as e:
                        raise TransportError(
                            f"Subscribe to {self.topic} failed: {e}",
                            details={'topic': self.topic},
                            error_code=ErrorCode.BROKER_SUBSCRIBE_ERROR
                        ) from e

                    self._set_state(SessionState.SUBSCRIBED)
                    logger.info(f"✓ Subscribed to {self.topic}")

                    async for message in messages:
                        await self._dispatch(message)

        except MqttError as e:
            raise TransportError(
                f"Broker connection failed: {e}",
                details={'host': self.host, 'port': self.port}
            ) from e
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Broker did not respond within {self.connect_timeout}s",
                details={'host': self.host, 'port': self.port},
                error_code=ErrorCode.BROKER_TIMEOUT
            ) from e
        finally:
            self._set_state(SessionState.DISCONNECTED)

    async def _dispatch(self, message) -> None:
        self._stats['messages'] += 1
        self._last_message_at = self.clock.now()

        topic = getattr(message.topic, 'value', message.topic)
        try:
            await self.on_message(str(topic), message.payload)
        except Exception as e:
            logger.error(f"Error handling message on {topic}: {e}", exc_info=True)

    async def force_reauthenticate(self) -> bool:
        """
        Fetch a fresh token and drop the connection so the next CONNECT uses it.

        The current connection is kept when the token fetch fails.

        Returns:
            True if a reconnect with the new token was triggered
        """
        if self._closed:
            return False

        logger.info("🔄 Forcing token refresh and reconnect...")
        try:
            token = await self.token_provider.get_token(force=True)
        except AuthError as e:
            self._stats['auth_failures'] += 1
            logger.error(
                f"Forced token refresh failed, keeping current connection: {e.message}",
                extra={'error_code': e.error_code.name}
            )
            return False

        self._prefetched_token = token
        self._stats['forced_reauths'] += 1
        if self._connection and not self._connection.done():
            self._connection.cancel()
        return True

    def heartbeat(self) -> Dict[str, Any]:
        """Log and return connection diagnostics; never changes state"""
        now = self.clock.now()
        silence = now - self._last_message_at if self._last_message_at is not None else None
        uptime = now - self._started_at if self._started_at is not None else 0.0

        status = {
            'connected': self.is_connected,
            'state': self.state.value,
            'messages': self._stats['messages'],
            'seconds_since_last_message': round(silence, 1) if silence is not None else None,
            'uptime_seconds': round(uptime, 1),
        }

        last = format_duration(silence * 1000) + " ago" if silence is not None else "never"
        logger.info(
            f"💓 Heartbeat - Connected: {status['connected']}, "
            f"Messages: {status['messages']}, Last message: {last}, "
            f"Uptime: {format_duration(uptime * 1000)}"
        )
        return status

    async def close(self) -> None:
        """Terminal shutdown; the session cannot be restarted"""
        if self._closed:
            return

        self._closed = True
        self._set_state(SessionState.CLOSED)

        tasks = [t for t in (self._connection, self._runner) if t and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("MQTT session closed")

    def get_status(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'connected': self.is_connected,
            'topic': self.topic,
            'client_id': self.client_id,
            'last_message_at': self._last_message_at,
            **self._stats
        }
