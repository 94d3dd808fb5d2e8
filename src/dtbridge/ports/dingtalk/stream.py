"""
DingTalk Stream-mode connections, one per account.

The StreamManager exclusively owns the account_id -> StreamConnection map.
Each connection runs the SDK client in a background task and reports
connect/disconnect/error through log-only observers:

    stopped -> connecting <-> connected -> stopped

A transport disconnect sends a connected stream back to `connecting` while the
client reconnects; the task dying (or an explicit stop) ends in `stopped` and
drops the map entry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import quote_plus

import dingtalk_stream  # type: ignore
import websockets

from ...contracts.v1 import AccountCredential
from ...kernel.context import RuntimeContext
from ...kernel.errors import ConfigError, TransportError
from .inbound import Dispatcher, InboundBridge
from .sender import OutboundSender

BOT_MESSAGE_TOPIC = "/v1.0/im/bot/messages/get"
RECONNECT_DELAY_SECONDS = 10.0

STATE_STOPPED = "stopped"
STATE_CONNECTING = "connecting"
STATE_CONNECTED = "connected"

logger = logging.getLogger("dtbridge.stream")


class BridgeCallbackHandler(dingtalk_stream.ChatbotHandler):
    """Acks every bot callback immediately; processing is detached."""

    def __init__(self, bridge: InboundBridge):
        super().__init__()
        self.bridge = bridge

    async def process(self, callback: dingtalk_stream.CallbackMessage):
        try:
            data = callback.data
            if isinstance(data, (str, bytes)):
                data = json.loads(data)
            self.bridge.handle(data)
        except Exception:
            logger.exception("[dingtalk:%s] Failed to accept callback", self.bridge.account_id)
        return dingtalk_stream.AckMessage.STATUS_OK, "OK"


class StreamConnection:
    """One account's stream: the SDK client, its run task and its state."""

    def __init__(
        self,
        account_id: str,
        bridge: InboundBridge,
        *,
        on_closed: Callable[["StreamConnection"], None],
    ):
        self.account_id = account_id
        self.bridge = bridge
        self.state = STATE_STOPPED
        self.client: Any = None
        self._on_closed = on_closed
        self._task: Optional[asyncio.Task[None]] = None

    # ---- observers (log only) ----

    def on_connect(self) -> None:
        self.state = STATE_CONNECTED
        logger.info("[dingtalk:%s] Stream connected", self.account_id, extra={"account_id": self.account_id})

    def on_disconnect(self) -> None:
        if self.state == STATE_CONNECTED:
            self.state = STATE_CONNECTING
        logger.info("[dingtalk:%s] Stream disconnected", self.account_id, extra={"account_id": self.account_id})

    def on_error(self, error: BaseException) -> None:
        logger.error("[dingtalk:%s] Stream error: %s", self.account_id, error, extra={"account_id": self.account_id})

    # ---- lifecycle ----

    def open(self, client: Any) -> None:
        self.client = client
        self.state = STATE_CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"dingtalk-stream:{self.account_id}")

    async def _run(self) -> None:
        try:
            await self.client.start()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.on_error(TransportError(self.account_id, f"stream client stopped: {e}"))
        finally:
            self.state = STATE_STOPPED
            self._on_closed(self)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state = STATE_STOPPED


class ObservedStreamClient(dingtalk_stream.DingTalkStreamClient):
    """SDK client whose run loop reports lifecycle events and can be stopped.

    The stock `start()` swallows CancelledError and reconnects forever, so it
    cannot be torn down; this loop keeps the SDK's connect/keepalive/route
    steps but honours `close()` and task cancellation. Any other failure is
    reported and followed by a reconnect.
    """

    def __init__(self, credential: AccountCredential, observer: StreamConnection):
        super().__init__(
            dingtalk_stream.Credential(credential.client_id, credential.client_secret),
            logger=logging.getLogger("dtbridge.sdk"),
        )
        self._observer = observer
        self._closing = False
        self._tasks: Set[asyncio.Task[Any]] = set()

    def close(self) -> None:
        self._closing = True

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start(self) -> None:
        self.pre_start()
        while not self._closing:
            try:
                await self._serve_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._observer.on_error(e)
            if not self._closing:
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    async def _serve_once(self) -> None:
        connection = await asyncio.to_thread(self.open_connection)
        if not connection:
            raise TransportError(self._observer.account_id, "open connection failed")

        uri = f"{connection['endpoint']}?ticket={quote_plus(connection['ticket'])}"
        async with websockets.connect(uri) as websocket:
            self.websocket = websocket
            self._observer.on_connect()
            keepalive = self._spawn(self.keepalive(websocket))
            try:
                async for raw_message in websocket:
                    try:
                        message = json.loads(raw_message)
                    except ValueError as e:
                        logger.warning(
                            "[dingtalk:%s] Skipping undecodable frame: %s",
                            self._observer.account_id,
                            e,
                            extra={"account_id": self._observer.account_id},
                        )
                        continue
                    self._spawn(self.background_task(message))
            finally:
                keepalive.cancel()
                self.websocket = None
                self._observer.on_disconnect()


ClientFactory = Callable[[AccountCredential, StreamConnection], Any]


def default_client_factory(credential: AccountCredential, connection: StreamConnection) -> ObservedStreamClient:
    return ObservedStreamClient(credential, connection)


class StreamManager:
    """Starts, stops and reports on per-account stream connections."""

    def __init__(
        self,
        runtime: RuntimeContext,
        *,
        sender: OutboundSender,
        dispatcher: Dispatcher,
        config: Dict[str, Any],
        client_factory: ClientFactory = default_client_factory,
    ):
        self._runtime = runtime
        self._sender = sender
        self._dispatcher = dispatcher
        self._config = config
        self._client_factory = client_factory
        self._connections: Dict[str, StreamConnection] = {}
        # bridges of closed connections whose dispatches may still be running
        self._retired: Set[InboundBridge] = set()

    def _retire(self, bridge: InboundBridge) -> None:
        if bridge.pending:
            self._retired.add(bridge)

    def _forget(self, connection: StreamConnection) -> None:
        if self._connections.get(connection.account_id) is connection:
            del self._connections[connection.account_id]
        self._retire(connection.bridge)

    async def start(self, credential: AccountCredential) -> Dict[str, Any]:
        account_id = credential.account_id
        if not credential.client_id or not credential.client_secret:
            logger.error("[dingtalk:%s] Missing credentials.", account_id, extra={"account_id": account_id})
            raise ConfigError(f"Account {account_id}: missing clientId or clientSecret")

        if account_id in self._connections:
            await self.stop(account_id)

        logger.info("[dingtalk:%s] Starting Stream connection...", account_id, extra={"account_id": account_id})
        bridge = InboundBridge(
            account_id,
            runtime=self._runtime,
            sender=self._sender,
            dispatcher=self._dispatcher,
            config=self._config,
        )
        connection = StreamConnection(account_id, bridge, on_closed=self._forget)
        client = self._client_factory(credential, connection)
        client.register_callback_handler(BOT_MESSAGE_TOPIC, BridgeCallbackHandler(bridge))
        connection.open(client)
        self._connections[account_id] = connection
        return {"ok": True}

    async def stop(self, account_id: str) -> Dict[str, Any]:
        """Close the account's stream; in-flight dispatches keep running."""
        connection = self._connections.pop(account_id, None)
        if connection is not None:
            await connection.close()
            self._retire(connection.bridge)
            logger.info("[dingtalk:%s] Stream stopped", account_id, extra={"account_id": account_id})
        return {"ok": True}

    async def stop_all(self, *, drain_timeout: Optional[float] = None) -> None:
        """Stop every stream, then wait for already-accepted events to finish."""
        for account_id in list(self._connections):
            await self.stop(account_id)
        retired, self._retired = self._retired, set()
        for bridge in retired:
            await bridge.drain(drain_timeout)

    def is_running(self, account_id: str) -> bool:
        return account_id in self._connections

    def get(self, account_id: str) -> Optional[StreamConnection]:
        return self._connections.get(account_id)

    def account_ids(self) -> List[str]:
        return list(self._connections)
