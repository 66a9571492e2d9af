from __future__ import annotations

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import aiohttp
import httpx
from pydantic import BaseModel, Field

from legalease.config import Settings
from legalease.errors import RelayUnavailable
from legalease.services.transcript_store import now_ms


logger = logging.getLogger("legalease.relay")

TRANSCRIPT_EVENT = "transcript"
UPDATE_EVENT = "transcript-update"
ACK_EVENT = "transcript-received"


class RelayPayload(BaseModel):
    text: str
    meetingId: str = "unknown"
    timestamp: int = Field(default_factory=now_ms)


class RelayState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


Subscriber = Callable[[RelayPayload], Union[None, Awaitable[None]]]


class RelayChannel(ABC):
    """Transport carrying transcript updates from capture to server."""

    def __init__(self) -> None:
        self.state = RelayState.DISCONNECTED
        self._subscribers: List[Subscriber] = []
        self._state_listeners: List[Callable[[RelayState], None]] = []

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def on_state_change(self, callback: Callable[[RelayState], None]) -> None:
        self._state_listeners.append(callback)

    def _set_state(self, state: RelayState) -> None:
        if state == self.state:
            return
        self.state = state
        logger.info("Relay state changed", extra={"state": state.value, "channel": type(self).__name__})
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Relay state listener failed")

    async def _dispatch(self, payload: RelayPayload) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Relay subscriber failed")

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    async def send(self, payload: RelayPayload) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class _Connection(ABC):
    @abstractmethod
    async def send_json(self, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def receive_json(self) -> Optional[Dict[str, Any]]:
        """Next JSON message, or None once the socket is closed."""

    @abstractmethod
    async def close(self) -> None:
        ...


class _AiohttpConnection(_Connection):
    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    async def send_json(self, data: Dict[str, Any]) -> None:
        await self._ws.send_json(data)

    async def receive_json(self) -> Optional[Dict[str, Any]]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    return json.loads(msg.data)
                except ValueError:
                    logger.debug("Ignoring non-JSON relay frame")
                    continue
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.ERROR):
                return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


async def aiohttp_connect(url: str, timeout: float = 10.0) -> _Connection:
    session = aiohttp.ClientSession(headers={"X-Client-Version": "1.0"})
    try:
        ws = await session.ws_connect(url, heartbeat=30.0, timeout=aiohttp.ClientWSTimeout(ws_close=timeout))
    except BaseException:
        await session.close()
        raise
    return _AiohttpConnection(session, ws)


class PushRelayChannel(RelayChannel):
    """Persistent websocket relay with bounded linear-backoff reconnection.

    Sends while not connected are dropped (``send`` returns False). A lost
    connection is retried in the background with up to ``max_attempts``
    reconnects; once they are used up the state stays ``error`` until
    ``open`` is called again.
    """

    def __init__(
        self,
        url: str,
        max_attempts: int = 5,
        reconnect_delay: float = 1.0,
        connector: Optional[Callable[[str], Awaitable[_Connection]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__()
        self.url = url
        self.max_attempts = max_attempts
        self.reconnect_delay = reconnect_delay
        self._connector = connector or aiohttp_connect
        self._sleep = sleep
        self._conn: Optional[_Connection] = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False
        self.attempts = 0

    async def open(self) -> None:
        self._closing = False
        self.attempts = 0
        await self._connect()

    async def _connect(self) -> bool:
        self._set_state(RelayState.CONNECTING)
        while not self._closing:
            try:
                self._conn = await self._connector(self.url)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                self.attempts += 1
                logger.warning("Relay connect failed", extra={"attempt": self.attempts, "error": str(exc)})
                if self.attempts > self.max_attempts:
                    self._set_state(RelayState.ERROR)
                    return False
                await self._sleep(self.reconnect_delay * self.attempts)
                continue
            self._set_state(RelayState.CONNECTED)
            self._reader = asyncio.create_task(self._read_loop(self._conn))
            return True
        return False

    async def _read_loop(self, conn: _Connection) -> None:
        try:
            while True:
                message = await conn.receive_json()
                if message is None:
                    break
                event = message.get("event")
                if event in (UPDATE_EVENT, TRANSCRIPT_EVENT):
                    try:
                        payload = RelayPayload(**(message.get("data") or {}))
                    except (TypeError, ValueError):
                        logger.debug("Malformed relay payload dropped")
                        continue
                    await self._dispatch(payload)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            logger.warning("Relay connection lost", extra={"error": str(exc)})
        if conn is self._conn and not self._closing:
            self._lost_connection()

    def _lost_connection(self) -> None:
        # A new outage gets a fresh attempt budget
        self._conn = None
        self.attempts = 0
        self._set_state(RelayState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        # ERROR is terminal until open() is called again
        if self._closing or self.state != RelayState.DISCONNECTED:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._connect())

    async def send(self, payload: RelayPayload) -> bool:
        conn = self._conn
        if conn is None or self.state != RelayState.CONNECTED:
            logger.debug("Relay not connected; dropping transcript", extra={"meeting_id": payload.meetingId})
            self._schedule_reconnect()
            return False
        try:
            await conn.send_json({"event": TRANSCRIPT_EVENT, "data": payload.model_dump()})
            return True
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            logger.warning("Relay send failed", extra={"error": str(exc)})
            self._lost_connection()
            return False

    async def close(self) -> None:
        self._closing = True
        for task in (self._reconnect_task, self._reader):
            if task is not None and not task.done():
                task.cancel()
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close()
            except Exception:
                logger.debug("Relay close failed", exc_info=True)
        self._set_state(RelayState.DISCONNECTED)


class PullRelayChannel(RelayChannel):
    """HTTP relay: POST writes, periodic GET reads, last write wins."""

    def __init__(
        self,
        base_url: str,
        poll_interval: float = 2.0,
        timeout: float = 10.0,
        meeting_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.meeting_id = meeting_id
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"X-Client-Version": "1.0"},
        )
        self._poll_task: Optional[asyncio.Task] = None
        self._last_text: Optional[str] = None

    async def open(self) -> None:
        if self._subscribers and self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def send(self, payload: RelayPayload) -> bool:
        try:
            resp = await self._client.post(
                "/latest-transcript",
                json=payload.model_dump(),
                headers={"X-Meeting-ID": payload.meetingId},
            )
        except httpx.HTTPError as exc:
            self._set_state(RelayState.ERROR)
            raise RelayUnavailable(f"Relay write failed: {exc}") from exc
        if resp.status_code >= 400:
            self._set_state(RelayState.ERROR)
            raise RelayUnavailable(f"Relay write failed: HTTP {resp.status_code}")
        self._set_state(RelayState.CONNECTED)
        return True

    async def fetch(self) -> RelayPayload:
        params = {"meetingId": self.meeting_id} if self.meeting_id else None
        try:
            resp = await self._client.get("/latest-transcript", params=params)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            self._set_state(RelayState.ERROR)
            raise RelayUnavailable(f"Relay read failed: {exc}") from exc
        self._set_state(RelayState.CONNECTED)
        data = resp.json()
        return RelayPayload(
            text=data.get("text") or "",
            meetingId=data.get("meetingId") or "",
            timestamp=int(data.get("timestamp") or 0),
        )

    async def poll_once(self) -> Optional[RelayPayload]:
        payload = await self.fetch()
        if payload.text and payload.text != self._last_text:
            self._last_text = payload.text
            await self._dispatch(payload)
            return payload
        return None

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except RelayUnavailable as exc:
                logger.warning("Relay poll failed", extra={"error": str(exc)})
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        await self._client.aclose()
        self._set_state(RelayState.DISCONNECTED)


def websocket_url(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return base + path


def create_relay_channel(settings: Settings, base_url: str, strategy: Optional[str] = None, meeting_id: Optional[str] = None) -> RelayChannel:
    if (strategy or settings.relay_strategy) == "pull":
        return PullRelayChannel(base_url, poll_interval=settings.poll_interval_seconds, meeting_id=meeting_id)
    return PushRelayChannel(
        websocket_url(base_url, settings.relay_path),
        max_attempts=settings.relay_max_reconnect_attempts,
        reconnect_delay=settings.relay_reconnect_delay_seconds,
    )


class RelayHub:
    """Server-side set of websocket listeners receiving broadcasts."""

    def __init__(self) -> None:
        self._clients: Set[Any] = set()

    @property
    def listener_count(self) -> int:
        return len(self._clients)

    def register(self, websocket: Any) -> None:
        self._clients.add(websocket)

    def unregister(self, websocket: Any) -> None:
        self._clients.discard(websocket)

    async def broadcast(self, event: str, data: Dict[str, Any]) -> int:
        delivered = 0
        for ws in list(self._clients):
            try:
                await ws.send_json({"event": event, "data": data})
                delivered += 1
            except Exception:
                logger.info("Dropping unreachable relay listener")
                self._clients.discard(ws)
        return delivered
