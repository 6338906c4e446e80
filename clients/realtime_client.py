"""
Real-time Portfolio Subscriber.

Client side of the `/ws/portfolio` channel. A `PortfolioSubscriber` joins the
room of one username and hands every pushed document to an `on_update`
callback.

Connection Policy:
- Each connection attempt has a connect timeout.
- A dropped or failed connection is retried with exponential backoff, up to
  `max_reconnect_attempts` consecutive failures. A successful room join resets
  the count.
- After the last attempt the subscriber falls back to polling the stateless
  route (`GET /portfolio/{username}` by default) every `poll_interval`
  seconds and reports changed documents through the same callback.
- Nothing here raises to the caller: errors are logged, and reads and saves
  over the REST client keep working whatever state this channel is in.

Modes: `idle` → `connecting` → `live` → (`connecting` ...) → `polling`;
`stopped` after `stop()`.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import aiohttp

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]
Fetcher = Callable[[], Awaitable[Optional[Dict[str, Any]]]]


def websocket_url(base_url: str) -> str:
    base_url = base_url.rstrip("/")
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):] + "/ws/portfolio"
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):] + "/ws/portfolio"
    return base_url + "/ws/portfolio"


class PortfolioSubscriber:
    """Room subscription with bounded reconnection and polling fallback"""

    def __init__(
        self,
        base_url: str,
        username: str,
        on_update: UpdateCallback,
        token: Optional[str] = None,
        fetch: Optional[Fetcher] = None,
        connect_timeout: float = 5,
        max_reconnect_attempts: int = 5,
        base_delay: float = 0.5,
        max_delay: float = 8,
        poll_interval: float = 10,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username.strip().lower()
        self.on_update = on_update
        self.token = token
        self.fetch = fetch or self._fetch_public
        self.connect_timeout = connect_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.poll_interval = poll_interval

        self._session = session
        self._owns_session = session is None
        self._task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._last_polled: Optional[Dict[str, Any]] = None

        self.mode = "idle"
        self.failed_attempts = 0
        self.connection_id: Optional[str] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stopped.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stopped.set()
        self.mode = "stopped"
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def reconnect_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(self) -> None:
        """Stay subscribed until stopped; never raises"""
        try:
            while not self._stopped.is_set():
                try:
                    await self._listen()
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                    logger.warning(f"Live channel for {self.username} failed: {e}")

                if self._stopped.is_set():
                    return

                self.failed_attempts += 1
                if self.failed_attempts > self.max_reconnect_attempts:
                    logger.warning(
                        f"Giving up live updates for {self.username} after "
                        f"{self.max_reconnect_attempts} reconnection attempts, polling instead"
                    )
                    await self._poll()
                    return

                delay = self.reconnect_delay(self.failed_attempts)
                logger.info(
                    f"Reconnecting to {self.username} in {delay:.2f}s "
                    f"(attempt {self.failed_attempts}/{self.max_reconnect_attempts})"
                )
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Subscriber for {self.username} stopped unexpectedly: {e}")
            self.mode = "stopped"

    async def _listen(self) -> None:
        self.mode = "connecting"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None

        ws = await asyncio.wait_for(
            self.session.ws_connect(websocket_url(self.base_url), headers=headers),
            timeout=self.connect_timeout,
        )
        try:
            await ws.send_json({"event": "joinPortfolioRoom", "data": self.username})

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.dispatch(msg.json())
                elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                    break
        finally:
            await ws.close()
            if self.mode == "live":
                self.mode = "connecting"

    async def dispatch(self, message: Dict[str, Any]) -> None:
        """Handle one server message"""
        event = message.get("event")
        data = message.get("data") or {}

        if event == "connected":
            self.connection_id = data.get("connectionId")
        elif event == "joinedPortfolioRoom":
            self.mode = "live"
            self.failed_attempts = 0
            logger.info(f"Subscribed to live updates for {data.get('room')}")
        elif event == "portfolioUpdated":
            if data.get("username") == self.username and isinstance(
                data.get("portfolio"), dict
            ):
                await self._deliver(data["portfolio"])
        elif event == "warning":
            logger.warning(f"Live channel warning: {data.get('message')}")

    async def _deliver(self, document: Dict[str, Any]) -> None:
        try:
            result = self.on_update(document)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Update callback for {self.username} failed: {e}")

    async def _fetch_public(self) -> Optional[Dict[str, Any]]:
        async with self.session.get(
            f"{self.base_url}/portfolio/{self.username}",
            timeout=aiohttp.ClientTimeout(total=self.connect_timeout),
        ) as response:
            if response.status != 200:
                return None
            return await response.json()

    async def poll_once(self) -> None:
        try:
            document = await self.fetch()
        except Exception as e:
            logger.warning(f"Polling {self.username} failed: {e}")
            return

        if document is not None and document != self._last_polled:
            self._last_polled = document
            await self._deliver(document)

    async def _poll(self) -> None:
        self.mode = "polling"
        while not self._stopped.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue
