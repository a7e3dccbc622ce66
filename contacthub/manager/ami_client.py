"""AmiClient: persistent, auto-reconnecting Asterisk Manager Interface session.

One AmiClient owns one TCP session to the PBX for the process lifetime:

  1. connect() opens the socket, reads the banner and logs in
  2. a reader task parses frames and routes them:
       Response → the waiting send_action() with the same ActionID
       Event    → every EventSubscription
  3. the supervisor (start()) reconnects with exponential backoff when
     the reader task ends, and optionally pings the PBX to detect
     half-open connections

Action IDs are ``<random prefix>-<counter>`` and the counter is never
reset, so a response from a new session can never be mistaken for one
addressed to a request issued before a reconnect.  Requests still waiting
when the transport drops are kept and resolve to ActionTimeout.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import secrets

from contacthub.manager.base import (
    ActionRejected,
    ActionTimeout,
    ConnectError,
    ConnectionUnavailable,
    EventSubscription,
    ManagerLink,
    ManagerLinkError,
    ManagerSessionState,
)
from contacthub.manager.frames import ManagerFrame, encode_frame, read_frame

log = logging.getLogger("contacthub.manager.ami")


class AmiClient(ManagerLink):
    """ManagerLink over the Asterisk Manager Interface.

    Usage::

        client = AmiClient("10.0.0.5", 5038, "hub", "secret")
        client.start()                     # background connect + reconnect

        events = client.subscribe_events()
        async for frame in events:         # ends when the session drops
            ...

        response = await client.send_action({"Action": "Ping"})
        await client.close()
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        secret: str,
        *,
        connect_timeout: float = 10.0,
        action_timeout: float = 30.0,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        keepalive_interval: float = 0.0,
        event_queue_size: int = 1000,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._secret = secret
        self._connect_timeout = connect_timeout
        self._action_timeout = action_timeout
        self._reconnect_initial_delay = reconnect_initial_delay
        self._reconnect_max_delay = max(reconnect_max_delay, reconnect_initial_delay)
        self._keepalive_interval = keepalive_interval
        self._event_queue_size = event_queue_size

        self._state = ManagerSessionState.DISCONNECTED
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task | None = None
        self._supervisor_task: asyncio.Task | None = None
        self._closing = False

        self._pending: dict[str, asyncio.Future[ManagerFrame]] = {}
        self._subscriptions: list[EventSubscription] = []
        self._id_prefix = secrets.token_hex(4)
        self._counter = itertools.count(1)

        self.banner = ""
        self.connect_count = 0

    # ── Public API ────────────────────────────────────────────

    @property
    def state(self) -> ManagerSessionState:
        return self._state

    @property
    def pending_count(self) -> int:
        """Actions sent and still awaiting a response."""
        return len(self._pending)

    async def connect(self) -> None:
        if self._state is ManagerSessionState.AUTHENTICATED and self._transport_alive():
            return

        self._state = ManagerSessionState.CONNECTING
        log.info("Connecting to manager at %s:%d", self._host, self._port)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            self._state = ManagerSessionState.DISCONNECTED
            raise ConnectError(
                f"cannot reach manager at {self._host}:{self._port}: {str(e) or 'timeout'}"
            ) from e

        self._reader, self._writer = reader, writer
        self._state = ManagerSessionState.CONNECTED

        try:
            banner = await asyncio.wait_for(reader.readline(), timeout=self._connect_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            await self._drop_connection()
            raise ConnectError("no banner from manager") from e
        if not banner:
            await self._drop_connection()
            raise ConnectError("manager closed the connection before the banner")
        self.banner = banner.decode("utf-8", errors="replace").strip()

        self._reader_task = asyncio.create_task(self._read_loop(reader), name="ami-reader")

        try:
            await self._send(
                {"Action": "Login", "Username": self._username, "Secret": self._secret},
                timeout=self._connect_timeout,
            )
        except ActionRejected as e:
            await self._drop_connection()
            raise ConnectError(f"login rejected: {e.reason}") from e
        except ManagerLinkError as e:
            await self._drop_connection()
            raise ConnectError(f"login failed: {e}") from e

        if not self._transport_alive():
            await self._drop_connection()
            raise ConnectError("connection lost during login")

        self._state = ManagerSessionState.AUTHENTICATED
        self.connect_count += 1
        log.info("Manager link authenticated (%s)", self.banner)

    def start(self) -> None:
        if self._supervisor_task is not None and not self._supervisor_task.done():
            return
        self._closing = False
        self._supervisor_task = asyncio.create_task(self._supervise(), name="ami-supervisor")

    async def close(self) -> None:
        self._closing = True

        if self._state is ManagerSessionState.AUTHENTICATED and self._writer is not None:
            with contextlib.suppress(OSError, RuntimeError):
                self._writer.write(encode_frame({"Action": "Logoff"}))

        task, self._supervisor_task = self._supervisor_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._drop_connection()
        for sub in list(self._subscriptions):
            sub.end()
        self._subscriptions.clear()
        log.info("Manager link closed")

    async def send_action(
        self, action: dict[str, str], timeout: float | None = None,
    ) -> ManagerFrame:
        if self._state is not ManagerSessionState.AUTHENTICATED:
            raise ConnectionUnavailable(
                f"manager link is {self._state.value}; {action.get('Action', '?')} not sent"
            )
        return await self._send(action, timeout)

    def subscribe_events(self) -> EventSubscription:
        sub = EventSubscription(on_close=self._unsubscribe, maxsize=self._event_queue_size)
        self._subscriptions.append(sub)
        log.debug("Event subscriber added (total: %d)", len(self._subscriptions))
        return sub

    # ── Internal: actions ────────────────────────────────────

    def _next_action_id(self) -> str:
        return f"{self._id_prefix}-{next(self._counter)}"

    async def _send(self, action: dict[str, str], timeout: float | None = None) -> ManagerFrame:
        writer = self._writer
        if writer is None:
            raise ConnectionUnavailable("manager link has no transport")

        name = str(action.get("Action", "?"))
        action_id = self._next_action_id()
        fields = dict(action)
        fields["ActionID"] = action_id
        bound = timeout if timeout is not None else self._action_timeout

        future: asyncio.Future[ManagerFrame] = asyncio.get_running_loop().create_future()
        self._pending[action_id] = future
        try:
            try:
                writer.write(encode_frame(fields))
                await writer.drain()
            except (OSError, RuntimeError) as e:
                raise ConnectionUnavailable(f"write failed: {e}") from e

            try:
                response = await asyncio.wait_for(future, timeout=bound)
            except asyncio.TimeoutError as e:
                log.warning("%s (%s) timed out after %.1fs", name, action_id, bound)
                raise ActionTimeout(name, action_id, bound) from e
        finally:
            self._pending.pop(action_id, None)

        if not response.is_success:
            raise ActionRejected(response.message or "unknown error", action_id=action_id)
        return response

    # ── Internal: reader ─────────────────────────────────────

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                frame = await read_frame(reader)
                if frame is None:
                    log.info("Manager closed the connection")
                    break
                self._dispatch(frame)
        except (OSError, ValueError) as e:
            # ValueError: line longer than the stream limit
            log.warning("Manager read failed: %s", e)
        finally:
            self._on_connection_lost()

    def _dispatch(self, frame: ManagerFrame) -> None:
        if frame.is_response:
            future = self._pending.get(frame.action_id)
            if future is None or future.done():
                log.warning(
                    "Dropping unmatched manager response (ActionID=%r, Response=%s)",
                    frame.action_id, frame.get("response"),
                )
                return
            future.set_result(frame)
        elif frame.is_event:
            for sub in list(self._subscriptions):
                sub.push(frame)
        else:
            log.debug("Ignoring manager frame without Response/Event: %s", frame.fields)

    def _on_connection_lost(self) -> None:
        if self._writer is None and self._state is ManagerSessionState.DISCONNECTED:
            return
        self._state = ManagerSessionState.DISCONNECTED
        writer, self._writer, self._reader = self._writer, None, None
        if writer is not None:
            writer.close()

        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            sub.end()

        log.warning(
            "Manager link disconnected (%d action(s) awaiting response, %d subscription(s) ended)",
            len(self._pending), len(subs),
        )

    async def _drop_connection(self) -> None:
        writer = self._writer
        task, self._reader_task = self._reader_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._on_connection_lost()
        if writer is not None:
            with contextlib.suppress(OSError, RuntimeError):
                await writer.wait_closed()
        self._state = ManagerSessionState.DISCONNECTED

    def _transport_alive(self) -> bool:
        task = self._reader_task
        return self._writer is not None and task is not None and not task.done()

    def _unsubscribe(self, sub: EventSubscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            pass

    # ── Internal: supervision ────────────────────────────────

    async def _supervise(self) -> None:
        delay = self._reconnect_initial_delay
        while not self._closing:
            try:
                await self.connect()
            except ConnectError as e:
                log.warning("Manager connect failed: %s (retrying in %.1fs)", e, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._reconnect_max_delay)
                continue

            delay = self._reconnect_initial_delay
            await self._wait_until_lost()
            if not self._closing:
                log.warning("Manager session lost; reconnecting")

    async def _wait_until_lost(self) -> None:
        reader_task = self._reader_task
        if reader_task is None:
            return
        keepalive = None
        if self._keepalive_interval > 0:
            keepalive = asyncio.create_task(self._keepalive(), name="ami-keepalive")
        try:
            await asyncio.wait({reader_task})
        finally:
            if keepalive is not None:
                keepalive.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await keepalive

    async def _keepalive(self) -> None:
        while self._state is ManagerSessionState.AUTHENTICATED:
            await asyncio.sleep(self._keepalive_interval)
            try:
                await self.send_action({"Action": "Ping"}, timeout=self._keepalive_interval)
            except ConnectionUnavailable:
                return
            except ManagerLinkError as e:
                log.warning("Manager keepalive failed (%s); resetting transport", e)
                if self._writer is not None:
                    self._writer.close()
                return
