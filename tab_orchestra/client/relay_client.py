"""
Relay client: keeps one resilient WebSocket to the relay.

State machine DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED (loop).

- On CONNECTED the current group (if any) is joined again and heartbeats start.
- On close or error a reconnect is scheduled after a fixed backoff.
- An attempt while another is in flight, or inside the cooldown window of the
  previous attempt, is suppressed; the scheduled reconnect waits out the cooldown.
- Shares made while offline are queued and sent right after the group is re-joined.
- Heartbeats go out only while the socket is open. A missing pong does not force a
  reconnect; only a transport close does.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.asyncio.client import connect as ws_connect

from tab_orchestra.protocol import envelopes
from tab_orchestra.protocol.types import PONG, WELCOME
from tab_orchestra.routing.route import is_open
from .session import ConnectionState, SessionContext

log = logging.getLogger("tab_orchestra.relay_client")

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]
StatusHandler = Callable[[ConnectionState, Optional[str]], None]


class RelayClient:
    def __init__(
        self,
        url: str,
        session: Optional[SessionContext] = None,
        *,
        on_message: Optional[MessageHandler] = None,
        on_status: Optional[StatusHandler] = None,
        heartbeat_interval: float = 25.0,
        reconnect_backoff: float = 3.0,
        reconnect_cooldown: float = 5.0,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url
        self.session = session or SessionContext()
        self.on_message = on_message
        self.on_status = on_status
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_backoff = reconnect_backoff
        self.reconnect_cooldown = reconnect_cooldown
        self._connect_fn = connect or ws_connect
        self._clock = clock

        self._last_attempt: Optional[float] = None
        self._stopped = False
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # ---- state ----------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def is_open(self) -> bool:
        return self.session.connected and is_open(self.session.connection)

    def _set_state(self, state: ConnectionState, error: Optional[str] = None) -> None:
        if self.session.state is state and error is None:
            return
        self.session.state = state
        if self.on_status:
            try:
                self.on_status(state, error)
            except Exception as e:
                log.warning("status callback failed: %s", e)

    def _cooldown_remaining(self) -> float:
        if self._last_attempt is None:
            return 0.0
        return max(0.0, self.reconnect_cooldown - (self._clock() - self._last_attempt))

    # ---- lifecycle ------------------------------------------------------------

    async def start(self) -> bool:
        self._stopped = False
        return await self.connect()

    async def stop(self) -> None:
        self._stopped = True
        tasks = [t for t in (self._reconnect_task, self._heartbeat_task, self._reader_task) if t]
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        ws = self.session.connection
        self.session.connection = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                log.debug("close failed: %s", e)
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)
        self._set_state(ConnectionState.DISCONNECTED)

    async def connect(self) -> bool:
        """One connection attempt. Returns True when the client ends up connected."""
        if self.is_open:
            return True
        if self.session.state is ConnectionState.CONNECTING:
            log.debug("connection attempt already in progress, skipping")
            return False
        if self._cooldown_remaining() > 0:
            log.debug("connection attempt too soon, waiting for cooldown")
            return False

        self._last_attempt = self._clock()
        self._set_state(ConnectionState.CONNECTING)

        old = self.session.connection
        self.session.connection = None
        if old is not None:
            try:
                await old.close()
            except Exception as e:
                log.debug("closing previous connection failed: %s", e)

        try:
            ws = await self._connect_fn(self.url)
        except Exception as e:
            log.warning("connection to %s failed: %s", self.url, e)
            self._set_state(ConnectionState.DISCONNECTED, error=str(e))
            self._schedule_reconnect()
            return False

        if self._stopped:
            await ws.close()
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        self.session.connection = ws
        self._set_state(ConnectionState.CONNECTED)
        log.info("connected to %s", self.url)
        self._reader_task = asyncio.create_task(self._reader(ws))

        if self.session.group_id:
            await self._send_on(ws, envelopes.join_group(self.session.group_id))
            await self._flush_pending(ws)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(ws))
        return self.is_open

    def _schedule_reconnect(self) -> None:
        if self._stopped:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        delay = self.reconnect_backoff
        while not self._stopped:
            await asyncio.sleep(delay)
            if self.is_open:
                return
            await self.connect()
            if self.is_open:
                return
            delay = max(self.reconnect_backoff, self._cooldown_remaining())

    def _on_closed(self, ws: Any) -> None:
        if self.session.connection is not ws:
            return
        self.session.connection = None
        if self._heartbeat_task and self._heartbeat_task is not asyncio.current_task():
            self._heartbeat_task.cancel()
        self._set_state(ConnectionState.DISCONNECTED)
        log.info("disconnected from %s", self.url)
        self._schedule_reconnect()

    # ---- inbound --------------------------------------------------------------

    async def _reader(self, ws: Any) -> None:
        try:
            async for raw in ws:
                env, why = envelopes.decode(raw)
                if env is None:
                    log.warning("failed to parse message: %s", why)
                    continue
                if env["type"] == PONG:
                    self.session.last_pong = self._clock()
                elif env["type"] == WELCOME:
                    self.session.client_id = env.get("clientId")
                else:
                    log.debug("received %s", env["type"])
                if self.on_message:
                    try:
                        await self.on_message(env)
                    except Exception as e:
                        log.exception("message handler failed for %s: %s", env["type"], e)
        except websockets.ConnectionClosed:
            pass
        except Exception as e:
            log.warning("connection error: %s", e)
        finally:
            self._on_closed(ws)

    async def _heartbeat_loop(self, ws: Any) -> None:
        try:
            while is_open(ws):
                await ws.send(envelopes.encode(envelopes.heartbeat()))
                await asyncio.sleep(self.heartbeat_interval)
        except websockets.ConnectionClosed:
            pass

    # ---- outbound -------------------------------------------------------------

    async def _send_on(self, ws: Any, env: Dict[str, Any]) -> bool:
        if not is_open(ws):
            return False
        try:
            await ws.send(envelopes.encode(env))
            return True
        except websockets.ConnectionClosed as e:
            log.warning("send %s failed, connection closed: %s", env.get("type"), e)
            return False

    async def send(self, env: Dict[str, Any]) -> bool:
        ws = self.session.connection
        if ws is None or not self.is_open:
            log.warning("cannot send %s, not connected (state=%s)", env.get("type"), self.state.value)
            return False
        return await self._send_on(ws, env)

    async def join_group(self, group_id: str) -> bool:
        previous = self.session.group_id
        self.session.group_id = group_id
        if self.is_open:
            # one group at a time: the relay fans shares out to every joined group
            if previous and previous != group_id:
                await self.send(envelopes.leave_group(previous))
            return await self.send(envelopes.join_group(group_id))
        # the join goes out from connect() once the socket is up
        await self.connect()
        return self.is_open

    async def leave_group(self) -> bool:
        group_id = self.session.group_id
        self.session.group_id = None
        if group_id is None:
            return False
        return await self.send(envelopes.leave_group(group_id))

    async def share_tab(self, record: Dict[str, Any]) -> bool:
        """Send a share, or queue it until the group is joined again. Returns True when sent."""
        if self.is_open and await self.send(envelopes.share_tab(record)):
            return True
        self.session.pending_shares.append(record)
        log.info("queued share of %s until reconnected", record.get("url"))
        return False

    async def _flush_pending(self, ws: Any) -> None:
        pending, self.session.pending_shares = self.session.pending_shares, []
        for i, record in enumerate(pending):
            if record.get("groupId") != self.session.group_id:
                log.info("dropping queued share of %s for group %s", record.get("url"), record.get("groupId"))
                continue
            if not await self._send_on(ws, envelopes.share_tab(record)):
                self.session.pending_shares.extend(pending[i:])
                return
            log.info("sent queued share of %s", record.get("url"))

    async def send_annotation(self, data: Dict[str, Any]) -> bool:
        return await self.send(envelopes.annotation_created(data))

    async def send_cluster_update(self, clusters) -> bool:
        return await self.send(envelopes.cluster_update(clusters))
