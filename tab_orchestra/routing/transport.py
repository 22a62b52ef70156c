# tab_orchestra/routing/transport.py

"""
Tab Orchestra: Transport (WebSocket) layer

- One WebSocket listener for all extension clients.
- On connect the client is registered and greeted with welcome{clientId}.
- Exactly ONE JSON object per WebSocket text frame (no newline framing).
- Pluggable dispatch table (.on) plus one disconnect hook (.on_disconnect).
- Bad frames (invalid JSON, missing type, unknown type) are logged and skipped.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

import websockets
from websockets.asyncio.server import ServerConnection, serve

from tab_orchestra.protocol.envelopes import decode, welcome
from tab_orchestra.server.registry import Connection

# ------------ Types ------------------------------------------------------------

Handler = Callable[[dict, Connection], Awaitable[None]]
DisconnectHook = Callable[[str], Awaitable[None]]


# ------------------------------ Transport Server --------------------------------

class TransportServer:

    """
    Single WebSocket listener for Tab Orchestra clients.

    - register handlers via .on(msg_type, async handler(env, conn))
    - register the close path via .on_disconnect(async hook(connection_id))
    """

    def __init__(
        self,
        ctx,
        host: str = "0.0.0.0",
        port: int = 8080,
        *,
        ping_interval: Optional[float] = 20,
        ping_timeout: Optional[float] = 20,
        max_size: int = 2**20,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.ctx = ctx
        self._host = host
        self._port = port
        self._handlers: Dict[str, Handler] = {}
        self._on_disconnect: Optional[DisconnectHook] = None
        self._server = None
        self._ws_kwargs = dict(ping_interval=ping_interval, ping_timeout=ping_timeout, max_size=max_size)

        self.log = log or logging.getLogger("tab_orchestra.transport")

    # ---- public API -----------------------------------------------------------

    def on(self, msg_type: str, handler: Handler) -> None:

        """Register an async handler for a message type."""

        self._handlers[msg_type] = handler

    def on_disconnect(self, hook: DisconnectHook) -> None:
        self._on_disconnect = hook

    @property
    def port(self) -> int:
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    async def start(self) -> None:

        """Start the WebSocket listener. Bind errors (OSError) propagate to the caller."""

        self._server = await serve(self._conn_handler, self._host, self._port, **self._ws_kwargs)
        self.log.info("WebSocket listening on ws://%s:%d", self._host, self.port)

    async def stop(self) -> None:

        """Stop listening and close every open connection."""

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    # ---- connection lifecycle -------------------------------------------------

    async def _conn_handler(self, ws: ServerConnection) -> None:
        conn = self.ctx.attach(ws)
        self.log.info("client connected: %s (%d online)", conn.tag(), len(self.ctx.connections))
        try:
            await self.ctx.router.send_to(conn.connection_id, welcome(conn.connection_id))
            async for message in ws:
                await self._handle_frame(message, conn)
        except websockets.ConnectionClosed:
            pass
        except Exception as e:
            self.log.exception("link error for %s: %s", conn.tag(), e)
        finally:
            if self._on_disconnect:
                try:
                    await self._on_disconnect(conn.connection_id)
                except Exception as e:
                    self.log.exception("disconnect hook failed for %s: %s", conn.tag(), e)
            self.ctx.connections.remove(conn.connection_id)
            self.log.info("disconnected: %s", conn.tag())

    async def _handle_frame(self, message, conn: Connection) -> None:

        """Parse, structure-check, then dispatch."""

        env, why = decode(message)
        if env is None:
            self.log.warning("dropping frame from %s: %s", conn.tag(), why)
            return
        await self._dispatch(env, conn)

    async def _dispatch(self, env: dict, conn: Connection) -> None:

        """Dispatch by message type. Unknown types are logged and skipped."""

        self.ctx.touch(conn.connection_id)
        handler = self._handlers.get(env["type"])
        if not handler:
            self.log.warning("no handler for %r from %s", env["type"], conn.tag())
            return
        try:
            await handler(env, conn)
        except Exception as e:
            self.log.exception("handler error for %s: %s", env["type"], e)

