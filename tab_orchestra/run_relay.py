'''
    Description:
        - This is the main entry point for running the Tab Orchestra relay.
          It builds the context and router, registers the protocol handlers on the
          transport, starts the liveness sweeper and serves until SIGINT / SIGTERM.
        - A bind failure at startup is the only fatal error: it is logged and the
          process exits with status 1.
'''

# ==== Imports ====
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

from tab_orchestra.config import Settings, get_settings
from tab_orchestra.protocol.types import (
    AI_CLUSTER_UPDATE, ANNOTATION_CREATED, HEARTBEAT, JOIN_GROUP, LEAVE_GROUP, SHARE_TAB,
)
from tab_orchestra.routing.route import Router
from tab_orchestra.routing.transport import TransportServer
from tab_orchestra.server.context import Context
from tab_orchestra.server.protocol_handlers import (
    handle_ai_cluster_update,
    handle_annotation_created,
    handle_disconnect,
    handle_heartbeat,
    handle_join_group,
    handle_leave_group,
    handle_share_tab,
)
from tab_orchestra.server.sweeper import Sweeper

log = logging.getLogger("tab_orchestra.run_relay")


# ==== Functions ====

def make_context(settings: Settings) -> Context:
    context = Context(history_limit=settings.history_limit)
    context.router = Router(ctx=context)
    return context


def adapt(context: Context, handler):
    async def _wrapped(env: dict, conn):
        await handler(context, conn, env)
    return _wrapped


def build_server(context: Context, host: str, port: int) -> TransportServer:
    server = TransportServer(context, host=host, port=port)

    server.on(HEARTBEAT,          adapt(context, handle_heartbeat))
    server.on(JOIN_GROUP,         adapt(context, handle_join_group))
    server.on(LEAVE_GROUP,        adapt(context, handle_leave_group))
    server.on(SHARE_TAB,          adapt(context, handle_share_tab))
    server.on(ANNOTATION_CREATED, adapt(context, handle_annotation_created))
    server.on(AI_CLUSTER_UPDATE,  adapt(context, handle_ai_cluster_update))

    async def _on_close(connection_id: str):
        await handle_disconnect(context, connection_id)

    server.on_disconnect(_on_close)
    return server


async def main(settings: Optional[Settings] = None) -> int:
    settings = settings or get_settings()
    context = make_context(settings)
    server = build_server(context, settings.host, settings.port)

    try:
        await server.start()
    except OSError as e:
        log.critical("cannot bind ws://%s:%d: %s", settings.host, settings.port, e)
        return 1

    sweeper = Sweeper(
        context,
        interval=settings.sweep_interval,
        liveness_timeout=settings.liveness_timeout,
        grace_period=settings.group_grace_period,
    )
    sweeper.start()
    log.info("Tab Orchestra relay running, connect extensions to ws://localhost:%d", server.port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass  # not supported on this platform, KeyboardInterrupt still ends asyncio.run

    await stop.wait()
    log.info("Shutting down Tab Orchestra relay...")
    await sweeper.stop()
    await server.stop()
    return 0


def run() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(main(settings)))


if __name__ == "__main__":
    run()
