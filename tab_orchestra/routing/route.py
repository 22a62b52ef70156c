'''
    Description:
        - Fan-out for the relay: direct replies and group broadcasts with optional sender exclusion.
        - Delivery is best effort. A member whose socket is closed or fails mid-send is
          logged and skipped; the rest of the group still gets the envelope.
'''

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from websockets.protocol import State

from tab_orchestra.protocol.envelopes import encode

log = logging.getLogger("tab_orchestra.routing")


def is_open(ws: Any) -> bool:
    return getattr(ws, "state", None) is State.OPEN


@dataclass
class Router:
    ctx: Any                                      # tab_orchestra.server.context.Context
    log: logging.Logger = field(default=log)

    async def send_raw(self, connection_id: str, ws: Any, message: str) -> bool:
        if not is_open(ws):
            self.log.debug("skip send to closed client %s", connection_id)
            return False
        try:
            await ws.send(message)
            return True
        except Exception as e:
            self.log.warning("failed to send to client %s: %s", connection_id, e)
            return False

    async def send_to(self, connection_id: str, env: Dict[str, Any]) -> bool:
        conn = self.ctx.connections.get(connection_id)
        if conn is None:
            return False
        return await self.send_raw(connection_id, conn.ws, encode(env))

    async def broadcast_to_group(self, group_id: str, env: Dict[str, Any],
                                 exclude: Optional[str] = None) -> int:
        """Send env to every member of group_id except `exclude`. Returns delivered count."""
        group = self.ctx.groups.get(group_id)
        if group is None:
            return 0

        # resolve recipients before the first await so later mutation can't change this fan-out
        targets = []
        for member_id in sorted(group.members):
            if member_id == exclude:
                continue
            conn = self.ctx.connections.get(member_id)
            if conn is not None:
                targets.append((member_id, conn.ws))

        message = encode(env)
        sent = 0
        for member_id, ws in targets:
            if await self.send_raw(member_id, ws, message):
                sent += 1
        self.log.debug("broadcast %s to %d clients in group %s", env.get("type"), sent, group_id)
        return sent
