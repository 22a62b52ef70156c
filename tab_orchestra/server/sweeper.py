'''
    Description:
        - Periodic liveness sweep for the relay.
        - Pass 1 evicts connections silent for longer than the liveness timeout, through the
          same disconnect path a transport close takes.
        - Pass 2 reclaims groups that have no members and are older than the grace period.
'''

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from tab_orchestra.server.protocol_handlers import handle_disconnect

log = logging.getLogger("tab_orchestra.sweeper")


@dataclass
class Sweeper:
    ctx: object                      # tab_orchestra.server.context.Context
    interval: float = 60.0
    liveness_timeout: float = 300.0
    grace_period: float = 3600.0
    _task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    async def evict_stale(self) -> List[str]:
        now = self.ctx.clock()
        evicted = []
        for cid in self.ctx.connections.stale(now, self.liveness_timeout):
            conn = self.ctx.connections.get(cid)
            if conn is None:
                continue
            log.info("removing inactive client %s", cid)
            await handle_disconnect(self.ctx, cid)
            evicted.append(cid)
            try:
                await conn.ws.close(code=1000, reason="liveness timeout")
            except Exception as e:
                log.debug("close after eviction failed for %s: %s", cid, e)
        return evicted

    def reclaim_groups(self) -> List[str]:
        now = self.ctx.clock()
        reclaimed = []
        for gid in self.ctx.groups.reclaimable(now, self.grace_period):
            self.ctx.groups.remove(gid)
            reclaimed.append(gid)
            log.info("cleaned up old empty group %s", gid)
        return reclaimed

    async def sweep(self) -> Tuple[List[str], List[str]]:
        evicted = await self.evict_stale()
        reclaimed = self.reclaim_groups()
        stats = self.ctx.stats()
        log.info("stats: %d clients, %d groups, %d tabs shared",
                 stats["connectedClients"], stats["activeGroups"], stats["totalSharedTabs"])
        return evicted, reclaimed

    # ---- background loop ------------------------------------------------------

    async def run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.sweep()
                except Exception as e:
                    log.exception("sweep failed: %s", e)
        except asyncio.CancelledError:
            return

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
