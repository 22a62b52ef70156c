'''
    Description:
        - Relay state shared by the transport, the protocol handlers and the sweeper.
        - Owns both registries and is the only place that changes group membership.
        - All methods are synchronous; callers do their sends after the mutation is done.
'''

import time
from typing import Callable, Dict, List, Optional

from .registry import Connection, ConnectionID, ConnectionRegistry, Group, GroupID, GroupRegistry


class Context:
    def __init__(self, history_limit: int = 100, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.connections = ConnectionRegistry()
        self.groups = GroupRegistry(history_limit=history_limit)

        # router will be attached by run_relay.py
        self.router = None

    # connections
    def attach(self, ws) -> Connection:
        return self.connections.add(ws, self.clock())

    def touch(self, connection_id: ConnectionID) -> None:
        self.connections.touch(connection_id, self.clock())

    # membership
    def join(self, connection_id: ConnectionID, group_id: GroupID) -> Optional[Group]:
        conn = self.connections.get(connection_id)
        if conn is None:
            return None
        group = self.groups.get_or_create(group_id, self.clock())
        group.members.add(connection_id)
        conn.groups.add(group_id)
        return group

    def leave(self, connection_id: ConnectionID, group_id: GroupID) -> Optional[Group]:
        """Drop one membership. Emptied groups stay until the sweeper reclaims them."""
        conn = self.connections.get(connection_id)
        group = self.groups.get(group_id)
        if conn is None or group is None:
            return None
        if connection_id not in group.members and group_id not in conn.groups:
            return None
        group.members.discard(connection_id)
        conn.groups.discard(group_id)
        return group

    def detach(self, connection_id: ConnectionID) -> List[Group]:
        """Leave every group, then forget the connection. Returns the groups left."""
        conn = self.connections.get(connection_id)
        if conn is None:
            return []
        left = []
        for group_id in sorted(conn.groups):
            group = self.leave(connection_id, group_id)
            if group is not None:
                left.append(group)
        self.connections.remove(connection_id)
        return left

    def member_groups(self, connection_id: ConnectionID) -> List[Group]:
        conn = self.connections.get(connection_id)
        if conn is None:
            return []
        return [g for g in (self.groups.get(gid) for gid in sorted(conn.groups)) if g is not None]

    def stats(self) -> Dict[str, int]:
        return {
            "connectedClients": len(self.connections),
            "activeGroups": len(self.groups),
            "totalSharedTabs": self.groups.total_shared_tabs(),
        }
