"""
In-memory relay tables:

    connections : Map<ConnectionID, Connection>   # live transports + liveness + joined groups
    groups      : Map<GroupID, Group>             # members, bounded tab history, annotation log

Membership is stored on both sides. Only Context.join/leave/detach mutate it,
so a connection's group set is always the inverse of the groups' member sets.
"""

# ========== Imports ==========
from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, List, Optional, Set

ConnectionID = str
GroupID = str


def new_connection_id() -> ConnectionID:
    return uuid.uuid4().hex


@dataclass
class Connection:
    ws: Any
    connection_id: ConnectionID
    connected_at: float
    last_seen: float
    groups: Set[GroupID] = field(default_factory=set)

    def tag(self) -> str:
        return f"client:{self.connection_id}"


@dataclass
class Group:
    group_id: GroupID
    created_at: float
    history_limit: int = 100
    members: Set[ConnectionID] = field(default_factory=set)
    shared_tabs: Deque[Dict[str, Any]] = field(init=False)
    annotations: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        # oldest record drops off the left once the bound is hit
        self.shared_tabs = deque(maxlen=self.history_limit)

    @property
    def member_count(self) -> int:
        return len(self.members)

    def add_tab(self, record: Dict[str, Any]) -> None:
        self.shared_tabs.append(record)

    def add_annotation(self, record: Dict[str, Any]) -> None:
        self.annotations.append(record)

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        return {"sharedTabs": list(self.shared_tabs), "annotations": list(self.annotations)}


# ========== Registries ==========
class ConnectionRegistry:
    def __init__(self) -> None:
        self._by_id: Dict[ConnectionID, Connection] = {}

    def add(self, ws: Any, now: float) -> Connection:
        conn = Connection(ws=ws, connection_id=new_connection_id(), connected_at=now, last_seen=now)
        self._by_id[conn.connection_id] = conn
        return conn

    def get(self, connection_id: ConnectionID) -> Optional[Connection]:
        return self._by_id.get(connection_id)

    def remove(self, connection_id: ConnectionID) -> Optional[Connection]:
        return self._by_id.pop(connection_id, None)

    def touch(self, connection_id: ConnectionID, now: float) -> None:
        conn = self._by_id.get(connection_id)
        if conn:
            conn.last_seen = now

    def stale(self, now: float, timeout: float) -> List[ConnectionID]:
        return [cid for cid, c in self._by_id.items() if now - c.last_seen > timeout]

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._by_id

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._by_id.values()))

    def __len__(self) -> int:
        return len(self._by_id)


class GroupRegistry:
    def __init__(self, history_limit: int = 100) -> None:
        self.history_limit = history_limit
        self._by_id: Dict[GroupID, Group] = {}

    def get(self, group_id: GroupID) -> Optional[Group]:
        return self._by_id.get(group_id)

    def get_or_create(self, group_id: GroupID, now: float) -> Group:
        group = self._by_id.get(group_id)
        if group is None:
            group = Group(group_id=group_id, created_at=now, history_limit=self.history_limit)
            self._by_id[group_id] = group
        return group

    def remove(self, group_id: GroupID) -> Optional[Group]:
        return self._by_id.pop(group_id, None)

    def reclaimable(self, now: float, grace_period: float) -> List[GroupID]:
        return [gid for gid, g in self._by_id.items()
                if not g.members and now - g.created_at > grace_period]

    def total_shared_tabs(self) -> int:
        return sum(len(g.shared_tabs) for g in self._by_id.values())

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._by_id

    def __iter__(self) -> Iterator[Group]:
        return iter(list(self._by_id.values()))

    def __len__(self) -> int:
        return len(self._by_id)
