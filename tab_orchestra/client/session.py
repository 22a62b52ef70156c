# tab_orchestra/client/session.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class SessionContext:
    """
    Per-client session state.

    Writers: RelayClient's connection state machine owns client_id, connection,
    state, last_pong and pending_shares. RelayClient.join_group / leave_group own group_id.
    Everything else only reads.
    """
    client_id: Optional[str] = None
    group_id: Optional[str] = None
    connection: Any = None
    state: ConnectionState = ConnectionState.DISCONNECTED
    last_pong: Optional[float] = None
    pending_shares: List[Dict[str, Any]] = field(default_factory=list)   # shares made while offline

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED
