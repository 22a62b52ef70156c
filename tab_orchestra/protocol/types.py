# tab_orchestra/protocol/types.py
from __future__ import annotations

# ---- Message types (client -> server) ----
HEARTBEAT = "heartbeat"
JOIN_GROUP = "join_group"
LEAVE_GROUP = "leave_group"
SHARE_TAB = "share_tab"
ANNOTATION_CREATED = "annotation_created"
AI_CLUSTER_UPDATE = "ai_cluster_update"        # also relayed server -> client

# ---- Message types (server -> client) ----
WELCOME = "welcome"
GROUP_JOINED = "group_joined"
GROUP_DATA = "group_data"
MEMBER_JOINED = "member_joined"
MEMBER_LEFT = "member_left"
TAB_SHARED = "tab_shared"
ANNOTATION_UPDATE = "annotation_update"
PONG = "pong"

# ---- Local notices (agent -> UI, never on the wire) ----
CONNECTION_STATUS_CHANGED = "connection_status_changed"
GROUP_INFO_UPDATED = "group_info_updated"
CLUSTERS_UPDATED = "clusters_updated"
PEER_CLUSTERS_UPDATED = "peer_clusters_updated"
CLUSTER_WARNING = "cluster_warning"
DUPLICATE_TAB_WARNING = "duplicate_tab_warning"
TAB_SHARED_LOCALLY = "tab_shared_locally"

# Minimal shape docs (for human readers)
# Envelope: { "type": <one of the above>, ...fields }   one JSON object per WS text frame
# Shared tab: { "title", "url", "summary"?, "groupId", "sharedBy", "timestamp", "clientTimestamp"? }
