from __future__ import annotations
import json
import time
from typing import Any, Dict, List, Optional, Tuple

from .types import *


def now_ms() -> int:
    return int(time.time() * 1000)


def encode(env: Dict[str, Any]) -> str:
    return json.dumps(env, separators=(",", ":"), ensure_ascii=False)


def decode(raw: Any) -> Tuple[Optional[Dict[str, Any]], str]:
    """Parse one text frame. Returns (envelope, "") or (None, reason)."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None, "not_utf8"
    try:
        env = json.loads(raw)
    except (TypeError, ValueError):
        return None, "invalid_json"
    if not isinstance(env, dict):
        return None, "not_object"
    if not isinstance(env.get("type"), str) or not env["type"]:
        return None, "missing:type"
    return env, ""


# client side builders
def heartbeat() -> Dict[str, Any]:
    return {"type": HEARTBEAT}

def join_group(group_id: str) -> Dict[str, Any]:
    return {"type": JOIN_GROUP, "groupId": group_id}

def leave_group(group_id: str) -> Dict[str, Any]:
    return {"type": LEAVE_GROUP, "groupId": group_id}

def share_tab(tab: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": SHARE_TAB, "data": tab}

def annotation_created(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": ANNOTATION_CREATED, "data": data}

def cluster_update(clusters: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": AI_CLUSTER_UPDATE, "data": clusters}


# server side builders
def welcome(client_id: str) -> Dict[str, Any]:
    return {"type": WELCOME, "clientId": client_id}

def group_joined(group_id: str, member_count: int) -> Dict[str, Any]:
    return {"type": GROUP_JOINED, "groupId": group_id, "memberCount": member_count}

def group_data(group_id: str, shared_tabs: List[dict], annotations: List[dict]) -> Dict[str, Any]:
    return {"type": GROUP_DATA, "groupId": group_id,
            "sharedTabs": list(shared_tabs), "annotations": list(annotations)}

def member_joined(group_id: str, client_id: str, member_count: int) -> Dict[str, Any]:
    return {"type": MEMBER_JOINED, "groupId": group_id, "clientId": client_id, "memberCount": member_count}

def member_left(group_id: str, client_id: str, member_count: int) -> Dict[str, Any]:
    return {"type": MEMBER_LEFT, "groupId": group_id, "clientId": client_id, "memberCount": member_count}

def tab_shared(record: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": TAB_SHARED, "data": record}

def annotation_update(data: Any, created_by: str) -> Dict[str, Any]:
    return {"type": ANNOTATION_UPDATE, "data": data, "createdBy": created_by}

def cluster_relay(data: Any, updated_by: str) -> Dict[str, Any]:
    return {"type": AI_CLUSTER_UPDATE, "data": data, "updatedBy": updated_by}

def pong() -> Dict[str, Any]:
    return {"type": PONG}
