'''
    Description:
        - The client agent wires the relay client, the tab event reconciler, the
          cluster coordinator and the local store together.
        - Inbound envelopes are dispatched by type. Everything the UI should know
          about is pushed onto `events` as (kind, data) tuples.
'''

# ==== Imports ====
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from tab_orchestra.config import Settings, get_settings
from tab_orchestra.protocol.envelopes import now_ms
from tab_orchestra.protocol.types import (
    AI_CLUSTER_UPDATE,
    ANNOTATION_UPDATE,
    CONNECTION_STATUS_CHANGED,
    GROUP_DATA,
    GROUP_INFO_UPDATED,
    GROUP_JOINED,
    MEMBER_JOINED,
    MEMBER_LEFT,
    PEER_CLUSTERS_UPDATED,
    PONG,
    TAB_SHARED,
    TAB_SHARED_LOCALLY,
    WELCOME,
)
from .classifier import GeminiClassifier
from .clustering import Cluster
from .coordinator import ClusterCoordinator
from .reconciler import Outcome, TabEventReconciler
from .relay_client import RelayClient
from .session import ConnectionState, SessionContext
from .store import JsonStore

log = logging.getLogger("tab_orchestra.agent")

Event = Tuple[str, Any]


class TabOrchestraAgent:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[JsonStore] = None,
        classifier: Any = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings

        self.store = store or JsonStore(s.store_path)
        self.events: "asyncio.Queue[Event]" = asyncio.Queue()
        self.session = SessionContext()

        self.classifier = classifier or GeminiClassifier(
            lambda: self.store.api_key(s.gemini_api_key),
            model=s.gemini_model,
            base_url=s.gemini_base_url,
            timeout=s.classify_timeout,
        )
        self.coordinator = ClusterCoordinator(
            self.classifier,
            self.store,
            notify=self.notify,
            on_semantic=self._share_clusters if s.share_clusters else None,
        )
        self.reconciler = TabEventReconciler(
            self.store,
            echo_window_ms=s.echo_window_ms,
            on_change=self._tabs_changed,
            notify=self.notify,
        )
        self.relay = RelayClient(
            s.relay_url,
            self.session,
            on_message=self.handle_message,
            on_status=self._on_status,
            heartbeat_interval=s.heartbeat_interval,
            reconnect_backoff=s.reconnect_backoff,
            reconnect_cooldown=s.reconnect_cooldown,
            connect=connect,
        )

        self._handlers: Dict[str, Callable[[Dict[str, Any]], None]] = {
            WELCOME: self._on_welcome,
            GROUP_JOINED: self._on_membership,
            MEMBER_JOINED: self._on_membership,
            MEMBER_LEFT: self._on_membership,
            TAB_SHARED: self._on_tab_shared,
            GROUP_DATA: self._on_group_data,
            ANNOTATION_UPDATE: self._on_annotation,
            AI_CLUSTER_UPDATE: self._on_peer_clusters,
            PONG: lambda env: None,
        }

    # ---- lifecycle ------------------------------------------------------------

    async def start(self, group_id: Optional[str] = None) -> bool:
        tabs = self.reconciler.tabs(group_id)
        if tabs:
            self.coordinator.submit(tabs)
        if group_id:
            self.session.group_id = group_id
        return await self.relay.start()

    async def stop(self) -> None:
        await self.relay.stop()
        close = getattr(self.classifier, "aclose", None)
        if close is not None:
            await close()

    def notify(self, kind: str, data: Any) -> None:
        self.events.put_nowait((kind, data))

    # ---- inbound --------------------------------------------------------------

    async def handle_message(self, env: Dict[str, Any]) -> None:
        handler = self._handlers.get(env.get("type"))
        if handler is None:
            log.info("unhandled message type: %s", env.get("type"))
            return
        handler(env)

    def _on_welcome(self, env: Dict[str, Any]) -> None:
        log.info("relay assigned client id %s", env.get("clientId"))

    def _on_membership(self, env: Dict[str, Any]) -> None:
        group_id = env.get("groupId") or self.session.group_id
        if group_id is None:
            return
        info = {"memberCount": env.get("memberCount", 0), "lastUpdate": now_ms()}

        def _put(d: dict) -> None:
            groups = d.get("groups") if isinstance(d.get("groups"), dict) else {}
            groups[group_id] = info
            d["groups"] = groups

        self.store.update(_put)
        self.notify(GROUP_INFO_UPDATED, {
            "groupId": group_id,
            "memberCount": info["memberCount"],
            "event": env["type"],
            "clientId": env.get("clientId"),
        })

    def _on_tab_shared(self, env: Dict[str, Any]) -> None:
        self.reconciler.apply_tab_shared(env.get("data"))

    def _on_group_data(self, env: Dict[str, Any]) -> None:
        self.reconciler.apply_snapshot(
            env.get("groupId") or self.session.group_id,
            env.get("sharedTabs"),
            env.get("annotations"),
        )

    def _on_annotation(self, env: Dict[str, Any]) -> None:
        data = env.get("data")
        group_id = data.get("groupId") if isinstance(data, dict) else None
        self.reconciler.apply_annotation(group_id or self.session.group_id, data, env.get("createdBy"))

    def _on_peer_clusters(self, env: Dict[str, Any]) -> None:
        peer = {"clusters": env.get("data"), "updatedBy": env.get("updatedBy"), "receivedAt": now_ms()}
        self.store.set(peerClusters=peer)
        self.notify(PEER_CLUSTERS_UPDATED, peer)

    def _on_status(self, state: ConnectionState, error: Optional[str]) -> None:
        self.notify(CONNECTION_STATUS_CHANGED, {"state": state.value, "error": error})

    # ---- clustering -----------------------------------------------------------

    def _tabs_changed(self, tabs: List[Dict[str, Any]]) -> None:
        group_id = self.session.group_id
        if group_id is not None:
            tabs = [t for t in tabs if t.get("groupId") == group_id]
        self.coordinator.submit(tabs)

    async def _share_clusters(self, clusters: List[Cluster]) -> None:
        if self.session.group_id and self.relay.is_open:
            await self.relay.send_cluster_update(clusters)

    # ---- user actions ---------------------------------------------------------

    async def join(self, group_id: str) -> bool:
        ok = await self.relay.join_group(group_id)
        self.coordinator.submit(self.reconciler.tabs(group_id))
        return ok

    async def leave(self) -> bool:
        return await self.relay.leave_group()

    async def share_tab(self, title: str, url: str, summary: str = "") -> Outcome:
        group_id = self.session.group_id
        if group_id is None:
            raise ValueError("join a group before sharing tabs")
        record = {
            "id": uuid.uuid4().hex,
            "title": title,
            "url": url,
            "summary": summary,
            "timestamp": now_ms(),
            "groupId": group_id,
        }
        outcome = self.reconciler.record_local_share(record)
        if outcome is not Outcome.ADDED:
            return outcome
        sent = await self.relay.share_tab(record)
        self.notify(TAB_SHARED_LOCALLY, {"tab": record, "sent": sent})
        return outcome

    async def annotate(self, text: str) -> bool:
        group_id = self.session.group_id
        if group_id is None:
            raise ValueError("join a group before adding notes")
        data = {"text": text, "groupId": group_id, "timestamp": now_ms()}
        # the relay does not echo annotations back to their author
        self.reconciler.apply_annotation(group_id, data, self.session.client_id)
        return await self.relay.send_annotation(data)

    def tabs(self) -> List[Dict[str, Any]]:
        return self.reconciler.tabs(self.session.group_id)

    def clusters(self) -> List[Cluster]:
        return self.coordinator.clusters

    async def discussion_prompts(self, cluster_name: str) -> List[str]:
        cluster = next((c for c in self.coordinator.clusters if c["name"].lower() == cluster_name.lower()), None)
        if cluster is None:
            raise KeyError(cluster_name)
        return await self.coordinator.discussion_prompts(cluster)

    def status(self) -> Dict[str, Any]:
        groups = self.store.get("groups")
        group_id = self.session.group_id
        return {
            "state": self.relay.state.value,
            "clientId": self.session.client_id,
            "groupId": group_id,
            "memberCount": (groups.get(group_id) or {}).get("memberCount") if group_id else None,
            "sharedTabs": len(self.tabs()),
            "clusterSource": self.coordinator.source,
        }
