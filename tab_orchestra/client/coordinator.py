"""
Cluster coordinator.

Every change to the reconciled tab set goes through submit():

  1. the host-based fallback partition is published right away;
  2. the same tab set is sent to the classifier in a background task;
  3. a validated semantic partition replaces the published one, unless a newer
     submit() happened in the meantime (sequence number check).

Classifier failures keep the fallback and surface a cluster_warning notice.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from tab_orchestra.protocol.types import CLUSTER_WARNING, CLUSTERS_UPDATED
from .classifier import ClassificationError
from .clustering import Cluster, fallback_partition, generic_prompts, validate_partition
from .store import JsonStore

log = logging.getLogger("tab_orchestra.coordinator")

Notify = Callable[[str, Any], None]
SemanticHandler = Callable[[List[Cluster]], Awaitable[None]]

FALLBACK = "fallback"
SEMANTIC = "semantic"


class ClusterCoordinator:
    def __init__(
        self,
        classifier: Any,
        store: JsonStore,
        notify: Optional[Notify] = None,
        on_semantic: Optional[SemanticHandler] = None,
    ) -> None:
        self.classifier = classifier
        self.store = store
        self.notify = notify
        self.on_semantic = on_semantic

        self.seq = 0
        self.clusters: List[Cluster] = []
        self.source = FALLBACK
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, tabs: List[Dict[str, Any]]) -> int:
        """Publish the fallback for `tabs` and start a semantic pass. Returns the sequence number."""
        self.seq += 1
        seq = self.seq
        tabs = list(tabs)

        self._publish(fallback_partition(tabs), FALLBACK)
        if not tabs:
            return seq

        task = asyncio.create_task(self._classify(seq, tabs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return seq

    async def _classify(self, seq: int, tabs: List[Dict[str, Any]]) -> None:
        items = [{"index": i, "title": t.get("title", ""), "url": t.get("url", "")} for i, t in enumerate(tabs)]
        try:
            response = await self.classifier.classify(items)
        except ClassificationError as e:
            self._warn(seq, str(e))
            return
        except Exception as e:
            log.exception("classifier crashed")
            self._warn(seq, f"classification failed: {e}")
            return

        if seq != self.seq:
            log.debug("discarding stale classification #%d (latest is #%d)", seq, self.seq)
            return

        partition = validate_partition(response, tabs)
        if partition.classified == 0:
            self._warn(seq, "classifier returned no usable clusters")
            return

        log.info("semantic clustering #%d: %d cluster(s) for %d tab(s)", seq, len(partition.clusters), len(tabs))
        self._publish(partition.clusters, SEMANTIC)
        if self.on_semantic:
            try:
                await self.on_semantic(partition.clusters)
            except Exception as e:
                log.warning("semantic result hook failed: %s", e)

    def _warn(self, seq: int, message: str) -> None:
        if seq != self.seq:
            return
        log.warning("semantic clustering unavailable, keeping host grouping: %s", message)
        self._emit(CLUSTER_WARNING, {"message": message})

    def _publish(self, clusters: List[Cluster], source: str) -> None:
        self.clusters = clusters
        self.source = source
        self.store.set(aiClusters=clusters)
        self._emit(CLUSTERS_UPDATED, {"clusters": clusters, "source": source})

    def _emit(self, kind: str, data: Any) -> None:
        if self.notify:
            self.notify(kind, data)

    async def discussion_prompts(self, cluster: Cluster) -> List[str]:
        name = cluster.get("name") or "these"
        try:
            questions = await self.classifier.discussion_prompts(cluster)
        except ClassificationError as e:
            log.warning("discussion prompts unavailable for %s: %s", name, e)
            return generic_prompts(name)
        return questions or generic_prompts(name)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
