"""
Tab event reconciler.

Merges relayed tab_shared / group_data events into the locally stored tab list.
The relay echoes every share back to its sender, so incoming records are checked
against what is already stored, matched on (url, groupId):

    |existing.timestamp - incoming.timestamp| >  window  -> duplicate share, rejected with a notice
    |existing.timestamp - incoming.timestamp| <= window  -> echo of our own send, dropped silently
    no match                                            -> new, appended

group_data snapshots replace the group's tabs and annotations wholesale.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from tab_orchestra.protocol.types import DUPLICATE_TAB_WARNING
from .store import JsonStore

log = logging.getLogger("tab_orchestra.reconciler")

Notify = Callable[[str, Any], None]
ChangeHandler = Callable[[List[Dict[str, Any]]], None]


class Outcome(str, Enum):
    ADDED = "added"
    ECHO = "echo"
    DUPLICATE = "duplicate"
    INVALID = "invalid"


def _ts(record: Dict[str, Any]) -> Optional[float]:
    ts = record.get("timestamp")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        return None
    return ts


def _view_key(tabs: List[Dict[str, Any]]) -> List[Tuple[Any, Any, Any]]:
    # what the clustering actually looks at
    return [(t.get("groupId"), t.get("url"), t.get("title")) for t in tabs]


class TabEventReconciler:
    def __init__(
        self,
        store: JsonStore,
        *,
        echo_window_ms: int = 1000,
        on_change: Optional[ChangeHandler] = None,
        notify: Optional[Notify] = None,
    ) -> None:
        self.store = store
        self.echo_window_ms = echo_window_ms
        self.on_change = on_change
        self.notify = notify

    # ---- reads ----------------------------------------------------------------

    def tabs(self, group_id: Optional[str] = None) -> List[Dict[str, Any]]:
        tabs = self.store.get("sharedTabs")
        if group_id is None:
            return tabs
        return [t for t in tabs if t.get("groupId") == group_id]

    def annotations(self, group_id: Optional[str] = None) -> List[Dict[str, Any]]:
        anns = self.store.get("annotations")
        if group_id is None:
            return anns
        return [a for a in anns if a.get("groupId") == group_id]

    # ---- dedup ----------------------------------------------------------------

    def classify(self, record: Dict[str, Any], existing: List[Dict[str, Any]]) -> Tuple[Outcome, Optional[dict]]:
        url = record.get("url")
        if not isinstance(url, str) or not url:
            return Outcome.INVALID, None
        group_id = record.get("groupId")
        matches = [t for t in existing if t.get("url") == url and t.get("groupId") == group_id]
        if not matches:
            return Outcome.ADDED, None

        incoming_ts = _ts(record)

        def delta(t: dict) -> float:
            ts = _ts(t)
            if ts is None or incoming_ts is None:
                return float("inf")
            return abs(ts - incoming_ts)

        for t in matches:
            if delta(t) > self.echo_window_ms:
                return Outcome.DUPLICATE, t
        return Outcome.ECHO, matches[0]

    def _merge(self, record: Dict[str, Any]) -> Outcome:
        tabs = self.tabs()
        outcome, match = self.classify(record, tabs)

        if outcome is Outcome.INVALID:
            log.warning("ignoring tab without url: %r", record)
        elif outcome is Outcome.DUPLICATE:
            log.warning("duplicate tab detected: %s (already shared at %s)", record.get("url"), match.get("timestamp"))
            self._notify(DUPLICATE_TAB_WARNING, {
                "url": record.get("url"),
                "title": record.get("title"),
                "originalTimestamp": match.get("timestamp"),
            })
        elif outcome is Outcome.ECHO:
            log.debug("ignoring echo from relay for %s", record.get("url"))
        else:
            tabs.append(dict(record))
            self.store.set(sharedTabs=tabs)
            self._changed(tabs)
        return outcome

    # ---- inbound events -------------------------------------------------------

    def apply_tab_shared(self, record: Any) -> Outcome:
        if not isinstance(record, dict):
            log.warning("tab_shared without a tab object")
            return Outcome.INVALID
        return self._merge(record)

    def record_local_share(self, record: Dict[str, Any]) -> Outcome:
        """Store a tab this client is about to send. Duplicates are not stored (or sent)."""
        return self._merge(record)

    def apply_snapshot(self, group_id: Optional[str], shared_tabs: Any, annotations: Any) -> None:
        shared_tabs = [t for t in (shared_tabs or []) if isinstance(t, dict)]
        annotations = [a for a in (annotations or []) if isinstance(a, dict)]
        before = self.tabs()

        if group_id is None:
            # snapshot without a group id: treat it as the whole local view
            tabs = list(shared_tabs)
            anns = list(annotations)
        else:
            tabs = [t for t in before if t.get("groupId") != group_id]
            tabs.extend(dict(t, groupId=t.get("groupId", group_id)) for t in shared_tabs)
            anns = [a for a in self.annotations() if a.get("groupId") != group_id]
            anns.extend(dict(a, groupId=a.get("groupId", group_id)) for a in annotations)

        self.store.set(sharedTabs=tabs, annotations=anns)
        log.info("group snapshot for %s: %d tabs, %d annotations", group_id, len(shared_tabs), len(annotations))
        if _view_key(tabs) != _view_key(before):
            self._changed(tabs)

    def apply_annotation(self, group_id: Optional[str], data: Any, created_by: Optional[str]) -> None:
        record = dict(data) if isinstance(data, dict) else {"data": data}
        record.setdefault("groupId", group_id)
        record.setdefault("createdBy", created_by)
        anns = self.annotations()
        anns.append(record)
        self.store.set(annotations=anns)

    # ---- helpers --------------------------------------------------------------

    def _changed(self, tabs: List[Dict[str, Any]]) -> None:
        if self.on_change:
            self.on_change(list(tabs))

    def _notify(self, kind: str, data: Any) -> None:
        if self.notify:
            self.notify(kind, data)
