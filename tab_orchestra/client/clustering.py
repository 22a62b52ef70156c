# tab_orchestra/client/clustering.py
from __future__ import annotations

import re
from typing import Any, Dict, List, NamedTuple, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, ValidationError

DEFAULT_CLUSTER = "Other"
DEFAULT_THEME = "Tabs that did not fit another category"

Cluster = Dict[str, Any]          # {"name": str, "theme": str, "tabs": [tab records]}


# ========== Collaborator response shape ==========

class RawCluster(BaseModel):
    name: str = Field(min_length=1)
    tabs: List[Any] = Field(default_factory=list)
    theme: Optional[str] = None


class ValidatedPartition(NamedTuple):
    clusters: List[Cluster]
    classified: int               # tabs placed by the response itself, not by the default fill


# ========== Fallback: group by host ==========

def host_of(url: Any) -> Optional[str]:
    if not isinstance(url, str) or not url:
        return None
    try:
        return urlsplit(url).hostname or None
    except ValueError:
        return None


def fallback_partition(tabs: List[Dict[str, Any]]) -> List[Cluster]:
    """One cluster per distinct host, in order of first appearance. Bad URLs go to Other."""
    by_host: Dict[str, List[Dict[str, Any]]] = {}
    for tab in tabs:
        by_host.setdefault(host_of(tab.get("url")) or DEFAULT_CLUSTER, []).append(tab)
    return [{"name": host, "tabs": members, "theme": f"Content from {host}"}
            for host, members in by_host.items()]


# ========== Semantic partition validation ==========

def _raw_clusters(response: Any) -> List[RawCluster]:
    if isinstance(response, dict):
        items = response.get("clusters")
    elif isinstance(response, list):
        items = response
    else:
        return []
    if not isinstance(items, list):
        return []
    out = []
    for item in items:
        if isinstance(item, RawCluster):
            out.append(item)
            continue
        try:
            out.append(RawCluster.model_validate(item))
        except ValidationError:
            continue
    return out


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def validate_partition(response: Any, tabs: List[Dict[str, Any]]) -> ValidatedPartition:
    """
    Turn a collaborator response into a full partition of `tabs`.

    Out-of-range or non-integer indices are ignored, a tab claimed twice stays with
    the first cluster, empty clusters are dropped and every unclaimed tab lands in
    the default "Other" cluster (merged into a returned cluster of that name).
    """
    claimed = set()
    clusters: List[Cluster] = []
    for raw in _raw_clusters(response):
        members = []
        for value in raw.tabs:
            idx = _as_index(value)
            if idx is None or not 0 <= idx < len(tabs) or idx in claimed:
                continue
            claimed.add(idx)
            members.append(tabs[idx])
        if members:
            name = raw.name.strip() or DEFAULT_CLUSTER
            theme = raw.theme or f"Collection of {name.lower()} content"
            clusters.append({"name": name, "tabs": members, "theme": theme})

    missing = [tab for i, tab in enumerate(tabs) if i not in claimed]
    if missing:
        other = next((c for c in clusters if c["name"].lower() == DEFAULT_CLUSTER.lower()), None)
        if other is not None:
            other["tabs"].extend(missing)
        else:
            clusters.append({"name": DEFAULT_CLUSTER, "tabs": missing, "theme": DEFAULT_THEME})
    return ValidatedPartition(clusters=clusters, classified=len(claimed))


# ========== Discussion prompts ==========

_LEADER = re.compile(r"^(?:\d+[.)]|[-*•])\s*")


def parse_prompts(text: str, limit: int = 3) -> List[str]:
    questions = []
    for line in re.split(r"\n+", text or ""):
        line = _LEADER.sub("", line.strip()).strip()
        if len(line) > 10 and "?" in line:
            questions.append(line)
    return questions[:limit]


def generic_prompts(cluster_name: str) -> List[str]:
    return [
        f"What are the most valuable insights from these {cluster_name} resources?",
        f"How might these {cluster_name} resources connect to your current projects?",
        f"What questions arise after reviewing these {cluster_name} materials?",
    ]
