from __future__ import annotations
import json, os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

# JSON key-value store for the client's durable state.
# Keys used by the agent: sharedTabs, annotations, aiClusters, peerClusters, groups, geminiApiKey

DEFAULTS: Dict[str, Any] = {
    "sharedTabs": [],
    "annotations": [],
    "aiClusters": [],
    "peerClusters": [],
    "groups": {},
}


def _default(key: str) -> Any:
    value = DEFAULTS.get(key)
    return type(value)(value) if isinstance(value, (list, dict)) else value


class JsonStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self._atomic_write({})

    def read(self) -> dict:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        return data if isinstance(data, dict) else {}

    def _atomic_write(self, obj: dict) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(obj, f, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def update(self, mutator: Callable[[dict], None]) -> dict:
        data = self.read()
        mutator(data)
        self._atomic_write(data)
        return data

    # chrome.storage.local-style accessors

    def get(self, key: str, default: Any = None) -> Any:
        data = self.read()
        if key in data:
            return data[key]
        return _default(key) if default is None else default

    def set(self, **values: Any) -> None:
        self.update(lambda d: d.update(values))

    def api_key(self, fallback: Optional[str] = None) -> Optional[str]:
        key = self.read().get("geminiApiKey")
        return key or fallback
