import collections
import copy
from typing import Any, Dict, List, Optional


class DemoSessionCache:
    """Most-recent-first cache of LOCAL (demo) sessions.

    Re-putting an id replaces the entry and moves it to the front; the oldest
    entries are evicted past ``capacity``. Entries never reach the store.
    """

    def __init__(self, capacity: int = 10):
        self.capacity = max(1, int(capacity))
        self._items: "collections.OrderedDict[str, Dict[str, Any]]" = collections.OrderedDict()

    def put(self, session: Dict[str, Any]) -> Dict[str, Any]:
        sid = str(session.get("id") or "")
        if not sid:
            raise ValueError("demo session requires an id")
        entry = copy.deepcopy(session)
        self._items.pop(sid, None)
        self._items[sid] = entry
        self._items.move_to_end(sid, last=False)
        while len(self._items) > self.capacity:
            self._items.popitem(last=True)
        return copy.deepcopy(entry)

    def attach_analysis(
        self, session_id: str, analysis: Dict[str, Any], metrics: Optional[Dict[str, Any]] = None
    ) -> bool:
        entry = self._items.get(session_id)
        if entry is None:
            return False
        entry["analysis"] = copy.deepcopy(analysis)
        if metrics is not None:
            entry["metrics"] = dict(metrics)
        entry["processingStatus"] = "completed"
        if isinstance(analysis.get("overallScore"), (int, float)):
            entry["score"] = analysis["overallScore"]
        return True

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._items.get(session_id)
        return copy.deepcopy(entry) if entry is not None else None

    def recent(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items = list(self._items.values())
        if limit is not None:
            items = items[:limit]
        return [copy.deepcopy(i) for i in items]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._items
