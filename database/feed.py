"""
In-process change feed with subscribe-on-filter semantics
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str  # 'insert', 'upsert' or 'delete'
    employee_id: str
    new: Optional[Any] = None
    old: Optional[Any] = None


class ChangeFeed:
    def __init__(self):
        self._subscribers = defaultdict(list)

    def subscribe(self, table, employee_id, callback):
        """Deliver events for (table, employee_id); returns an unsubscribe function"""
        key = (table, employee_id)
        self._subscribers[key].append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[key]

        return unsubscribe

    def publish(self, event):
        for callback in list(self._subscribers.get((event.table, event.employee_id), [])):
            callback(event)

    def subscriber_count(self, table=None, employee_id=None):
        return sum(
            len(callbacks) for (t, e), callbacks in self._subscribers.items()
            if (table is None or t == table) and (employee_id is None or e == employee_id)
        )
