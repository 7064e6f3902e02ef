from typing import Callable, Dict, List
from collections import defaultdict


class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Callable):
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Callable):
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_type: str, payload: dict):
        handlers = self._subscribers.get(event_type, [])
        for handler in list(handlers):
            handler(payload)


# Event names published by the viewer and the case ingestor
ROI_CAPTURED = "roi_captured"
CALIBRATION_COMMITTED = "calibration_committed"
CASE_INGESTED = "case_ingested"

# Singleton instance (one viewer process, one writer)
event_bus = EventBus()
