from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import Optional

from incident_lens.core.event_bus import (
    CALIBRATION_COMMITTED,
    CASE_INGESTED,
    ROI_CAPTURED,
    event_bus,
)
from incident_lens.core.logging import get_logger


logger = get_logger()

# Oldest entries fall off first; the journal lives only as long as the process
JOURNAL_SIZE = 200


class EventJournal:
    """Recent viewer and ingestion events, newest last."""

    def __init__(self, maxlen: int = JOURNAL_SIZE):
        self._entries: deque = deque(maxlen=maxlen)
        self._lock = Lock()

    def record(self, event_type: str, payload: dict) -> dict:
        entry = {
            "event_type": event_type,
            "received_at": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self, event_type: Optional[str] = None) -> list[dict]:
        with self._lock:
            entries = list(self._entries)
        if event_type is not None:
            entries = [e for e in entries if e["event_type"] == event_type]
        return entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


event_journal = EventJournal()


def _journal_handler(event_type: str):
    def handle(payload: dict):
        event_journal.record(event_type, payload)
        logger.info("event_recorded", event_type=event_type)
    return handle


def handle_roi_captured(payload: dict):
    """
    Expected payload keys:
        id (str), rect (dict), source_timestamp (float),
        contrast (float), image_size_bytes (int)
    """
    event_journal.record(ROI_CAPTURED, payload)
    logger.info(
        "event_recorded",
        event_type=ROI_CAPTURED,
        roi_id=payload.get("id"),
        second=payload.get("source_timestamp"),
    )


def handle_case_ingested(payload: dict):
    """
    Expected payload keys:
        generation (int), sources (list), audio (dict or None)
    """
    event_journal.record(CASE_INGESTED, payload)
    logger.info(
        "event_recorded",
        event_type=CASE_INGESTED,
        generation=payload.get("generation"),
        sources=len(payload.get("sources", [])),
    )


handle_calibration_committed = _journal_handler(CALIBRATION_COMMITTED)


# Wire handlers to the event bus once, when this module is first imported
event_bus.subscribe(ROI_CAPTURED, handle_roi_captured)
event_bus.subscribe(CALIBRATION_COMMITTED, handle_calibration_committed)
event_bus.subscribe(CASE_INGESTED, handle_case_ingested)
