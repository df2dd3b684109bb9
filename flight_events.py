"""
Flight Events Module

In-process publish/subscribe channel for flight list changes.
Keeps a bounded log so clients can poll for events they missed.
"""

import os
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from flight_status import FlightStatus, parse_status

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
EVENT_LOG_SIZE = int(os.getenv("EVENT_LOG_SIZE", 200))


class FlightEventType(Enum):
    FLIGHT_ADDED = "FlightAdded"
    FLIGHT_DELETED = "FlightDeleted"
    FLIGHT_STATUS_CHANGED = "FlightStatusChanged"


# =====================================================
# Event Data Class
# =====================================================

class FlightEvent:
    """
    A single published event.
    """

    def __init__(
        self,
        sequence: int,
        event_type: FlightEventType,
        payload: Dict[str, Any],
        created_at: datetime = None
    ):
        self.sequence = sequence
        self.event_type = event_type
        self.payload = payload
        self.created_at = created_at or datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API."""
        return {
            "sequence": self.sequence,
            "type": self.event_type.value,
            "payload": self.payload,
            "created_at": self.created_at.isoformat()
        }


def parse_status_change_payload(payload: Any) -> Optional[Tuple[str, FlightStatus]]:
    """
    Validate a status-change notification.

    Args:
        payload: Dict with flightId and newStatus

    Returns:
        Tuple of (flight_id, status), or None if the payload is invalid
    """
    if not isinstance(payload, dict):
        logger.warning(f"Invalid FlightStatusChanged payload received: {payload!r}")
        return None

    flight_id = payload.get("flightId")
    new_status = payload.get("newStatus")
    if not isinstance(flight_id, str) or not flight_id or not isinstance(new_status, str):
        logger.warning(f"Invalid FlightStatusChanged payload received: {payload!r}")
        return None

    status = parse_status(new_status)
    if status is None:
        logger.warning(f"Unrecognized status '{new_status}' for flight {flight_id}, ignoring")
        return None

    return flight_id, status


# =====================================================
# Event Bus
# =====================================================

class FlightEventBus:
    """
    Dispatches flight events to subscribers and records them.
    """

    def __init__(self, log_size: int = None):
        self._listeners: Dict[FlightEventType, List[Callable[[FlightEvent], None]]] = {}
        self._log: deque = deque(maxlen=log_size or EVENT_LOG_SIZE)
        self._sequence = 0
        self._lock = threading.Lock()

    def subscribe(self, event_type: FlightEventType, callback: Callable[[FlightEvent], None]) -> None:
        """Register a listener for an event type."""
        with self._lock:
            listeners = self._listeners.setdefault(event_type, [])
            if callback not in listeners:
                listeners.append(callback)

    def unsubscribe(self, event_type: FlightEventType, callback: Callable[[FlightEvent], None]) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        with self._lock:
            listeners = self._listeners.get(event_type, [])
            if callback in listeners:
                listeners.remove(callback)

    def publish(self, event_type: FlightEventType, payload: Dict[str, Any]) -> FlightEvent:
        """
        Record an event and deliver it to listeners.

        A failing listener is logged and does not stop delivery.
        """
        with self._lock:
            self._sequence += 1
            event = FlightEvent(self._sequence, event_type, payload)
            self._log.append(event)
            listeners = list(self._listeners.get(event_type, []))

        logger.info(f"Event #{event.sequence} {event_type.value}")
        for callback in listeners:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Listener for {event_type.value} failed: {e}")

        return event

    def recent(self, after: int = 0, limit: int = 100) -> List[FlightEvent]:
        """Events with sequence greater than `after`, oldest first."""
        with self._lock:
            events = [e for e in self._log if e.sequence > after]
        return events[:limit]

    @property
    def last_sequence(self) -> int:
        return self._sequence

    def listener_count(self, event_type: FlightEventType) -> int:
        return len(self._listeners.get(event_type, []))
