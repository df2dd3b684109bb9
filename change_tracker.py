"""
Change Tracker Module

Detects effective-status changes between successive observations of
the flight list and keeps each change highlighted for a bounded window.
"""

import os
import heapq
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from dotenv import load_dotenv

from flight_status import FlightStatus, effective_status

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
HIGHLIGHT_DURATION_SECONDS = float(os.getenv("HIGHLIGHT_DURATION_SECONDS", 10))
ADDED_HIGHLIGHT_SECONDS = float(os.getenv("ADDED_HIGHLIGHT_SECONDS", 3))


@dataclass(frozen=True)
class ChangeRecord:
    """A detected status transition for one flight."""
    flight_id: str
    previous_status: FlightStatus
    new_status: FlightStatus
    detected_at: datetime
    expires_at: datetime

    def as_pair(self) -> Tuple[FlightStatus, FlightStatus]:
        return self.previous_status, self.new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flightId": self.flight_id,
            "oldStatus": self.previous_status.value,
            "newStatus": self.new_status.value,
            "detectedAt": self.detected_at.isoformat(),
            "expiresAt": self.expires_at.isoformat()
        }


class ChangeTracker:
    """
    Diffs effective statuses between observations.

    Expiry is driven by a single sweep over a min-heap of expiry
    instants. Heap entries left behind by replaced or removed records
    are skipped when popped.
    """

    def __init__(
        self,
        highlight_duration: timedelta = None,
        added_highlight_duration: timedelta = None,
        status_resolver: Callable[[Any, Optional[FlightStatus], datetime], Any] = effective_status
    ):
        if highlight_duration is None:
            highlight_duration = timedelta(seconds=HIGHLIGHT_DURATION_SECONDS)
        if added_highlight_duration is None:
            added_highlight_duration = timedelta(seconds=ADDED_HIGHLIGHT_SECONDS)
        self.highlight_duration = highlight_duration
        self.added_highlight_duration = added_highlight_duration
        self._resolve = status_resolver

        self._last_statuses: Optional[Dict[str, FlightStatus]] = None
        self._last_observed_at: Optional[datetime] = None
        self._changes: Dict[str, ChangeRecord] = {}
        self._added: Dict[str, datetime] = {}
        self._heap: List[Tuple[datetime, int, str]] = []
        self._counter = 0
        self._lock = threading.Lock()

    # -------------------------------------------------
    # Observation
    # -------------------------------------------------

    def observe(self, current_records: Iterable[Any], now: datetime) -> List[ChangeRecord]:
        """
        Diff the current records against the previous observation.

        Args:
            current_records: Records with id, departure_time, pushed_status
            now: Instant of this observation

        Returns:
            ChangeRecords opened by this call
        """
        current: Dict[str, FlightStatus] = {}
        for record in current_records:
            resolved = self._resolve(record.departure_time, record.pushed_status, now)
            current[record.id] = resolved.status

        opened: List[ChangeRecord] = []
        with self._lock:
            previous = self._last_statuses

            if previous is not None:
                for flight_id in previous.keys() - current.keys():
                    self._discard(flight_id)

                for flight_id, new_status in current.items():
                    if flight_id not in previous:
                        self._added[flight_id] = now + self.added_highlight_duration
                        self._push(self._added[flight_id], flight_id)
                        continue

                    old_status = previous[flight_id]
                    if old_status == new_status:
                        continue

                    change = ChangeRecord(
                        flight_id=flight_id,
                        previous_status=old_status,
                        new_status=new_status,
                        detected_at=now,
                        expires_at=now + self.highlight_duration
                    )
                    self._changes[flight_id] = change
                    self._push(change.expires_at, flight_id)
                    opened.append(change)

            self._last_statuses = current
            self._last_observed_at = now

        for change in opened:
            logger.info(
                f"Status change for {change.flight_id}: "
                f"{change.previous_status.value} -> {change.new_status.value}"
            )
        return opened

    # -------------------------------------------------
    # Queries
    # -------------------------------------------------

    def is_highlighted(
        self,
        flight_id: str,
        now: datetime = None
    ) -> Optional[Tuple[FlightStatus, FlightStatus]]:
        """Active (old, new) pair for a flight, or None."""
        with self._lock:
            change = self._changes.get(flight_id)
        if change is None:
            return None
        if now is not None and change.expires_at <= now:
            return None
        return change.as_pair()

    def get_change(self, flight_id: str) -> Optional[ChangeRecord]:
        with self._lock:
            return self._changes.get(flight_id)

    def is_freshly_added(self, flight_id: str, now: datetime = None) -> bool:
        with self._lock:
            expires_at = self._added.get(flight_id)
        if expires_at is None:
            return False
        return now is None or expires_at > now

    def highlights(self, now: datetime = None) -> Dict[str, ChangeRecord]:
        """Snapshot of active change records keyed by flight ID."""
        with self._lock:
            changes = dict(self._changes)
        if now is None:
            return changes
        return {k: v for k, v in changes.items() if v.expires_at > now}

    @property
    def last_observed_at(self) -> Optional[datetime]:
        return self._last_observed_at

    # -------------------------------------------------
    # Expiry & Removal
    # -------------------------------------------------

    def expire(self, now: datetime) -> Set[str]:
        """
        Purge change records with expires_at <= now.

        Added-flight marks are purged in the same sweep.

        Returns:
            IDs whose change record was cleared
        """
        cleared: Set[str] = set()
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                expires_at, _, flight_id = heapq.heappop(self._heap)

                change = self._changes.get(flight_id)
                if change is not None and change.expires_at == expires_at:
                    del self._changes[flight_id]
                    cleared.add(flight_id)

                if self._added.get(flight_id) == expires_at:
                    del self._added[flight_id]

        if cleared:
            logger.debug(f"Cleared {len(cleared)} expired highlights")
        return cleared

    def forget(self, flight_id: str) -> bool:
        """
        Drop all state for a removed flight.

        Returns:
            True if a pending change record was cancelled
        """
        with self._lock:
            had_change = flight_id in self._changes
            self._discard(flight_id)
            if self._last_statuses is not None:
                self._last_statuses.pop(flight_id, None)
        return had_change

    def reset(self) -> None:
        """Drop all state."""
        with self._lock:
            self._last_statuses = None
            self._last_observed_at = None
            self._changes.clear()
            self._added.clear()
            self._heap.clear()

    # -------------------------------------------------
    # Internals (caller holds the lock)
    # -------------------------------------------------

    def _push(self, expires_at: datetime, flight_id: str) -> None:
        self._counter += 1
        heapq.heappush(self._heap, (expires_at, self._counter, flight_id))

    def _discard(self, flight_id: str) -> None:
        self._changes.pop(flight_id, None)
        self._added.pop(flight_id, None)
