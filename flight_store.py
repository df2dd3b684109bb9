"""
Flight Store Module

Holds the live flight list. Uses Supabase when configured,
in-memory storage otherwise.
"""

import os
import uuid
import logging
import threading
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from dotenv import load_dotenv

from flight_status import (
    FlightStatus,
    EffectiveStatus,
    parse_status,
    parse_departure_time,
    effective_status,
)
from flight_events import FlightEventBus, FlightEventType

load_dotenv()

logger = logging.getLogger(__name__)

FLIGHTS_TABLE = "flights"


# =====================================================
# Flight Record
# =====================================================

class FlightRecord:
    """
    A flight on the board.
    """

    def __init__(
        self,
        id: str,
        departure_time: Any,
        flight_number: str = "",
        destination: str = "",
        gate: str = "",
        pushed_status: Optional[FlightStatus] = None
    ):
        self.id = id
        self.departure_time = departure_time
        self.flight_number = flight_number
        self.destination = destination
        self.gate = gate
        self.pushed_status = pushed_status

    @property
    def departure_at(self) -> Optional[datetime]:
        """Parsed departure instant, None if unparseable."""
        return parse_departure_time(self.departure_time)

    def effective_status(self, now: datetime) -> EffectiveStatus:
        return effective_status(self.departure_time, self.pushed_status, now)

    def copy(self) -> "FlightRecord":
        return FlightRecord(
            id=self.id,
            departure_time=self.departure_time,
            flight_number=self.flight_number,
            destination=self.destination,
            gate=self.gate,
            pushed_status=self.pushed_status
        )

    def to_dict(self, now: datetime = None) -> Dict[str, Any]:
        """Convert to API dictionary. Includes computed status when now is given."""
        departure = self.departure_at
        result = {
            "id": self.id,
            "flightNumber": self.flight_number,
            "destination": self.destination,
            "departureTime": departure.isoformat() if departure else str(self.departure_time),
            "gate": self.gate,
            "currentStatus": self.pushed_status.value if self.pushed_status else None,
        }
        if now is not None:
            result["status"] = self.effective_status(now).status.value
        return result

    def to_row(self) -> Dict[str, Any]:
        """Convert to database row."""
        departure = self.departure_at
        return {
            "id": self.id,
            "flight_number": self.flight_number,
            "destination": self.destination,
            "departure_time": departure.isoformat() if departure else self.departure_time,
            "gate": self.gate,
            "current_status": self.pushed_status.value if self.pushed_status else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlightRecord":
        """
        Create FlightRecord from an API payload or database row.

        An unrecognized pushed status is dropped (falls back to computed).
        """
        raw_status = data.get("currentStatus", data.get("current_status"))
        pushed = parse_status(raw_status) if raw_status else None
        if raw_status and pushed is None:
            logger.warning(
                f"Ignoring unrecognized status '{raw_status}' for flight {data.get('id')}"
            )

        departure = data.get("departureTime", data.get("departure_time"))
        if parse_departure_time(departure) is None:
            logger.warning(f"Unparseable departure time for flight {data.get('id')}: {departure!r}")

        return cls(
            id=str(data.get("id", "")),
            departure_time=departure,
            flight_number=data.get("flightNumber", data.get("flight_number", "")) or "",
            destination=data.get("destination", "") or "",
            gate=data.get("gate", "") or "",
            pushed_status=pushed
        )


def _sort_key(record: FlightRecord):
    departure = record.departure_at
    if departure is None:
        return (1, datetime.max.replace(tzinfo=timezone.utc))
    return (0, departure)


# =====================================================
# Flight Store
# =====================================================

class FlightStore:
    """
    Service for managing the flight list.
    """

    def __init__(self, event_bus: FlightEventBus = None):
        self._supabase = None
        self._flights: Dict[str, FlightRecord] = {}
        self._lock = threading.Lock()
        self.event_bus = event_bus or FlightEventBus()

    @property
    def supabase(self):
        """Lazy load Supabase client."""
        if self._supabase is None:
            from supabase import create_client
            url = os.getenv("SUPABASE_URL")
            key = os.getenv("SUPABASE_KEY")
            if url and key:
                self._supabase = create_client(url, key)
        return self._supabase

    # -------------------------------------------------
    # Queries
    # -------------------------------------------------

    def snapshot(self) -> List[FlightRecord]:
        """All flights, sorted by departure time."""
        if self.supabase:
            try:
                result = self.supabase.table(FLIGHTS_TABLE).select("*").execute()
                return sorted(
                    (FlightRecord.from_dict(row) for row in (result.data or [])),
                    key=_sort_key
                )
            except Exception as e:
                logger.warning(f"Database query failed, using memory storage: {e}")

        with self._lock:
            records = [r.copy() for r in self._flights.values()]
        return sorted(records, key=_sort_key)

    def list_flights(
        self,
        destination: str = None,
        status: FlightStatus = None,
        now: datetime = None
    ) -> List[FlightRecord]:
        """
        Get flights matching the filters.

        Args:
            destination: Case-insensitive substring of destination
            status: Effective status at `now`
            now: Evaluation instant for the status filter

        Returns:
            List of FlightRecord sorted by departure time
        """
        flights = self.snapshot()

        if destination:
            needle = destination.strip().lower()
            flights = [f for f in flights if needle in (f.destination or "").lower()]

        if status is not None:
            now = now or datetime.now(timezone.utc)
            flights = [f for f in flights if f.effective_status(now).status == status]

        return flights

    def get_flight(self, flight_id: str) -> Optional[FlightRecord]:
        """Get a flight by ID."""
        if self.supabase:
            try:
                result = self.supabase.table(FLIGHTS_TABLE) \
                    .select("*") \
                    .eq("id", flight_id) \
                    .execute()
                if result.data:
                    return FlightRecord.from_dict(result.data[0])
                return None
            except Exception as e:
                logger.warning(f"Database query failed, using memory storage: {e}")

        with self._lock:
            record = self._flights.get(flight_id)
            return record.copy() if record else None

    # -------------------------------------------------
    # Mutations
    # -------------------------------------------------

    def add_flight(
        self,
        flight_number: str,
        destination: str,
        departure_time: Any,
        gate: str,
        flight_id: str = None
    ) -> Optional[FlightRecord]:
        """
        Add a flight and publish FlightAdded.

        Returns:
            The stored record, or None if the ID already exists
        """
        record = FlightRecord(
            id=flight_id or str(uuid.uuid4()),
            departure_time=departure_time,
            flight_number=flight_number,
            destination=destination,
            gate=gate
        )
        if record.departure_at is None:
            logger.warning(f"Unparseable departure time for flight {record.id}: {departure_time!r}")

        if self.get_flight(record.id) is not None:
            logger.warning(f"Duplicate flight ignored for ID: {record.id}")
            return None

        stored = False
        if self.supabase:
            try:
                result = self.supabase.table(FLIGHTS_TABLE).insert(record.to_row()).execute()
                if result.data:
                    record = FlightRecord.from_dict(result.data[0])
                stored = True
            except Exception as e:
                logger.warning(f"Database insert failed, using memory storage: {e}")

        if not stored:
            with self._lock:
                self._flights[record.id] = record.copy()

        logger.info(f"Flight {record.flight_number} added ({record.id})")
        self.event_bus.publish(FlightEventType.FLIGHT_ADDED, record.to_dict())
        return record

    def delete_flight(self, flight_id: str) -> Optional[FlightRecord]:
        """
        Delete a flight and publish FlightDeleted.

        Returns:
            The removed record, or None if not found
        """
        record = self.get_flight(flight_id)
        if record is None:
            return None

        removed = False
        if self.supabase:
            try:
                self.supabase.table(FLIGHTS_TABLE).delete().eq("id", flight_id).execute()
                removed = True
            except Exception as e:
                logger.warning(f"Database delete failed, using memory storage: {e}")

        if not removed:
            with self._lock:
                self._flights.pop(flight_id, None)

        logger.info(f"Flight {record.flight_number} deleted ({flight_id})")
        self.event_bus.publish(FlightEventType.FLIGHT_DELETED, record.to_dict())
        return record

    def apply_status_change(self, flight_id: str, new_status: FlightStatus) -> bool:
        """
        Overwrite the pushed status for a flight.

        Returns:
            True if the flight was updated
        """
        record = self.get_flight(flight_id)
        if record is None:
            logger.warning(f"FlightStatusChanged ignored for unknown ID: {flight_id}")
            return False

        if record.pushed_status == new_status:
            logger.warning(
                f"FlightStatusChanged ignored for ID: {flight_id}, status already {new_status.value}"
            )
            return False

        updated = False
        if self.supabase:
            try:
                self.supabase.table(FLIGHTS_TABLE) \
                    .update({"current_status": new_status.value}) \
                    .eq("id", flight_id) \
                    .execute()
                updated = True
            except Exception as e:
                logger.warning(f"Database update failed, using memory storage: {e}")

        if not updated:
            with self._lock:
                stored = self._flights.get(flight_id)
                if stored is None:
                    return False
                stored.pushed_status = new_status

        old = record.pushed_status.value if record.pushed_status else None
        logger.info(f"Updating flight {flight_id} status from {old} to {new_status.value}")
        self.event_bus.publish(FlightEventType.FLIGHT_STATUS_CHANGED, {
            "flightId": flight_id,
            "newStatus": new_status.value
        })
        return True

    def clear(self) -> None:
        """Drop all in-memory flights."""
        with self._lock:
            self._flights.clear()

    def status(self) -> Dict[str, Any]:
        """Get store status. The flight count is only known for the memory backend."""
        if self._supabase:
            return {"backend": "supabase"}
        return {
            "backend": "memory",
            "flights_count": len(self._flights)
        }
