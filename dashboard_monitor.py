"""
Dashboard Monitor Module

Re-observes the flight list on a schedule and on push events,
sweeps expired highlights, and builds board rows for the API.
"""

import os
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from change_tracker import ChangeTracker, ChangeRecord
from flight_events import FlightEvent, FlightEventBus, FlightEventType, parse_status_change_payload
from flight_status import FlightStatus
from flight_store import FlightStore, FlightRecord

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
STATUS_REFRESH_SECONDS = int(os.getenv("STATUS_REFRESH_SECONDS", 15))
HIGHLIGHT_SWEEP_SECONDS = int(os.getenv("HIGHLIGHT_SWEEP_SECONDS", 1))

REFRESH_JOB_ID = "status_refresh_job"
SWEEP_JOB_ID = "highlight_sweep_job"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DashboardMonitor:
    """
    Owns the change tracker for one flight store.
    """

    def __init__(
        self,
        store: FlightStore,
        tracker: ChangeTracker = None,
        event_bus: FlightEventBus = None,
        clock: Callable[[], datetime] = None
    ):
        self.store = store
        self.tracker = tracker or ChangeTracker()
        self.event_bus = event_bus or store.event_bus
        self.clock = clock or utc_now
        self.scheduler: Optional[BackgroundScheduler] = None
        self._refresh_lock = threading.Lock()
        self._subscribed = False

    # -------------------------------------------------
    # Observation
    # -------------------------------------------------

    def refresh(self, now: datetime = None) -> List[ChangeRecord]:
        """Observe the current flight list. Calls are applied in arrival order."""
        with self._refresh_lock:
            now = now or self.clock()
            try:
                flights = self.store.snapshot()
            except Exception as e:
                logger.error(f"Status refresh failed: {e}")
                return []
            return self.tracker.observe(flights, now)

    def sweep(self, now: datetime = None) -> Set[str]:
        """Clear highlights whose window has passed."""
        return self.tracker.expire(now or self.clock())

    # -------------------------------------------------
    # Board
    # -------------------------------------------------

    def row(self, flight: FlightRecord, now: datetime) -> Dict[str, Any]:
        """Build one board row."""
        data = flight.to_dict(now)
        change = self.tracker.get_change(flight.id)
        if change is not None and change.expires_at > now:
            data["highlight"] = {
                "oldStatus": change.previous_status.value,
                "newStatus": change.new_status.value,
                "expiresAt": change.expires_at.isoformat()
            }
        else:
            data["highlight"] = None
        data["isNew"] = self.tracker.is_freshly_added(flight.id, now)
        return data

    def board(
        self,
        destination: str = None,
        status: FlightStatus = None,
        now: datetime = None
    ) -> List[Dict[str, Any]]:
        """Board rows for the filtered flight list."""
        now = now or self.clock()
        flights = self.store.list_flights(destination=destination, status=status, now=now)
        return [self.row(f, now) for f in flights]

    # -------------------------------------------------
    # Push Event Handlers
    # -------------------------------------------------

    def _on_flight_added(self, event: FlightEvent) -> None:
        self.refresh()

    def _on_flight_deleted(self, event: FlightEvent) -> None:
        flight_id = event.payload.get("id")
        if not flight_id:
            return
        # Ordered with observations so a refresh in flight cannot re-add it
        with self._refresh_lock:
            forgotten = self.tracker.forget(flight_id)
        if forgotten:
            logger.info(f"Cancelled highlight for deleted flight {flight_id}")

    def _on_status_changed(self, event: FlightEvent) -> None:
        if parse_status_change_payload(event.payload) is None:
            return
        self.refresh()

    def _subscribe(self) -> None:
        if self._subscribed:
            return
        self.event_bus.subscribe(FlightEventType.FLIGHT_ADDED, self._on_flight_added)
        self.event_bus.subscribe(FlightEventType.FLIGHT_DELETED, self._on_flight_deleted)
        self.event_bus.subscribe(FlightEventType.FLIGHT_STATUS_CHANGED, self._on_status_changed)
        self._subscribed = True

    def _unsubscribe(self) -> None:
        self.event_bus.unsubscribe(FlightEventType.FLIGHT_ADDED, self._on_flight_added)
        self.event_bus.unsubscribe(FlightEventType.FLIGHT_DELETED, self._on_flight_deleted)
        self.event_bus.unsubscribe(FlightEventType.FLIGHT_STATUS_CHANGED, self._on_status_changed)
        self._subscribed = False

    # -------------------------------------------------
    # Lifecycle
    # -------------------------------------------------

    def attach(self) -> None:
        """Subscribe to push events and take the baseline observation."""
        self._subscribe()
        self.refresh()

    def start(self, scheduler: BackgroundScheduler = None) -> None:
        """
        Start periodic refresh and highlight sweep jobs.

        Args:
            scheduler: Scheduler to use (a BackgroundScheduler is created if omitted)
        """
        self.attach()
        self.scheduler = scheduler or self.scheduler or BackgroundScheduler()

        try:
            self.scheduler.add_job(
                func=self.refresh,
                trigger=IntervalTrigger(seconds=STATUS_REFRESH_SECONDS),
                id=REFRESH_JOB_ID,
                name='Refresh Flight Statuses',
                replace_existing=True
            )
            self.scheduler.add_job(
                func=self.sweep,
                trigger=IntervalTrigger(seconds=HIGHLIGHT_SWEEP_SECONDS),
                id=SWEEP_JOB_ID,
                name='Sweep Expired Highlights',
                replace_existing=True
            )

            if not self.scheduler.running:
                self.scheduler.start()
                logger.info(
                    f"Scheduler started: refresh every {STATUS_REFRESH_SECONDS}s, "
                    f"sweep every {HIGHLIGHT_SWEEP_SECONDS}s"
                )
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")

    def stop(self) -> None:
        """Stop jobs, detach listeners and drop tracker state."""
        self._unsubscribe()
        if self.scheduler is not None:
            try:
                if self.scheduler.running:
                    self.scheduler.shutdown(wait=False)
            except Exception as e:
                logger.error(f"Failed to stop scheduler: {e}")
        self.tracker.reset()

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)
