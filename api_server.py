"""
Flask API Server

REST API endpoints for the Live Flight Board.
"""

import os
import logging
import atexit
import threading
from datetime import date, datetime

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from dotenv import load_dotenv

from dashboard_monitor import DashboardMonitor
from flight_events import FlightEventBus
from flight_status import FlightStatus, VALID_STATUS_OPTIONS
from flight_store import FlightStore
from security import (
    ValidationError,
    validate_json_body,
    validate_query_params,
    require_api_key,
    add_security_headers,
    FLIGHT_CREATE_RULES,
    STATUS_CHANGE_RULES,
    FLIGHT_FILTER_RULES,
    EVENT_FEED_RULES,
)

# Load environment
dotenv_path = os.getenv("DOTENV_CONFIG_PATH", ".env")
load_dotenv(dotenv_path)

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO")),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Live Flight Board"
SERVICE_VERSION = "1.0.0"
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"


# Custom JSON Provider to handle datetime and enums
class CustomJSONProvider(DefaultJSONProvider):
    def default(self, obj):
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        if isinstance(obj, FlightStatus):
            return obj.value
        return super().default(obj)


# Create Flask app
app = Flask(__name__)
app.json = CustomJSONProvider(app)

# Secret key - MUST be set in production
_secret_key = os.getenv("FLASK_SECRET_KEY")
if not _secret_key and os.getenv("FLASK_ENV") == "production":
    raise RuntimeError("FLASK_SECRET_KEY must be set in production environment!")
app.secret_key = _secret_key or "dev-secret-key-for-local-only"

# =========================================================
# CORS Configuration
# =========================================================

_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
CORS(app, resources={
    r"/api/*": {
        "origins": _cors_origins,
        "methods": ["GET", "POST", "DELETE"],
        "allow_headers": ["Content-Type", "X-API-Key"]
    }
})

app.after_request(add_security_headers)

# =========================================================
# Services
# =========================================================

event_bus = FlightEventBus()
flight_store = FlightStore(event_bus=event_bus)
monitor = DashboardMonitor(flight_store, event_bus=event_bus)


# =========================================================
# Helper Functions
# =========================================================

def api_response(data=None, error=None, status=200):
    """Standard API response format."""
    response = {
        "success": error is None,
        "timestamp": datetime.now().isoformat(),
        "data": data
    }
    if error:
        response["error"] = error
    return jsonify(response), status


@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return api_response(data={"errors": e.errors}, error=str(e), status=400)


# =========================================================
# Health & Status Endpoints
# =========================================================

@app.route('/health')
def health_check():
    """Health check endpoint."""
    return api_response({
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION
    })


@app.route('/api/status')
def api_status():
    """API status endpoint."""
    checks = {
        "api": True,
        "database": False,
        "scheduler": monitor.running
    }

    try:
        if flight_store.supabase:
            flight_store.supabase.table("flights").select("id").limit(1).execute()
            checks["database"] = True
    except Exception as e:
        logger.error(f"Database check failed: {e}")

    overall_status = "healthy" if checks["api"] and checks["scheduler"] else "degraded"

    return api_response({
        "status": overall_status,
        "checks": checks,
        "store": flight_store.status()
    })


@app.route('/api/status-options')
def get_status_options():
    """Statuses selectable in filters."""
    return api_response({
        "options": [s.value for s in VALID_STATUS_OPTIONS]
    })


# =========================================================
# Flight Endpoints
# =========================================================

@app.route('/api/flights')
def get_flights():
    """
    Get flights for the board.

    Query params:
        destination: Case-insensitive destination filter
        status: One of the status options
    """
    params = validate_query_params(FLIGHT_FILTER_RULES)

    try:
        rows = monitor.board(
            destination=params.get("destination") or None,
            status=params.get("status")
        )
        return api_response({
            "total": len(rows),
            "flights": rows
        })
    except Exception as e:
        logger.error(f"Get flights failed: {e}")
        return api_response(error=str(e), status=500)


@app.route('/api/flights/<flight_id>')
def get_flight_detail(flight_id: str):
    """Get one board row."""
    try:
        flight = flight_store.get_flight(flight_id)
        if flight is None:
            return api_response(error="Flight not found", status=404)
        return api_response(monitor.row(flight, monitor.clock()))
    except Exception as e:
        logger.error(f"Get flight detail failed: {e}")
        return api_response(error=str(e), status=500)


@app.route('/api/flights', methods=['POST'])
@require_api_key
def create_flight():
    """Add a flight."""
    body = validate_json_body(FLIGHT_CREATE_RULES)

    try:
        flight = flight_store.add_flight(
            flight_number=body["flightNumber"],
            destination=body["destination"],
            departure_time=body["departureTime"],
            gate=body["gate"]
        )
        if flight is None:
            return api_response(error="Flight already exists", status=409)
        return api_response(monitor.row(flight, monitor.clock()), status=201)
    except Exception as e:
        logger.error(f"Create flight failed: {e}")
        return api_response(error=str(e), status=500)


@app.route('/api/flights/<flight_id>', methods=['DELETE'])
@require_api_key
def delete_flight(flight_id: str):
    """Delete a flight."""
    try:
        flight = flight_store.delete_flight(flight_id)
        if flight is None:
            return api_response(error="Flight not found", status=404)
        return api_response(flight.to_dict(monitor.clock()))
    except Exception as e:
        logger.error(f"Delete flight failed: {e}")
        return api_response(error=str(e), status=500)


@app.route('/api/flights/<flight_id>/status', methods=['POST'])
@require_api_key
def push_flight_status(flight_id: str):
    """
    Apply a status-change notification.

    Body:
        newStatus: One of the six status strings
    """
    body = validate_json_body(STATUS_CHANGE_RULES)
    new_status = body["newStatus"]

    try:
        if flight_store.get_flight(flight_id) is None:
            return api_response(error="Flight not found", status=404)

        updated = flight_store.apply_status_change(flight_id, new_status)
        flight = flight_store.get_flight(flight_id)
        return api_response({
            "updated": updated,
            "flight": monitor.row(flight, monitor.clock()) if flight else None
        })
    except Exception as e:
        logger.error(f"Status update failed: {e}")
        return api_response(error=str(e), status=500)


# =========================================================
# Highlight & Event Endpoints
# =========================================================

@app.route('/api/highlights')
def get_highlights():
    """Active status-change highlights."""
    now = monitor.clock()
    highlights = monitor.tracker.highlights(now)
    return api_response({
        "total": len(highlights),
        "highlights": [h.to_dict() for h in highlights.values()]
    })


@app.route('/api/events')
def get_events():
    """
    Poll the push channel.

    Query params:
        after: Last sequence number seen
        limit: Max events to return
    """
    params = validate_query_params(EVENT_FEED_RULES)
    events = event_bus.recent(after=params["after"], limit=params["limit"])
    return api_response({
        "last_sequence": event_bus.last_sequence,
        "events": [e.to_dict() for e in events]
    })


# =========================================================
# Main Entry Point
# =========================================================

def start_background_tasks():
    """Start the status refresh and highlight sweep jobs."""
    monitor.start()
    atexit.register(monitor.stop)


if SCHEDULER_ENABLED:
    startup_thread = threading.Thread(target=start_background_tasks)
    startup_thread.daemon = True
    startup_thread.start()
else:
    monitor.attach()

if __name__ == '__main__':
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "0") == "1"

    print("="*60)
    print(f"{SERVICE_NAME} - API Server")
    print("="*60)
    print(f"Port: {port}")
    print(f"Debug: {debug}")
    print("="*60)

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug
    )
