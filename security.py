"""
Security Middleware Module

Input validation, API key authentication and response headers.
"""

import os
import re
import logging
from functools import wraps
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

import bleach
from flask import request, jsonify
from dotenv import load_dotenv

from flight_status import parse_departure_time, parse_status

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
API_KEY_HEADER = "X-API-Key"
API_KEYS = [k.strip() for k in os.getenv("API_KEYS", "").split(",") if k.strip()]


# =====================================================
# Input Sanitization
# =====================================================

def sanitize_string(value: str, max_length: int = 500) -> str:
    """
    Sanitize string input.

    Args:
        value: Input string
        max_length: Maximum allowed length

    Returns:
        Sanitized string
    """
    if not isinstance(value, str):
        return ""

    value = value[:max_length]
    value = bleach.clean(value, tags=set(), strip=True)
    value = value.replace('\x00', '')

    return value.strip()


def sanitize_int(value: Any, default: int = 0, min_val: int = None, max_val: int = None) -> int:
    """
    Sanitize integer input.

    Args:
        value: Input value
        default: Default if invalid
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        Sanitized integer
    """
    try:
        result = int(value)

        if min_val is not None and result < min_val:
            result = min_val
        if max_val is not None and result > max_val:
            result = max_val

        return result
    except (ValueError, TypeError):
        return default


def sanitize_datetime(value: Any) -> Optional[str]:
    """Validate an ISO-8601 timestamp and normalise it to UTC."""
    parsed = parse_departure_time(value) if isinstance(value, str) else None
    if parsed is None:
        return None
    return parsed.astimezone(timezone.utc).isoformat()


def validate_flight_number(flight_number: str) -> bool:
    """Validate flight number (letters, digits, spaces or hyphens, up to 10 chars)."""
    if not flight_number:
        return False
    return bool(re.match(r'^[A-Za-z0-9 -]{1,10}$', flight_number))


# =====================================================
# Request Validation Schemas
# =====================================================

class ValidationError(Exception):
    """Custom validation error."""
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(", ".join(errors))


def _validate_value(name: str, value: Any, config: Dict[str, Any], errors: List[str]) -> Any:
    value_type = config.get("type", "string")

    if value_type == "string":
        max_length = config.get("max_length", 500)
        if not isinstance(value, str):
            errors.append(f"{name} must be a string")
            return None
        if len(value.strip()) > max_length:
            errors.append(f"{name} must be at most {max_length} characters")
            return None
        cleaned = sanitize_string(value, max_length)
        if config.get("required") and not cleaned:
            errors.append(f"{name} is required")
            return None
        return cleaned

    if value_type == "int":
        return sanitize_int(value, config.get("default") or 0, config.get("min"), config.get("max"))

    if value_type == "datetime":
        normalised = sanitize_datetime(value)
        if normalised is None:
            errors.append(f"{name} must be a valid ISO-8601 timestamp")
            return None
        if config.get("future") and parse_departure_time(normalised) <= datetime.now(timezone.utc):
            errors.append(f"{name} must be in the future")
            return None
        return normalised

    if value_type == "status":
        status = parse_status(value)
        if status is None:
            errors.append(f"{name} must be a valid flight status")
            return None
        return status

    if value_type == "flight_number":
        if not isinstance(value, str) or not validate_flight_number(value.strip()):
            errors.append(f"{name} must be 1-10 letters, digits, spaces or hyphens")
            return None
        return value.strip().upper()

    return value


def validate_query_params(rules: Dict[str, Dict]) -> Dict[str, Any]:
    """
    Validate query parameters against rules.

    Args:
        rules: Dictionary of parameter rules
            {
                "param_name": {
                    "type": "string|int|datetime|status|flight_number",
                    "required": True/False,
                    "max_length": 100,
                    "min": 0,
                    "max": 1000,
                    "default": value
                }
            }

    Returns:
        Dictionary of validated parameters

    Raises:
        ValidationError: If validation fails
    """
    errors = []
    result = {}

    for param, config in rules.items():
        value = request.args.get(param)

        if config.get("required") and not value:
            errors.append(f"{param} is required")
            continue

        if not value:
            result[param] = config.get("default")
            continue

        result[param] = _validate_value(param, value, config, errors)

    if errors:
        raise ValidationError(errors)

    return result


def validate_json_body(rules: Dict[str, Dict]) -> Dict[str, Any]:
    """
    Validate JSON request body.

    Similar to validate_query_params but for POST/PUT body.
    """
    errors = []
    result = {}

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError(["Request body must be a JSON object"])

    for field, config in rules.items():
        value = body.get(field)

        if config.get("required") and value is None:
            errors.append(f"{field} is required")
            continue

        if value is None:
            result[field] = config.get("default")
            continue

        result[field] = _validate_value(field, value, config, errors)

    if errors:
        raise ValidationError(errors)

    return result


# =====================================================
# API Key Authentication
# =====================================================

def require_api_key(f):
    """
    Decorator to require API key authentication.

    Usage:
        @app.route('/api/secure')
        @require_api_key
        def secure_endpoint():
            ...
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        # No keys configured: open access
        if not API_KEYS:
            return f(*args, **kwargs)

        api_key = request.headers.get(API_KEY_HEADER)

        if not api_key:
            return jsonify({
                "success": False,
                "error": "API key required",
                "timestamp": datetime.now().isoformat()
            }), 401

        if api_key not in API_KEYS:
            logger.warning(f"Invalid API key attempt from {request.remote_addr}")
            return jsonify({
                "success": False,
                "error": "Invalid API key",
                "timestamp": datetime.now().isoformat()
            }), 403

        return f(*args, **kwargs)

    return decorated


# =====================================================
# Security Headers Middleware
# =====================================================

def add_security_headers(response):
    """
    Add security headers to response.

    Usage:
        app.after_request(add_security_headers)
    """
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    return response


# =====================================================
# Common Validation Rules
# =====================================================

FLIGHT_CREATE_RULES = {
    "flightNumber": {"type": "flight_number", "required": True},
    "destination": {"type": "string", "required": True, "max_length": 100},
    "departureTime": {"type": "datetime", "required": True, "future": True},
    "gate": {"type": "string", "required": True, "max_length": 10},
}

STATUS_CHANGE_RULES = {
    "newStatus": {"type": "status", "required": True},
}

FLIGHT_FILTER_RULES = {
    "destination": {"type": "string", "max_length": 100},
    "status": {"type": "status"},
}

EVENT_FEED_RULES = {
    "after": {"type": "int", "default": 0, "min": 0},
    "limit": {"type": "int", "default": 100, "min": 1, "max": 500},
}


__all__ = [
    'sanitize_string',
    'sanitize_int',
    'sanitize_datetime',
    'validate_flight_number',
    'validate_query_params',
    'validate_json_body',
    'ValidationError',
    'require_api_key',
    'add_security_headers',
    'FLIGHT_CREATE_RULES',
    'STATUS_CHANGE_RULES',
    'FLIGHT_FILTER_RULES',
    'EVENT_FEED_RULES',
]
