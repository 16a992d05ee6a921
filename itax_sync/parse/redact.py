"""Redaction module to mask secrets in outputs and logs."""
import re
from typing import Any, Dict

SECRET_KEYS = (
    "kra_password", "password", "credential", "supabase_service_role",
    "service_role", "access_token", "refresh_token", "apikey",
)


def redact_string(text: str) -> str:
    """Redact secrets from a string."""
    if not text:
        return text

    # Patterns to redact
    patterns = [
        (r'(kra_password|password|credential)(["\']?\s*[:=]\s*)["\']?([^"\',\s}]+)["\']?', r'\1\2"[REDACTED]"'),
        (r'(service_role|apikey)(["\']?\s*[:=]\s*)["\']?([^"\',\s}]+)["\']?', r'\1\2"[REDACTED]"'),
        (r'Authorization["\']?\s*[:=]\s*["\']?Bearer\s+([^"\'\s]+)["\']?', r'Authorization = "Bearer [REDACTED]"'),
        (r'eyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]+', r'[REDACTED_JWT]'),
    ]

    result = text
    for pattern, replacement in patterns:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)

    return result


def redact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively redact secrets from a dictionary."""
    if not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        if str(key).lower() in SECRET_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, (dict, list, str)):
            redacted[key] = redact_json(value)
        else:
            redacted[key] = value
    return redacted


def redact_json(data: Any) -> Any:
    """Redact secrets from JSON-serializable data."""
    if isinstance(data, dict):
        return redact_dict(data)
    elif isinstance(data, list):
        return [redact_json(item) for item in data]
    elif isinstance(data, str):
        return redact_string(data)
    else:
        return data
