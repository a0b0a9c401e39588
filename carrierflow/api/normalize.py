import json
from typing import Any, Dict

# delivery wrappers seen in front of the vendor body
_ENVELOPE_KEYS = ("notification", "payload", "body")


def normalize_hook_payload(payload: Any) -> Dict[str, Any]:
    """
    Accepts the shapes a notification can arrive in and returns the vendor body
    as a dict:

    - already a dict: {"success": {...}} / {"error": {...}} / flat fields
    - wrapped once: {"notification": {...}} (also "payload", "body")
    - a JSON string of any of the above
    Anything else becomes {}.
    """
    if payload is None:
        return {}

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return {}

    if not isinstance(payload, dict):
        return {}

    if "success" not in payload and "error" not in payload:
        for key in _ENVELOPE_KEYS:
            inner = payload.get(key)
            if isinstance(inner, str):
                try:
                    inner = json.loads(inner)
                except ValueError:
                    continue
            if isinstance(inner, dict):
                return inner

    return payload
