import json
import time
from carrierflow.settings import settings

# Subscriber identifiers and secrets never reach the log stream in clear
SENSITIVE_KEYS = {"msisdn", "subject", "pin", "code", "token", "fraud_token", "text", "password", "acr"}

def _redact_value(v):
    if isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _redact_value(val) for k, val in v.items()}
    return v

def _redact_nested(v):
    if isinstance(v, dict):
        return {k: (_redact_value(sv) if k in SENSITIVE_KEYS else _redact_nested(sv)) for k, sv in v.items()}
    if isinstance(v, list):
        return [_redact_nested(x) for x in v]
    return v

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    if settings.ENABLE_PII_REDACTION:
        clean_fields = {}
        for k, v in fields.items():
            if k in SENSITIVE_KEYS:
                clean_fields[k] = _redact_value(v)
            else:
                clean_fields[k] = _redact_nested(v)
        payload.update(clean_fields)
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))
