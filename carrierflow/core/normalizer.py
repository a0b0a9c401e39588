"""
Response normalization.

Every upstream answer (vendor success object, vendor error object, pending marker,
or a transport failure that never produced a payload) is mapped into one
NormalizedResult. Pure transformation: no I/O, no retries.
"""
import copy
from typing import Any, Dict, Optional, Tuple

from carrierflow.core.operators import OperatorCapability, capabilities_of
from carrierflow.core.results import CanonicalStatus, ErrorInfo, NormalizedResult, Outcome
from carrierflow.upstream.catalogue import describe_error, is_retryable, suggested_action
from carrierflow.upstream.gateway import RawResponse, TransportError
from carrierflow.utils.time import iso_now

ALTERNATE_SUCCESS = "SUCCESS"
ANONYMOUS_ID_LENGTH = 30

_CANONICAL = {s.value: s for s in CanonicalStatus}


def canonical_status(raw_status: Optional[str]) -> CanonicalStatus:
    s = str(raw_status or "").strip().upper()
    if s == ALTERNATE_SUCCESS:
        return CanonicalStatus.CHARGED
    return _CANONICAL.get(s, CanonicalStatus.UNKNOWN)


def extract_anonymous_id(reference: str) -> str:
    # "telenor-TLN-MM:<id...>": the 30 characters after the first ':' identify the subscriber
    parts = reference.split(":")
    if len(parts) > 1:
        return parts[1][:ANONYMOUS_ID_LENGTH]
    return reference


def is_anonymous_reference(subject: Optional[str], cap: OperatorCapability) -> bool:
    prefix = cap.anonymous_reference_prefix
    return bool(prefix and isinstance(subject, str) and subject.startswith(prefix))


def _status_of(obj: Dict[str, Any]) -> Tuple[Optional[str], Optional[dict]]:
    """Returns (raw status, the dict that holds it)."""
    tx = obj.get("transaction")
    if isinstance(tx, dict) and tx.get("status"):
        return tx.get("status"), tx
    if obj.get("status"):
        return obj.get("status"), obj
    return None, None


def _metadata(cap: OperatorCapability, environment: Optional[str]) -> dict:
    return {
        "timestamp": iso_now(),
        "environment": environment,
        "currency": cap.currency,
        "country": cap.country,
        "variant": cap.variant.value,
    }


def _error_result(cap, operator, request_kind, category, code, message, http_status, environment,
                  data=None) -> NormalizedResult:
    data = data or {}
    raw_status, _ = _status_of(data)
    status = canonical_status(raw_status) if raw_status else CanonicalStatus.FAILED
    return NormalizedResult(
        outcome=Outcome.ERROR,
        status=status,
        operator=operator,
        request_kind=request_kind,
        subject=data.get("msisdn"),
        data=data,
        error=ErrorInfo(
            category=category,
            code=code,
            message=message or describe_error(category, code),
            details=describe_error(category, code),
            retryable=is_retryable(code),
            suggested_action=suggested_action(code, operator),
            http_status=http_status,
        ),
        metadata=_metadata(cap, environment),
    )


def normalize(raw, operator: str, request_kind: str, environment: Optional[str] = None) -> NormalizedResult:
    cap = capabilities_of(operator)

    if isinstance(raw, TransportError):
        return _error_result(
            cap, operator, request_kind, raw.category, raw.code, raw.message, raw.http_status, environment,
        )

    payload = raw.payload if isinstance(raw, RawResponse) else (raw or {})
    http_status = raw.status_code if isinstance(raw, RawResponse) else None

    err = payload.get("error")
    if isinstance(err, dict):
        return _error_result(
            cap, operator, request_kind,
            str(err.get("category") or "") or None,
            str(err.get("code") or "") or None,
            str(err.get("message") or ""),
            http_status, environment,
            data=copy.deepcopy(err),
        )

    success = payload.get("success")
    if isinstance(success, dict):
        data = copy.deepcopy(success)
        outcome = Outcome.SUCCESS
    else:
        # pending marker or a flat body; keep everything
        data = copy.deepcopy(payload)
        outcome = Outcome.PENDING if str(payload.get("status") or "").upper() == "PENDING" else Outcome.SUCCESS

    raw_status, holder = _status_of(data)
    original_status = None
    if cap.alternate_success_vocabulary and str(raw_status or "").upper() == ALTERNATE_SUCCESS:
        holder["status"] = CanonicalStatus.CHARGED.value
        data["_originalStatus"] = raw_status
        original_status = raw_status

    status = canonical_status(raw_status)
    if status == CanonicalStatus.PENDING:
        outcome = Outcome.PENDING

    subject = data.get("msisdn")
    result = NormalizedResult(
        outcome=outcome,
        status=status,
        operator=operator,
        request_kind=str(data.get("type") or request_kind),
        subject=subject,
        data=data,
        original_status=original_status,
        metadata=_metadata(cap, environment),
    )

    if is_anonymous_reference(subject, cap):
        result.has_anonymous_reference = True
        result.anonymous_reference_id = extract_anonymous_id(subject)

    if cap.is_asynchronous:
        result.is_async = True
        result.requires_webhook = True

    return result


def notification_operator(notification: Dict[str, Any]) -> Optional[str]:
    for side in ("success", "error"):
        body = notification.get(side)
        if isinstance(body, dict) and body.get("operator"):
            return str(body["operator"])
    return notification.get("operator")


def shape_notification(notification: Dict[str, Any]) -> Dict[str, Any]:
    """
    Accepts the vendor's {"success": {...}} / {"error": {...}} envelope, or a flat body,
    and always returns the envelope form.
    """
    if not isinstance(notification, dict):
        return {"success": {}}
    if isinstance(notification.get("success"), dict) or isinstance(notification.get("error"), dict):
        return notification
    flat = dict(notification)
    if flat.get("category") and flat.get("code"):
        return {"error": flat}
    return {"success": flat}


def normalize_notification(notification: Dict[str, Any], operator: str,
                           environment: Optional[str] = None) -> NormalizedResult:
    shaped = shape_notification(notification)
    body = shaped.get("success") or shaped.get("error") or {}
    return normalize(RawResponse(200, shaped), operator, str(body.get("type") or "notification"), environment)
