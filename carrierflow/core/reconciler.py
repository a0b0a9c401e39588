"""
Webhook reconciliation.

Notifications are classified first (pure), deduplicated by fingerprint, then
applied: completion events claim their FlowReference atomically, lifecycle events
are recorded, and registered callbacks are fired. A re-delivered notification
is a no-op.
"""
import hashlib
import json
import threading
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from carrierflow.core.errors import MissingParameter
from carrierflow.core.normalizer import normalize_notification, notification_operator, shape_notification
from carrierflow.core.operators import OperatorCapability, capabilities_of
from carrierflow.core.ports import safe_record
from carrierflow.core.results import CanonicalStatus, ReconciliationResult, WebhookEvent
from carrierflow.core.state_machine import FLOW_REFERENCE_TTL_SEC, RESUME_GRACE_DAYS
from carrierflow.observability.logging import log
from carrierflow.utils.time import days_between_ms, iso_now, parse_timestamp_ms

WILDCARD = "*"

_LIFECYCLE_STATUSES = {
    CanonicalStatus.SUSPENDED,
    CanonicalStatus.INSUFFICIENT_FUNDS,
    CanonicalStatus.FAILED,
    CanonicalStatus.DELETED,
    CanonicalStatus.REMOVED,
}

_ACTIONS = {
    WebhookEvent.SUBSCRIPTION_CREATED: "SUBSCRIPTION_CREATED",
    WebhookEvent.ASYNC_COMPLETED: "ASYNC_COMPLETED",
    WebhookEvent.SUSPENSION: "WAIT_FOR_TOPUP",
    WebhookEvent.RENEWAL: "SUBSCRIPTION_RENEWED",
    WebhookEvent.PAYMENT_FAILURE: "PAYMENT_FAILED",
    WebhookEvent.PROCESSED: "PROCESSED",
}


def fingerprint(operator: str, shaped: Dict[str, Any]) -> str:
    canonical = json.dumps(shaped, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(f"{operator}|{canonical}".encode("utf-8")).hexdigest()


def classify(cap: OperatorCapability, body: Dict[str, Any], status: CanonicalStatus, is_success: bool) -> WebhookEvent:
    kind = str(body.get("type") or "").lower()
    mode = str(body.get("mode") or "").upper()

    if is_success and status not in _LIFECYCLE_STATUSES and mode != "RENEWAL":
        if cap.webhook_deferred and kind == "subscription":
            return WebhookEvent.SUBSCRIPTION_CREATED
        if cap.is_async and body.get("transaction_id"):
            return WebhookEvent.ASYNC_COMPLETED

    if status == CanonicalStatus.SUSPENDED and cap.suspend_on_insufficient_funds:
        return WebhookEvent.SUSPENSION
    if kind == "subscription" and status == CanonicalStatus.CHARGED and mode == "RENEWAL":
        return WebhookEvent.RENEWAL
    if status in (CanonicalStatus.INSUFFICIENT_FUNDS, CanonicalStatus.FAILED):
        return WebhookEvent.PAYMENT_FAILURE
    if status in (CanonicalStatus.DELETED, CanonicalStatus.REMOVED):
        return WebhookEvent.DELETION
    return WebhookEvent.PROCESSED


class WebhookReconciler:
    def __init__(self, references, fingerprints, locks, clock, sink=None,
                 history_size: int = 100, environment: Optional[str] = None):
        self.references = references
        self.fingerprints = fingerprints
        self.locks = locks
        self.clock = clock
        self.sink = sink
        self.environment = environment
        self._callbacks: Dict[tuple, List[Callable]] = {}
        self._history = deque(maxlen=max(1, int(history_size)))
        self._history_lock = threading.Lock()
        self._counts = {"total": 0, "duplicates": 0, "resolved": 0}

    # --- callbacks ---------------------------------------------------------
    def register_callback(self, operator: str, event, callback: Callable) -> None:
        ev = event.value if isinstance(event, WebhookEvent) else str(event)
        self._callbacks.setdefault((operator, ev), []).append(callback)

    def _fire(self, operator: str, event: WebhookEvent, payload: Dict[str, Any], result: ReconciliationResult):
        keys = [(operator, event.value), (WILDCARD, event.value), (operator, WILDCARD)]
        for key in keys:
            for cb in self._callbacks.get(key, []):
                try:
                    cb(payload)
                    result.callbacks_fired += 1
                except Exception as e:
                    result.callback_errors.append(f"{getattr(cb, '__name__', 'callback')}: {e}")
                    log(event="webhook_callback_failed", operator=operator, webhookEvent=event.value, error=str(e))

    # --- entry points ------------------------------------------------------
    def reconcile_any(self, notification: Dict[str, Any]) -> ReconciliationResult:
        operator = notification_operator(notification or {})
        if not operator:
            raise MissingParameter("Operator not identified in notification", parameter="operator")
        return self.reconcile(operator, notification)

    def reconcile(self, operator: str, notification: Dict[str, Any]) -> ReconciliationResult:
        cap = capabilities_of(operator)
        shaped = shape_notification(notification or {})
        is_success = isinstance(shaped.get("success"), dict)
        body = shaped.get("success") if is_success else (shaped.get("error") or {})

        normalized = normalize_notification(shaped, cap.operator_id, self.environment)
        event = classify(cap, body, normalized.status, is_success)
        status = normalized.status.value if normalized.status != CanonicalStatus.UNKNOWN else None

        fp = fingerprint(cap.operator_id, shaped)
        with self.locks.hold(f"webhook:{fp}"):
            if self.fingerprints.get(fp):
                self._count("total", "duplicates")
                log(event="webhook_duplicate", operator=cap.operator_id, webhookEvent=event.value)
                res = ReconciliationResult(
                    operator=cap.operator_id, event=event, status=status,
                    action="IGNORED_DUPLICATE", duplicate=True,
                )
                self._remember(res)
                return res

            res = self._apply(cap, event, body, normalized, status)
            self.fingerprints.put(fp, {"event": event.value, "at": self.clock.now()}, FLOW_REFERENCE_TTL_SEC)

        self._count("total", *(["resolved"] if res.resolved else []))
        log(
            event="webhook_reconciled",
            operator=cap.operator_id,
            webhookEvent=event.value,
            status=status,
            resolved=res.resolved,
            callbacksFired=res.callbacks_fired,
        )
        self._remember(res)
        return res

    def _apply(self, cap, event, body, normalized, status) -> ReconciliationResult:
        operator = cap.operator_id
        res = ReconciliationResult(
            operator=operator, event=event, status=status, action=_ACTIONS.get(event), data=dict(body),
        )
        payload = {"operator": operator, "event": event.value, "data": dict(body), "result": normalized.to_dict()}

        if event in (WebhookEvent.SUBSCRIPTION_CREATED, WebhookEvent.ASYNC_COMPLETED):
            key = body.get("correlator") if event == WebhookEvent.SUBSCRIPTION_CREATED else body.get("transaction_id")
            ref = self.references.resolve(operator, key, normalized.to_dict())
            if ref is None:
                # nothing in flight under this key: expired, never started, or already applied
                res.action = "UNMATCHED"
                return res
            res.resolved = True
            payload["flowReference"] = ref.to_dict()
            safe_record(self.sink, "record_completion", operator, event.value, normalized.to_dict(),
                        uuid=body.get("uuid"), key=key)
            self._fire(operator, event, payload, res)
            return res

        if event == WebhookEvent.SUSPENSION:
            res.will_retry = True
            payload["data"].update({"suspendedAt": iso_now(), "reason": "INSUFFICIENT_FUNDS", "willRetry": True})
        elif event == WebhookEvent.DELETION:
            if normalized.status == CanonicalStatus.REMOVED:
                res.action = "EXCEEDED_RETRY_PERIOD"
                res.can_resume = self._can_resume(body)
                payload["canResume"] = res.can_resume
            else:
                res.action = "SUBSCRIPTION_TERMINATED"

        if event != WebhookEvent.PROCESSED:
            safe_record(self.sink, "record_completion", operator, event.value, normalized.to_dict(),
                        uuid=body.get("uuid"))
        self._fire(operator, event, payload, res)
        return res

    def _can_resume(self, body: Dict[str, Any]) -> bool:
        ts = body.get("timestamp")
        removed_ms = parse_timestamp_ms(ts) if ts else self.clock.now_ms()
        return days_between_ms(removed_ms, self.clock.now_ms()) < RESUME_GRACE_DAYS

    # --- introspection -----------------------------------------------------
    def _count(self, *names):
        with self._history_lock:
            for n in names:
                self._counts[n] += 1

    def _remember(self, res: ReconciliationResult):
        entry = res.to_dict()
        entry["timestamp"] = iso_now()
        with self._history_lock:
            self._history.append(entry)

    def history(self, operator: Optional[str] = None, limit: Optional[int] = None) -> List[dict]:
        with self._history_lock:
            items = [h for h in self._history if operator is None or h["operator"] == operator]
        if limit:
            items = items[-int(limit):]
        return items

    def status(self) -> dict:
        with self._history_lock:
            by_operator: Dict[str, int] = {}
            for h in self._history:
                by_operator[h["operator"]] = by_operator.get(h["operator"], 0) + 1
            size = len(self._history)
        return {
            "totalProcessed": self._counts["total"],
            "duplicates": self._counts["duplicates"],
            "resolved": self._counts["resolved"],
            "historySize": size,
            "historyCapacity": self._history.maxlen,
            "byOperator": by_operator,
            "registeredCallbacks": sum(len(v) for v in self._callbacks.values()),
        }

    def sweep(self) -> int:
        return self.fingerprints.sweep()
