from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Outcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


class CanonicalStatus(str, Enum):
    CHARGED = "CHARGED"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FREE = "FREE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    CREATED = "CREATED"
    DELETED = "DELETED"
    EXPIRED = "EXPIRED"
    INACTIVE = "INACTIVE"
    REMOVED = "REMOVED"
    SUSPENDED = "SUSPENDED"
    WAITING = "WAITING"
    # anything the vendor sent that is outside the vocabulary
    UNKNOWN = "UNKNOWN"


class FlowAction(str, Enum):
    AWAIT_CODE_ENTRY = "AWAIT_CODE_ENTRY"
    REDIRECT_TO_CHECKOUT = "REDIRECT_TO_CHECKOUT"
    IMMEDIATE_REDIRECT = "IMMEDIATE_REDIRECT"
    LOAD_FRAUD_SCRIPT = "LOAD_FRAUD_SCRIPT"
    COMPLETED = "COMPLETED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"


class WebhookEvent(str, Enum):
    SUBSCRIPTION_CREATED = "subscription_created"
    ASYNC_COMPLETED = "async_completed"
    SUSPENSION = "suspension"
    RENEWAL = "renewal"
    PAYMENT_FAILURE = "payment_failure"
    DELETION = "deletion"
    PROCESSED = "processed"


@dataclass
class ErrorInfo:
    category: Optional[str]
    code: Optional[str]
    message: str
    details: str
    retryable: bool = False
    suggested_action: str = ""
    http_status: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "isRetryable": self.retryable,
            "suggestedAction": self.suggested_action,
            "httpStatus": self.http_status,
        }


@dataclass
class NormalizedResult:
    outcome: Outcome
    status: CanonicalStatus
    operator: str
    request_kind: str
    subject: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    original_status: Optional[str] = None
    has_anonymous_reference: bool = False
    anonymous_reference_id: Optional[str] = None
    is_async: bool = False
    requires_webhook: bool = False
    error: Optional[ErrorInfo] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    def to_dict(self) -> dict:
        out = {
            "outcome": self.outcome.value,
            "success": {Outcome.SUCCESS: True, Outcome.ERROR: False}.get(self.outcome),
            "status": self.status.value,
            "operator": self.operator,
            "type": self.request_kind,
            "subject": self.subject,
            "data": self.data,
            "hasAnonymousReference": self.has_anonymous_reference,
            "isAsync": self.is_async,
            "requiresWebhook": self.requires_webhook,
            "metadata": self.metadata,
        }
        if self.original_status:
            out["originalStatus"] = self.original_status
        if self.anonymous_reference_id:
            out["anonymousReferenceId"] = self.anonymous_reference_id
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


@dataclass
class FlowResult:
    action: FlowAction
    operator: str
    operation: str
    protocol: str
    success: Optional[bool] = True
    expires_in: Optional[int] = None
    session_id: Optional[str] = None
    checkout_url: Optional[str] = None
    correlator: Optional[str] = None
    transaction_id: Optional[str] = None
    instruction: Optional[str] = None
    next_step: Optional[str] = None
    attempts_remaining: Optional[int] = None
    result: Optional[NormalizedResult] = None

    def to_dict(self) -> dict:
        out = {
            "success": self.success,
            "action": self.action.value,
            "operator": self.operator,
            "operation": self.operation,
            "protocol": self.protocol,
        }
        optional = {
            "expiresIn": self.expires_in,
            "sessionId": self.session_id,
            "checkoutUrl": self.checkout_url,
            "correlator": self.correlator,
            "transactionId": self.transaction_id,
            "instruction": self.instruction,
            "nextStep": self.next_step,
            "attemptsRemaining": self.attempts_remaining,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        if self.result is not None:
            out["result"] = self.result.to_dict()
        return out


@dataclass
class ReconciliationResult:
    operator: str
    event: WebhookEvent
    status: Optional[str] = None
    action: Optional[str] = None
    resolved: bool = False
    duplicate: bool = False
    will_retry: bool = False
    can_resume: Optional[bool] = None
    callbacks_fired: int = 0
    callback_errors: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {
            "operator": self.operator,
            "event": self.event.value,
            "status": self.status,
            "action": self.action,
            "resolved": self.resolved,
            "duplicate": self.duplicate,
            "callbacksFired": self.callbacks_fired,
        }
        if self.will_retry:
            out["willRetry"] = True
        if self.can_resume is not None:
            out["canResume"] = self.can_resume
        if self.callback_errors:
            out["callbackErrors"] = list(self.callback_errors)
        return out
