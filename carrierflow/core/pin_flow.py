"""
One-time-code protocol.

NoCode -> CodeIssued -> (Verified | Expired | AttemptsExhausted)

A PendingCode is keyed by (operator, subject). Verification for one key is
serialized through the keyed lock so attempt counting never races.
"""
from typing import Any, Dict, Optional

from carrierflow.core.errors import (
    AttemptsExhausted,
    CodeExpired,
    InvalidCodeFormat,
    MissingAmount,
    MissingFraudToken,
    MissingParameter,
    NoPendingCode,
    UnsupportedOperation,
    UnsupportedProtocol,
)
from carrierflow.core.normalizer import normalize
from carrierflow.core.operators import CODE_VARIANTS, OperatorCapability, capabilities_of
from carrierflow.core.ports import safe_record
from carrierflow.core.results import FlowAction, FlowResult, NormalizedResult, Outcome
from carrierflow.core.state_machine import (
    CODE_ISSUED,
    CODE_RETENTION_SEC,
    CODE_TTL_SEC,
    MAX_CODE_ATTEMPTS,
)
from carrierflow.observability.logging import log
from carrierflow.store.models import PendingCode

OPERATIONS = ("subscribe", "charge")

# caller context kept with the PendingCode and reused at verification
_CONTEXT_KEYS = (
    "campaign", "merchant", "language", "amount", "currency", "fraud_token",
    "trial", "trial_once", "service_name", "access_url", "dynamic_url",
)


def code_key(operator: str, subject: str) -> str:
    return f"{operator}:{subject}"


class PinFlow:
    def __init__(self, gateway, codes, locks, clock, sink=None, notifier=None):
        self.gateway = gateway
        self.codes = codes
        self.locks = locks
        self.clock = clock
        self.sink = sink
        self.notifier = notifier

    def _check_preconditions(self, cap: OperatorCapability, operation: str, ctx: Dict[str, Any]):
        if operation not in OPERATIONS:
            raise UnsupportedOperation(f"Unsupported operation: {operation}", operation=operation)
        if (cap.requires_amount or operation == "charge") and not ctx.get("amount"):
            raise MissingAmount(f"Amount is required for {cap.operator_id}", operator=cap.operator_id)
        if cap.requires_fraud_token and not ctx.get("fraud_token"):
            raise MissingFraudToken(f"Fraud token is required for {cap.operator_id}", operator=cap.operator_id)

    def issue_code(self, operator: str, subject: str, context: Optional[Dict[str, Any]] = None) -> FlowResult:
        cap = capabilities_of(operator)
        operator = cap.operator_id
        if cap.variant not in CODE_VARIANTS:
            raise UnsupportedProtocol(f"Code flow not supported for {operator}", operator=operator)
        if not subject:
            raise MissingParameter("msisdn is required", parameter="msisdn")

        ctx = dict(context or {})
        operation = ctx.get("operation") or "subscribe"
        self._check_preconditions(cap, operation, ctx)

        params = {
            "campaign": ctx.get("campaign"),
            "merchant": ctx.get("merchant"),
            "template": "charge" if operation == "charge" else (ctx.get("template") or "subscription"),
            "language": ctx.get("language") or "en",
            "amount": ctx.get("amount"),
            "fraud_token": ctx.get("fraud_token"),
        }

        safe_record(self.sink, "record_attempt", operator, "issue_code", subject=subject)
        raw = self.gateway.generate_code(operator, subject, **params)
        result = normalize(raw, operator, "pin", self.gateway.environment)

        if result.outcome == Outcome.ERROR:
            log(event="code_issue_failed", operator=operator, subject=subject,
                errorCode=result.error.code, retryable=result.error.retryable)
            return FlowResult(
                action=FlowAction.UPSTREAM_ERROR, operator=operator, operation=operation,
                protocol=cap.variant.value, success=False, result=result,
            )

        key = code_key(operator, subject)
        with self.locks.hold(f"pin:{key}"):
            now = self.clock.now()
            pending = PendingCode(
                operator=operator,
                subject=subject,
                operation=operation,
                issuedAt=now,
                expiresAt=now + CODE_TTL_SEC,
                attempts=0,
                state=CODE_ISSUED,
                context={k: ctx[k] for k in _CONTEXT_KEYS if ctx.get(k) is not None},
            )
            # kept past the deadline so a late verify is told CodeExpired, not NoPendingCode
            self.codes.put(key, pending.to_dict(), CODE_TTL_SEC + CODE_RETENTION_SEC)

        log(event="code_issued", operator=operator, subject=subject, operation=operation, expiresIn=CODE_TTL_SEC)
        return FlowResult(
            action=FlowAction.AWAIT_CODE_ENTRY,
            operator=operator,
            operation=operation,
            protocol=cap.variant.value,
            expires_in=CODE_TTL_SEC,
            attempts_remaining=MAX_CODE_ATTEMPTS,
            next_step="verify",
            instruction="Ask the subscriber for the code sent by SMS",
            result=result,
        )

    def verify_and_complete(self, operator: str, subject: str, code: str,
                            context: Optional[Dict[str, Any]] = None) -> FlowResult:
        cap = capabilities_of(operator)
        operator = cap.operator_id
        if not subject:
            raise MissingParameter("msisdn is required", parameter="msisdn")
        if not code:
            raise MissingParameter("pin is required", parameter="pin")
        # sandbox replaces every code with the fixed test value, so only live codes are checked
        if cap.code_length and self.gateway.environment != "sandbox" and len(str(code)) != cap.code_length:
            raise InvalidCodeFormat(f"Invalid code length. Expected {cap.code_length} digits",
                                    operator=operator, expected=cap.code_length)

        key = code_key(operator, subject)
        with self.locks.hold(f"pin:{key}"):
            rec = self.codes.get(key)
            if not rec:
                raise NoPendingCode("No code request found. Please request a new code.", operator=operator)
            pending = PendingCode.from_dict(rec)

            now = self.clock.now()
            if now >= pending.expiresAt:
                self.codes.delete(key)
                log(event="code_expired", operator=operator, subject=subject)
                raise CodeExpired("Code expired. Please request a new code.", operator=operator)

            merged = dict(pending.context)
            merged.update({k: v for k, v in (context or {}).items() if v is not None})
            if pending.operation == "charge" and not merged.get("amount"):
                raise MissingAmount(f"Amount is required for {operator}", operator=operator)

            pending.attempts += 1
            if pending.attempts > MAX_CODE_ATTEMPTS:
                self.codes.delete(key)
                log(event="code_attempts_exhausted", operator=operator, subject=subject)
                raise AttemptsExhausted("Maximum code attempts exceeded. Please request a new code.",
                                        operator=operator)
            # counted before the upstream call so a crash mid-call still spends the attempt
            self.codes.put(key, pending.to_dict(), max(1.0, pending.expiresAt + CODE_RETENTION_SEC - now))

            result = self._submit(cap, pending.operation, subject, code, merged)

            if result.outcome == Outcome.ERROR:
                log(event="code_verify_failed", operator=operator, subject=subject,
                    attempts=pending.attempts, errorCode=result.error.code)
                return FlowResult(
                    action=FlowAction.UPSTREAM_ERROR, operator=operator, operation=pending.operation,
                    protocol=cap.variant.value, success=False,
                    attempts_remaining=MAX_CODE_ATTEMPTS - pending.attempts,
                    result=result,
                )

            self.codes.delete(key)

        log(event="code_verified", operator=operator, subject=subject, attempts=pending.attempts)
        safe_record(self.sink, "record_completion", operator, pending.operation, result.to_dict(), subject=subject)

        if self.notifier is not None:
            # an anonymous reference from the vendor wins over the number we were given
            notify_subject = result.subject if result.has_anonymous_reference else subject
            ctx = dict(merged)
            ctx.setdefault("subscription_id", result.data.get("uuid"))
            self.notifier.notify_completion(cap, notify_subject, ctx)

        return FlowResult(
            action=FlowAction.COMPLETED,
            operator=operator,
            operation=pending.operation,
            protocol=cap.variant.value,
            result=result,
        )

    def _submit(self, cap: OperatorCapability, operation: str, subject: str, code: str,
                ctx: Dict[str, Any]) -> NormalizedResult:
        operator = cap.operator_id
        if operation == "charge":
            raw = self.gateway.charge(
                operator, subject, ctx.get("campaign"), ctx.get("merchant"),
                ctx.get("amount"), ctx.get("currency") or cap.currency,
                pin=code, language=ctx.get("language") or "en",
            )
        else:
            raw = self.gateway.create_subscription(
                operator, subject, ctx.get("campaign"), ctx.get("merchant"),
                pin=code,
                language=ctx.get("language") or "en",
                trial=ctx.get("trial"),
                trial_once=ctx.get("trial_once"),
                fraud_token=ctx.get("fraud_token"),
            )
        return normalize(raw, operator, operation, self.gateway.environment)

    def clear(self, operator: str, subject: str) -> bool:
        key = code_key(operator, subject)
        with self.locks.hold(f"pin:{key}"):
            return self.codes.delete(key)

    def sweep(self) -> int:
        return self.codes.sweep()
