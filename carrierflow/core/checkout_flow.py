"""
Redirect / token protocol.

SessionCreated -> (TokenExchanged | SessionExpired)

Each protocol variant has its own start strategy. The strategies differ in which
correlation key they register for out-of-band completion, and in what they tell
the caller to do next.
"""
import uuid
from typing import Any, Dict, Optional

from carrierflow.core.errors import MissingParameter, SessionNotFound, UnsupportedOperation, UnsupportedProtocol
from carrierflow.core.normalizer import normalize
from carrierflow.core.operators import CHECKOUT_VARIANTS, OperatorCapability, ProtocolVariant, capabilities_of
from carrierflow.core.ports import safe_record
from carrierflow.core.results import FlowAction, FlowResult, Outcome
from carrierflow.core.state_machine import (
    ANONYMOUS_REFERENCE_PENDING,
    ASYNC_NOTIFICATION_PENDING,
    ASYNC_WEBHOOK_PENDING,
    CHECKOUT_SESSION_TTL_SEC,
)
from carrierflow.observability.logging import log
from carrierflow.store.models import CheckoutSession
from carrierflow.upstream.gateway import canonical_token

REQUIRED_PARAMS = ("merchant", "campaign", "redirect_url")

_SESSION_PARAM_KEYS = (
    "merchant", "campaign", "redirect_url", "price", "language", "operation", "amount",
    "currency", "trial", "service_name", "access_url",
)


class CheckoutFlow:
    def __init__(self, gateway, sessions, references, anonymous_refs, locks, clock,
                 sink=None, notifier=None, anonymous_retention_sec: Optional[float] = None):
        self.gateway = gateway
        self.sessions = sessions
        self.references = references
        self.anonymous_refs = anonymous_refs
        self.locks = locks
        self.clock = clock
        self.sink = sink
        self.notifier = notifier
        self.anonymous_retention_sec = anonymous_retention_sec

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------
    def start_checkout(self, operator: str, context: Optional[Dict[str, Any]] = None) -> FlowResult:
        cap = capabilities_of(operator)
        operator = cap.operator_id
        if cap.variant not in CHECKOUT_VARIANTS:
            raise UnsupportedProtocol(f"Checkout not supported for {operator}", operator=operator)

        ctx = dict(context or {})
        if not ctx.get("campaign") and ctx.get("service"):
            ctx["campaign"] = ctx["service"]
        for name in REQUIRED_PARAMS:
            if not ctx.get(name):
                raise MissingParameter(f"Missing required parameter: {name}", parameter=name)
        if (ctx.get("operation") or "subscribe") not in ("subscribe", "charge"):
            raise UnsupportedOperation(f"Unsupported operation: {ctx.get('operation')}")

        if cap.webhook_deferred:
            strategy = CheckoutFlow._start_deferred
        else:
            strategy = _STRATEGIES.get(cap.variant, CheckoutFlow._start_plain)
        return strategy(self, cap, ctx)

    def _open_session(self, cap: OperatorCapability, ctx: Dict[str, Any]):
        url, correlator, transaction_id = self.gateway.build_checkout_url(cap.operator_id, ctx)
        now = self.clock.now()
        session = CheckoutSession(
            sessionId=uuid.uuid4().hex,
            operator=cap.operator_id,
            createdAt=now,
            expiresAt=now + CHECKOUT_SESSION_TTL_SEC,
            correlator=correlator,
            transactionId=transaction_id,
            params={k: ctx[k] for k in _SESSION_PARAM_KEYS if ctx.get(k) is not None},
        )
        self.sessions.put(session.sessionId, session.to_dict(), CHECKOUT_SESSION_TTL_SEC)
        safe_record(self.sink, "record_attempt", cap.operator_id, "checkout", sessionId=session.sessionId)
        log(event="checkout_session_created", operator=cap.operator_id, sessionId=session.sessionId,
            variant=cap.variant.value)
        return url, session

    def _result(self, cap: OperatorCapability, ctx, url, session, **kw) -> FlowResult:
        action = FlowAction.IMMEDIATE_REDIRECT if cap.no_landing_page else FlowAction.REDIRECT_TO_CHECKOUT
        return FlowResult(
            action=kw.pop("action", action),
            operator=cap.operator_id,
            operation=ctx.get("operation") or "subscribe",
            protocol=cap.variant.value,
            expires_in=CHECKOUT_SESSION_TTL_SEC,
            session_id=session.sessionId,
            checkout_url=url,
            correlator=session.correlator,
            transaction_id=session.transactionId,
            **kw,
        )

    def _start_plain(self, cap, ctx) -> FlowResult:
        url, session = self._open_session(cap, ctx)
        return self._result(
            cap, ctx, url, session,
            next_step="complete_with_token",
            instruction="Redirect the subscriber, then exchange the returned token",
        )

    def _start_deferred(self, cap, ctx) -> FlowResult:
        url, session = self._open_session(cap, ctx)
        self.references.create(cap.operator_id, session.correlator, ASYNC_WEBHOOK_PENDING, session.sessionId)
        return self._result(
            cap, ctx, url, session,
            next_step="await_webhook",
            instruction="Do not call the completion API; the subscription is confirmed by webhook",
        )

    def _start_anonymous(self, cap, ctx) -> FlowResult:
        url, session = self._open_session(cap, ctx)
        self.references.create(cap.operator_id, session.correlator, ANONYMOUS_REFERENCE_PENDING, session.sessionId)
        return self._result(
            cap, ctx, url, session,
            next_step="complete_with_token",
            instruction="Exchange the returned token; the subscriber is identified by an anonymous reference",
        )

    def _start_async(self, cap, ctx) -> FlowResult:
        url, session = self._open_session(cap, ctx)
        self.references.create(cap.operator_id, session.transactionId, ASYNC_NOTIFICATION_PENDING, session.sessionId)
        return self._result(
            cap, ctx, url, session,
            next_step="await_notification",
            instruction="Completion is asynchronous; the outcome arrives as a notification",
        )

    # ------------------------------------------------------------------
    # complete
    # ------------------------------------------------------------------
    def complete_with_token(self, operator: str, token: str, session_id: str,
                            context: Optional[Dict[str, Any]] = None) -> FlowResult:
        cap = capabilities_of(operator)
        operator = cap.operator_id
        if cap.webhook_deferred:
            raise UnsupportedProtocol(
                f"{operator} completes by webhook only; do not call the completion API", operator=operator,
            )
        if not token:
            raise MissingParameter("token is required", parameter="token")
        if not session_id:
            raise MissingParameter("sessionId is required", parameter="sessionId")

        with self.locks.hold(f"checkout:{session_id}"):
            rec = self.sessions.get(session_id)
            if not rec or rec.get("operator") != operator:
                raise SessionNotFound("Checkout session not found or expired", sessionId=session_id)
            session = CheckoutSession.from_dict(rec)

            params = dict(session.params)
            params.update({k: v for k, v in (context or {}).items() if v is not None})
            operation = params.get("operation") or "subscribe"
            msisdn = canonical_token(token)

            if operation == "charge":
                raw = self.gateway.charge(
                    operator, msisdn, params.get("campaign"), params.get("merchant"),
                    params.get("amount") or params.get("price"), params.get("currency") or cap.currency,
                    correlator=session.correlator, transaction_id=session.transactionId,
                )
            else:
                raw = self.gateway.create_subscription(
                    operator, msisdn, params.get("campaign"), params.get("merchant"),
                    correlator=session.correlator,
                    transaction_id=session.transactionId,
                    language=params.get("language"),
                    trial=params.get("trial"),
                )
            result = normalize(raw, operator, operation, self.gateway.environment)

            if result.outcome == Outcome.ERROR:
                log(event="checkout_token_rejected", operator=operator, sessionId=session_id,
                    errorCode=result.error.code)
                return FlowResult(
                    action=FlowAction.UPSTREAM_ERROR, operator=operator, operation=operation,
                    protocol=cap.variant.value, success=False, session_id=session_id, result=result,
                )

            self.sessions.delete(session_id)

        log(event="checkout_completed", operator=operator, sessionId=session_id, status=result.status.value)

        if result.has_anonymous_reference:
            self._record_anonymous_reference(cap, result)
            if session.correlator:
                self.references.resolve(operator, session.correlator, result.to_dict())

        safe_record(self.sink, "record_completion", operator, operation, result.to_dict(), sessionId=session_id)

        if self.notifier is not None and result.subject and not result.subject.startswith("TOKEN:"):
            ctx = dict(params)
            ctx.setdefault("subscription_id", result.data.get("uuid"))
            self.notifier.notify_completion(cap, result.subject, ctx)

        return FlowResult(
            action=FlowAction.COMPLETED,
            operator=operator,
            operation=operation,
            protocol=cap.variant.value,
            session_id=session_id,
            correlator=session.correlator,
            transaction_id=session.transactionId,
            result=result,
        )

    def _record_anonymous_reference(self, cap: OperatorCapability, result):
        sub_uuid = result.data.get("uuid")
        if not sub_uuid:
            log(event="anonymous_reference_without_uuid", operator=cap.operator_id)
            return
        self.anonymous_refs.put(
            f"{cap.operator_id}:{sub_uuid}",
            {"reference": result.subject, "identifier": result.anonymous_reference_id},
            self.anonymous_retention_sec,
        )
        log(event="anonymous_reference_recorded", operator=cap.operator_id, uuid=sub_uuid,
            acr=result.subject)

    def sweep(self) -> int:
        return self.sessions.sweep()


_STRATEGIES = {
    ProtocolVariant.REDIRECT_CHECKOUT: CheckoutFlow._start_plain,
    ProtocolVariant.REDIRECT_OR_CODE: CheckoutFlow._start_plain,
    ProtocolVariant.REDIRECT_ANON_REF: CheckoutFlow._start_anonymous,
    ProtocolVariant.REDIRECT_ASYNC: CheckoutFlow._start_async,
}
