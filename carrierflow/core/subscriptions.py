from datetime import datetime, timedelta, timezone
from typing import Optional

from carrierflow.core.errors import (
    AnonymousReferenceNotFound,
    GracePeriodExceeded,
    MissingParameter,
    OperatorDeleteUnsupported,
    TrialUnsupported,
)
from carrierflow.core.normalizer import normalize
from carrierflow.core.operators import IdentifierFormat, capabilities_of
from carrierflow.core.ports import safe_record
from carrierflow.core.results import NormalizedResult
from carrierflow.core.state_machine import RESUME_GRACE_DAYS
from carrierflow.observability.logging import log
from carrierflow.utils.time import days_between_ms, parse_timestamp_ms


class SubscriptionManager:
    """Lifecycle calls on existing subscriptions: delete, status, resume, free trial."""

    def __init__(self, gateway, anonymous_refs, pin_flow, clock, sink=None):
        self.gateway = gateway
        self.anonymous_refs = anonymous_refs
        self.pin_flow = pin_flow
        self.clock = clock
        self.sink = sink

    def _normalize(self, raw, operator: str, kind: str) -> NormalizedResult:
        return normalize(raw, operator, kind, self.gateway.environment)

    def delete(self, operator: str, uuid: str, subject: Optional[str] = None) -> NormalizedResult:
        cap = capabilities_of(operator)
        if cap.delete_unsupported:
            raise OperatorDeleteUnsupported(
                f"Delete API not available for {cap.operator_id}. Subscription will be terminated by operator.",
                operator=cap.operator_id,
            )
        if not uuid:
            raise MissingParameter("uuid is required", parameter="uuid")

        msisdn = subject
        if cap.identifier_format == IdentifierFormat.ANONYMOUS_REFERENCE:
            rec = self.anonymous_refs.get(f"{cap.operator_id}:{uuid}")
            if not rec or not rec.get("reference"):
                # no guessing with a phone number: the vendor only knows the reference
                raise AnonymousReferenceNotFound(
                    "Anonymous reference not found for subscription. Unable to delete.",
                    operator=cap.operator_id, uuid=uuid,
                )
            msisdn = rec["reference"]

        raw = self.gateway.delete_subscription(cap.operator_id, uuid, msisdn=msisdn)
        result = self._normalize(raw, cap.operator_id, "subscription.delete")
        if result.ok and cap.identifier_format == IdentifierFormat.ANONYMOUS_REFERENCE:
            self.anonymous_refs.delete(f"{cap.operator_id}:{uuid}")
        log(event="subscription_delete", operator=cap.operator_id, uuid=uuid, outcome=result.outcome.value)
        safe_record(self.sink, "record_completion", cap.operator_id, "delete", result.to_dict(), uuid=uuid)
        return result

    def status(self, operator: str, uuid: Optional[str] = None, subject: Optional[str] = None) -> NormalizedResult:
        cap = capabilities_of(operator)
        if not uuid and not subject:
            raise MissingParameter("uuid or msisdn is required", parameter="uuid")
        raw = self.gateway.subscription_status(cap.operator_id, uuid=uuid, msisdn=subject)
        return self._normalize(raw, cap.operator_id, "subscription.status")

    def resume(self, operator: str, uuid: str, removed_at, subject: Optional[str] = None) -> NormalizedResult:
        """
        Only removed subscriptions within the 30 day grace period can be resumed.
        A resumed subscription starts from fresh flow state: any code left over for
        the subscriber is discarded.
        """
        cap = capabilities_of(operator)
        if not uuid:
            raise MissingParameter("uuid is required", parameter="uuid")
        if removed_at is None or removed_at == "":
            raise MissingParameter("removedAt is required", parameter="removedAt")

        days = days_between_ms(parse_timestamp_ms(removed_at), self.clock.now_ms())
        if days >= RESUME_GRACE_DAYS:
            raise GracePeriodExceeded(
                "Grace period exceeded. Cannot resume subscription.",
                operator=cap.operator_id, uuid=uuid, daysSinceRemoval=round(days, 2),
            )

        if subject:
            self.pin_flow.clear(cap.operator_id, subject)

        raw = self.gateway.resume_subscription(cap.operator_id, uuid)
        result = self._normalize(raw, cap.operator_id, "subscription.resume")
        if result.ok:
            result.data.setdefault("resumedAt", datetime.now(timezone.utc).isoformat())
        log(event="subscription_resume", operator=cap.operator_id, uuid=uuid, outcome=result.outcome.value)
        safe_record(self.sink, "record_completion", cap.operator_id, "resume", result.to_dict(), uuid=uuid)
        return result

    def apply_trial(self, operator: str, uuid: str, trial_days: int) -> NormalizedResult:
        cap = capabilities_of(operator)
        if cap.no_trial_support:
            raise TrialUnsupported(f"Free trials not supported for {cap.operator_id}", operator=cap.operator_id)
        if not uuid:
            raise MissingParameter("uuid is required", parameter="uuid")
        if not trial_days or int(trial_days) <= 0:
            raise MissingParameter("trialDays must be positive", parameter="trialDays")

        raw = self.gateway.apply_trial(cap.operator_id, uuid, int(trial_days))
        result = self._normalize(raw, cap.operator_id, "subscription.coupon")
        if result.ok:
            ends = datetime.fromtimestamp(self.clock.now(), tz=timezone.utc) + timedelta(days=int(trial_days))
            result.data.setdefault("trialEndsAt", ends.isoformat())
        log(event="subscription_trial", operator=cap.operator_id, uuid=uuid, trialDays=int(trial_days),
            outcome=result.outcome.value)
        return result
