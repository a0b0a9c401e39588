from typing import Any, Dict, Optional

from carrierflow.core.errors import MissingAmount, UnsupportedOperation
from carrierflow.core.operators import ProtocolVariant, capabilities_of
from carrierflow.core.results import FlowAction, FlowResult
from carrierflow.observability.logging import log

OPERATIONS = ("subscribe", "charge")

RECOMMENDED_FLOWS = {
    ProtocolVariant.CODE_VERIFY: "pin",
    ProtocolVariant.CODE_WITH_FRAUD_CHECK: "pin_with_fraud",
}


def _truthy(v, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)


class FlowManager:
    """
    Entry point of the engine. Picks the protocol for an operator from its
    capability and owns the flow-reference table used for out-of-band completion.
    """

    def __init__(self, pin_flow, checkout_flow, references, anonymous_refs=None):
        self.pin_flow = pin_flow
        self.checkout_flow = checkout_flow
        self.references = references
        self.anonymous_refs = anonymous_refs
        self._dispatch = {
            ProtocolVariant.CODE_VERIFY: self._code_verify,
            ProtocolVariant.REDIRECT_CHECKOUT: self._checkout,
            ProtocolVariant.REDIRECT_ANON_REF: self._checkout,
            ProtocolVariant.REDIRECT_ASYNC: self._checkout,
            ProtocolVariant.REDIRECT_OR_CODE: self._redirect_or_code,
            ProtocolVariant.CODE_WITH_FRAUD_CHECK: self._code_with_fraud_check,
        }

    def initiate(self, operator: str, operation: str, params: Optional[Dict[str, Any]] = None) -> FlowResult:
        cap = capabilities_of(operator)
        operation = (operation or "subscribe").lower()
        if operation not in OPERATIONS:
            raise UnsupportedOperation(f"Unsupported operation: {operation}", operation=operation)

        ctx = dict(params or {})
        ctx["operation"] = operation
        log(event="flow_initiate", operator=cap.operator_id, operation=operation, variant=cap.variant.value)
        return self._dispatch[cap.variant](cap, ctx)

    # --- variant handlers --------------------------------------------------
    def _code_verify(self, cap, ctx) -> FlowResult:
        return self.pin_flow.issue_code(cap.operator_id, ctx.get("msisdn"), ctx)

    def _checkout(self, cap, ctx) -> FlowResult:
        return self.checkout_flow.start_checkout(cap.operator_id, ctx)

    def _redirect_or_code(self, cap, ctx) -> FlowResult:
        if _truthy(ctx.get("useCheckout"), True):
            return self.checkout_flow.start_checkout(cap.operator_id, ctx)
        if cap.requires_amount and not ctx.get("amount"):
            raise MissingAmount(f"Amount is required for {cap.operator_id}", operator=cap.operator_id)
        return self.pin_flow.issue_code(cap.operator_id, ctx.get("msisdn"), ctx)

    def _code_with_fraud_check(self, cap, ctx) -> FlowResult:
        if not ctx.get("fraud_token"):
            log(event="fraud_script_required", operator=cap.operator_id)
            return FlowResult(
                action=FlowAction.LOAD_FRAUD_SCRIPT,
                operator=cap.operator_id,
                operation=ctx["operation"],
                protocol=cap.variant.value,
                success=False,
                next_step="initiate_with_fraud_token",
                instruction="Load the operator fraud-prevention script, then retry with fraud_token",
            )
        return self.pin_flow.issue_code(cap.operator_id, ctx.get("msisdn"), ctx)

    # --- completion --------------------------------------------------------
    def verify_and_complete(self, operator: str, subject: str, code: str,
                            context: Optional[Dict[str, Any]] = None) -> FlowResult:
        return self.pin_flow.verify_and_complete(operator, subject, code, context)

    def complete_with_token(self, operator: str, token: str, session_id: str,
                            context: Optional[Dict[str, Any]] = None) -> FlowResult:
        return self.checkout_flow.complete_with_token(operator, token, session_id, context)

    # --- introspection -----------------------------------------------------
    def get_flow_reference(self, operator: str, key: str) -> Optional[dict]:
        operator = capabilities_of(operator).operator_id
        ref = self.references.get(operator, key)
        return ref.to_dict() if ref else None

    def clear_flow_reference(self, operator: str, key: str) -> bool:
        operator = capabilities_of(operator).operator_id
        return self.references.clear(operator, key)

    def get_recommended_flow(self, operator: str) -> dict:
        cap = capabilities_of(operator)
        return {
            "operator": cap.operator_id,
            "variant": cap.variant.value,
            "recommended": RECOMMENDED_FLOWS.get(cap.variant, "checkout"),
        }

    def sweep_expired(self) -> Dict[str, int]:
        counts = {
            "pendingCodes": self.pin_flow.sweep(),
            "checkoutSessions": self.checkout_flow.sweep(),
            "flowReferences": self.references.sweep(),
        }
        if self.anonymous_refs is not None:
            counts["anonymousReferences"] = self.anonymous_refs.sweep()
        if any(counts.values()):
            log(event="sweep_expired", **counts)
        return counts
