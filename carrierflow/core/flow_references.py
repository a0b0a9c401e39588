from typing import Any, Dict, Optional

from carrierflow.core.state_machine import FLOW_REFERENCE_TTL_SEC
from carrierflow.observability.logging import log
from carrierflow.store.models import FlowReference


def reference_key(operator: str, key: str) -> str:
    return f"{operator}:{key}"


class FlowReferenceRegistry:
    """
    Correlation table for flows that finish out-of-band.
    Keyed by (operator, correlation key); entries live 30 minutes and are removed
    on resolution so a late or repeated webhook finds nothing to apply.
    """

    def __init__(self, store, clock):
        self.store = store
        self.clock = clock

    def create(self, operator: str, key: str, kind: str, session_id: Optional[str] = None) -> FlowReference:
        now = self.clock.now()
        ref = FlowReference(
            operator=operator,
            key=key,
            kind=kind,
            createdAt=now,
            expiresAt=now + FLOW_REFERENCE_TTL_SEC,
            sessionId=session_id,
        )
        self.store.put(reference_key(operator, key), ref.to_dict(), FLOW_REFERENCE_TTL_SEC)
        log(event="flow_reference_created", operator=operator, key=key, kind=kind)
        return ref

    def get(self, operator: str, key: str) -> Optional[FlowReference]:
        if not key:
            return None
        rec = self.store.get(reference_key(operator, key))
        return FlowReference.from_dict(rec) if rec else None

    def resolve(self, operator: str, key: str, result: Dict[str, Any]) -> Optional[FlowReference]:
        """Atomically claims the reference. Only the first caller gets it back."""
        if not key:
            return None
        rec = self.store.pop(reference_key(operator, key))
        if not rec:
            return None
        ref = FlowReference.from_dict(rec)
        ref.resolved = True
        ref.result = result
        log(event="flow_reference_resolved", operator=operator, key=key, kind=ref.kind)
        return ref

    def clear(self, operator: str, key: str) -> bool:
        return self.store.delete(reference_key(operator, key))

    def sweep(self) -> int:
        return self.store.sweep()
