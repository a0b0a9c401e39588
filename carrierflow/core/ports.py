from carrierflow.core.normalizer import normalize
from carrierflow.observability.logging import log
from carrierflow.upstream.gateway import generate_correlator


class PersistenceSink:
    """Default sink: completions and attempts become structured log lines."""

    def record_attempt(self, operator: str, operation: str, **fields):
        log(event="flow_attempt_recorded", operator=operator, operation=operation, **fields)

    def record_completion(self, operator: str, operation: str, result: dict, **fields):
        log(
            event="flow_completion_recorded",
            operator=operator,
            operation=operation,
            status=(result or {}).get("status"),
            **fields,
        )


def safe_record(sink, method: str, *args, **kwargs) -> bool:
    """Persistence is fire-and-forget for the flows: a failing sink is logged, never raised."""
    if sink is None:
        return False
    try:
        getattr(sink, method)(*args, **kwargs)
        return True
    except Exception as e:
        log(event="persistence_sink_failed", method=method, error=str(e))
        return False


class MessagingSender:
    def send(self, operator: str, subject: str, text: str, **extra):
        raise NotImplementedError


class GatewayMessagingSender(MessagingSender):
    """Sends through the vendor SMS endpoint. Returns the normalized result."""

    def __init__(self, gateway, campaign: str = "", merchant: str = ""):
        self.gateway = gateway
        self.campaign = campaign
        self.merchant = merchant

    def send(self, operator, subject, text, **extra):
        params = {
            "campaign": extra.pop("campaign", None) or self.campaign or None,
            "merchant": extra.pop("merchant", None) or self.merchant or None,
            "correlator": extra.pop("correlator", None) or generate_correlator(),
        }
        params.update(extra)
        raw = self.gateway.send_message(operator, subject, text, **params)
        return normalize(raw, operator, "sms", self.gateway.environment)
