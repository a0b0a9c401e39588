from typing import Any, Dict, Optional

from carrierflow.core.operators import OperatorCapability
from carrierflow.observability.logging import log

WELCOME_TEMPLATES = {
    "en": "To access your subscription to {service_name}, click {url}",
    "ar": "للوصول إلى اشتراكك في {service_name}، انقر على {url}",
}

FALLBACK_TEXT = "welcome"


def welcome_text(language: Optional[str], service_name: Optional[str], access_url: Optional[str]) -> str:
    if not service_name or not access_url:
        return FALLBACK_TEXT
    tmpl = WELCOME_TEMPLATES.get(language or "en") or WELCOME_TEMPLATES["en"]
    return tmpl.replace("{service_name}", service_name).replace("{url}", access_url)


class Notifier:
    """
    Post-completion welcome message. Best effort in every mode:
    - "sync": send inline through the MessagingSender
    - "rq": enqueue a job that sends from a worker
    - "off": never send
    Any failure is logged and reported as False, never raised.
    """

    def __init__(self, sender=None, mode: str = "sync", queue_factory=None, default_language: str = "en"):
        self.sender = sender
        self.mode = mode
        self.queue_factory = queue_factory
        self.default_language = default_language

    def build_message(self, cap: OperatorCapability, context: Dict[str, Any]):
        access_url = context.get("access_url")
        if cap.dynamic_messaging and context.get("dynamic_url") and access_url:
            return access_url, {"dynamic_sms": True}
        language = context.get("language") or self.default_language
        return welcome_text(language, context.get("service_name"), access_url), {}

    def notify_completion(self, cap: OperatorCapability, subject: Optional[str], context: Dict[str, Any]) -> bool:
        if self.mode == "off" or not cap.supports_messaging or not subject:
            return False

        text, extra = self.build_message(cap, context or {})
        for k in ("campaign", "merchant"):
            if (context or {}).get(k):
                extra[k] = context[k]

        try:
            if self.mode == "rq":
                from carrierflow.queue.jobs import send_welcome_message_job
                q = self.queue_factory()
                q.enqueue(send_welcome_message_job, cap.operator_id, subject, text, extra)
                log(event="notification_enqueued", operator=cap.operator_id, subject=subject)
                return True

            if self.sender is None:
                return False
            res = self.sender.send(cap.operator_id, subject, text, **extra)
            ok = bool(getattr(res, "ok", res))
            log(event="notification_sent" if ok else "notification_rejected",
                operator=cap.operator_id, subject=subject)
            return ok
        except Exception as e:
            log(event="notification_failed", operator=cap.operator_id, subject=subject, error=str(e))
            return False
