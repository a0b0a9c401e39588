from carrierflow.core.ports import GatewayMessagingSender
from carrierflow.engine import build_gateway
from carrierflow.observability.logging import log


def send_welcome_message_job(operator: str, subject: str, text: str, extra: dict = None):
    """
    Background job: deliver one post-completion welcome message.
    Raises on failure so RQ records the job as failed.
    """
    try:
        log(event="notification_job_start", operator=operator, subject=subject)
        sender = GatewayMessagingSender(build_gateway())
        res = sender.send(operator, subject, text, **(extra or {}))
        log(event="notification_job_done", operator=operator, status=res.status.value, outcome=res.outcome.value)
        return res.to_dict()
    except Exception as e:
        log(event="notification_job_exception", operator=operator, error=str(e))
        raise
