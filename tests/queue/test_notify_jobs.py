import pytest
from unittest.mock import patch, MagicMock

from carrierflow.core.results import CanonicalStatus, NormalizedResult, Outcome
from carrierflow.queue.jobs import send_welcome_message_job


@patch("carrierflow.queue.jobs.log")
@patch("carrierflow.queue.jobs.GatewayMessagingSender")
@patch("carrierflow.queue.jobs.build_gateway")
def test_send_welcome_message_job(mock_build, mock_sender_cls, mock_log):
    sender = MagicMock()
    mock_sender_cls.return_value = sender
    sender.send.return_value = NormalizedResult(Outcome.SUCCESS, CanonicalStatus.CHARGED, "zain-iq", "sms")

    out = send_welcome_message_job("zain-iq", "9647000000", "welcome", {"campaign": "c"})

    mock_sender_cls.assert_called_once_with(mock_build.return_value)
    sender.send.assert_called_once_with("zain-iq", "9647000000", "welcome", campaign="c")
    assert out["status"] == "CHARGED"
    assert mock_log.call_args_list[0].kwargs["event"] == "notification_job_start"
    assert mock_log.call_args_list[-1].kwargs["event"] == "notification_job_done"


@patch("carrierflow.queue.jobs.log")
@patch("carrierflow.queue.jobs.GatewayMessagingSender")
@patch("carrierflow.queue.jobs.build_gateway")
def test_send_welcome_message_job_reraises(mock_build, mock_sender_cls, mock_log):
    mock_sender_cls.return_value.send.side_effect = RuntimeError("smsc down")

    with pytest.raises(RuntimeError):
        send_welcome_message_job("zain-iq", "9647000000", "welcome")
    assert mock_log.call_args.kwargs["event"] == "notification_job_exception"


@patch("carrierflow.queue.rq_conn.Redis")
@patch("carrierflow.queue.rq_conn.Queue")
def test_get_queue_uses_configured_name(mock_queue_cls, mock_redis_cls):
    from carrierflow.queue.rq_conn import get_queue
    from carrierflow.settings import settings

    get_queue()
    mock_redis_cls.from_url.assert_called_once_with(settings.REDIS_URL)
    mock_queue_cls.assert_called_once_with(settings.RQ_QUEUE_NAME, connection=mock_redis_cls.from_url.return_value)
