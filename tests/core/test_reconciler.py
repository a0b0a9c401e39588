import pytest
from unittest.mock import MagicMock

from carrierflow.core.errors import MissingParameter
from carrierflow.core.reconciler import WebhookReconciler, classify, fingerprint
from carrierflow.core.operators import capabilities_of
from carrierflow.core.results import CanonicalStatus, WebhookEvent
from carrierflow.store.ttl_store import MemoryTTLStore

DAY_MS = 24 * 60 * 60 * 1000


def _created(correlator, uuid="u-1"):
    return {"success": {"type": "subscription", "operator": "vodafone-uk", "correlator": correlator,
                        "uuid": uuid, "status": "ACTIVE", "msisdn": "447700900000"}}


def test_deferred_webhook_resolves_pending_flow(checkout_flow, reconciler, references, checkout_params):
    start = checkout_flow.start_checkout("vodafone-uk", checkout_params)
    seen = []
    reconciler.register_callback("vodafone-uk", WebhookEvent.SUBSCRIPTION_CREATED, seen.append)

    res = reconciler.reconcile("vodafone-uk", _created(start.correlator))

    assert res.event == WebhookEvent.SUBSCRIPTION_CREATED
    assert res.resolved is True
    assert res.callbacks_fired == 1
    assert seen[0]["flowReference"]["sessionId"] == start.session_id
    assert references.get("vodafone-uk", start.correlator) is None


def test_redelivered_webhook_is_a_noop(checkout_flow, reconciler, checkout_params):
    start = checkout_flow.start_checkout("vodafone-uk", checkout_params)
    cb = MagicMock()
    reconciler.register_callback("*", "subscription_created", cb)

    first = reconciler.reconcile("vodafone-uk", _created(start.correlator))
    second = reconciler.reconcile("vodafone-uk", _created(start.correlator))

    assert first.resolved is True
    assert second.duplicate is True
    assert second.action == "IGNORED_DUPLICATE"
    assert cb.call_count == 1
    assert reconciler.status()["duplicates"] == 1


def test_late_webhook_after_resolution_is_unmatched(checkout_flow, reconciler, checkout_params):
    start = checkout_flow.start_checkout("vodafone-uk", checkout_params)
    cb = MagicMock()
    reconciler.register_callback("vodafone-uk", "*", cb)

    reconciler.reconcile("vodafone-uk", _created(start.correlator, uuid="u-1"))
    late = reconciler.reconcile("vodafone-uk", _created(start.correlator, uuid="u-2"))

    assert late.resolved is False
    assert late.action == "UNMATCHED"
    assert cb.call_count == 1


def test_webhook_after_reference_expiry_is_unmatched(checkout_flow, reconciler, clock, checkout_params):
    start = checkout_flow.start_checkout("vodafone-uk", checkout_params)
    clock.advance(30 * 60)
    res = reconciler.reconcile("vodafone-uk", _created(start.correlator))
    assert res.action == "UNMATCHED"


def test_async_notification_resolves_by_transaction_id(checkout_flow, reconciler, checkout_params):
    start = checkout_flow.start_checkout("axiata-lk", checkout_params)
    res = reconciler.reconcile("axiata-lk", {"success": {"type": "charge", "transaction_id": start.transaction_id,
                                                         "status": "CHARGED"}})
    assert res.event == WebhookEvent.ASYNC_COMPLETED
    assert res.resolved is True


def test_suspension_waits_for_topup(reconciler):
    res = reconciler.reconcile("zain-kw", {"success": {"type": "subscription", "uuid": "u", "status": "SUSPENDED"}})
    assert res.event == WebhookEvent.SUSPENSION
    assert res.action == "WAIT_FOR_TOPUP"
    assert res.will_retry is True


@pytest.mark.parametrize("operator", ["vodafone-ie", "zain-iq"])
def test_suspension_only_for_topup_operators(reconciler, operator):
    res = reconciler.reconcile(operator, {"success": {"type": "subscription", "uuid": "u",
                                                      "transaction": {"status": "SUSPENDED"}}})
    assert res.status == "SUSPENDED"
    assert res.event == WebhookEvent.PROCESSED
    assert res.action == "PROCESSED"
    assert res.will_retry is False


def test_renewal_in_alternate_vocabulary(reconciler):
    res = reconciler.reconcile("zain-kw", {"success": {"type": "subscription", "uuid": "u",
                                                       "status": "SUCCESS", "mode": "RENEWAL"}})
    assert res.event == WebhookEvent.RENEWAL
    assert res.status == "CHARGED"


def test_payment_failure_from_error_body(reconciler):
    res = reconciler.reconcile("zain-iq", {"error": {"category": "Charge API", "code": "5001",
                                                     "status": "INSUFFICIENT_FUNDS", "uuid": "u"}})
    assert res.event == WebhookEvent.PAYMENT_FAILURE


@pytest.mark.parametrize("days_ago,can_resume", [(10, True), (40, False)])
def test_removed_reports_resume_window(reconciler, clock, days_ago, can_resume):
    body = {"success": {"type": "subscription", "uuid": "u", "status": "REMOVED",
                        "timestamp": clock.now_ms() - days_ago * DAY_MS}}
    res = reconciler.reconcile("zain-iq", body)
    assert res.event == WebhookEvent.DELETION
    assert res.action == "EXCEEDED_RETRY_PERIOD"
    assert res.can_resume is can_resume


def test_deleted_is_terminal(reconciler):
    res = reconciler.reconcile("zain-iq", {"success": {"type": "subscription", "uuid": "u", "status": "DELETED"}})
    assert res.action == "SUBSCRIPTION_TERMINATED"
    assert res.can_resume is None


def test_callback_failure_is_reported_not_raised(reconciler):
    def broken(_payload):
        raise RuntimeError("boom")

    reconciler.register_callback("*", WebhookEvent.SUSPENSION, broken)
    res = reconciler.reconcile("zain-kw", {"success": {"type": "subscription", "status": "SUSPENDED"}})

    assert res.callbacks_fired == 0
    assert res.callback_errors == ["broken: boom"]


def test_flat_body_and_operator_lookup(reconciler):
    res = reconciler.reconcile_any({"operator": "zain-iq", "type": "subscription", "status": "DELETED"})
    assert res.operator == "zain-iq"
    assert res.event == WebhookEvent.DELETION

    with pytest.raises(MissingParameter):
        reconciler.reconcile_any({"success": {"status": "CHARGED"}})


def test_history_is_bounded(references, locks, clock):
    rec = WebhookReconciler(references, MemoryTTLStore("fp", clock), locks, clock, history_size=2)
    for uuid in ("a", "b", "c"):
        rec.reconcile("zain-iq", {"success": {"type": "subscription", "uuid": uuid, "status": "DELETED"}})
    rec.reconcile("stc-kw", {"success": {"type": "subscription", "uuid": "d", "status": "DELETED"}})

    assert len(rec.history()) == 2
    assert [h["operator"] for h in rec.history(operator="stc-kw")] == ["stc-kw"]
    assert len(rec.history(limit=1)) == 1
    status = rec.status()
    assert status["totalProcessed"] == 4
    assert status["historyCapacity"] == 2


def test_classify_is_pure():
    cap = capabilities_of("vodafone-uk")
    body = {"type": "subscription", "correlator": "c"}
    assert classify(cap, body, CanonicalStatus.ACTIVE, True) == WebhookEvent.SUBSCRIPTION_CREATED
    assert classify(cap, dict(body, mode="RENEWAL"), CanonicalStatus.CHARGED, True) == WebhookEvent.RENEWAL
    assert classify(cap, body, CanonicalStatus.ACTIVE, False) == WebhookEvent.PROCESSED


def test_fingerprint_ignores_key_order():
    a = fingerprint("zain-iq", {"success": {"uuid": "u", "status": "DELETED"}})
    b = fingerprint("zain-iq", {"success": {"status": "DELETED", "uuid": "u"}})
    assert a == b
    assert a != fingerprint("stc-kw", {"success": {"uuid": "u", "status": "DELETED"}})
