import threading
import time

import pytest

from carrierflow.core.errors import (
    AttemptsExhausted,
    CodeExpired,
    InvalidCodeFormat,
    MissingAmount,
    MissingFraudToken,
    NoPendingCode,
    UnknownOperator,
    UnsupportedProtocol,
)
from carrierflow.core.results import FlowAction

MSISDN = "353871234567"
CTX = {"campaign": "campaign:1", "merchant": "partner:1", "service_name": "Games", "access_url": "https://g.example"}

PIN_REJECTED = {"error": {"category": "PIN API", "code": "3003", "message": "Invalid MSISDN format"}}
SUBSCRIBED = {"success": {"uuid": "sub-1", "msisdn": MSISDN, "status": "CHARGED", "type": "subscription"}}


def test_issue_code_stores_pending_and_awaits_entry(pin_flow, codes, upstream):
    upstream.reply("pin", {"success": {"status": "PENDING", "msisdn": MSISDN}})

    res = pin_flow.issue_code("vodafone-ie", MSISDN, dict(CTX))

    assert res.action == FlowAction.AWAIT_CODE_ENTRY
    assert res.expires_in == 120
    assert res.attempts_remaining == 3
    rec = codes.get(f"vodafone-ie:{MSISDN}")
    assert rec["attempts"] == 0
    assert rec["expiresAt"] - rec["issuedAt"] == 120
    assert upstream.paths()[-1].endswith("/pin")
    assert upstream.params()["template"] == "subscription"


def test_operator_id_is_case_insensitive(pin_flow, codes):
    res = pin_flow.issue_code("  Vodafone-IE ", MSISDN, dict(CTX))
    assert res.operator == "vodafone-ie"
    assert codes.get(f"vodafone-ie:{MSISDN}") is not None


def test_verify_completes_and_notifies(pin_flow, codes, upstream, notifier):
    pin_flow.issue_code("vodafone-ie", MSISDN, dict(CTX))
    upstream.reply("subscription/create", SUBSCRIBED)

    res = pin_flow.verify_and_complete("vodafone-ie", MSISDN, "12345")

    assert res.action == FlowAction.COMPLETED
    assert res.result.data["uuid"] == "sub-1"
    assert codes.get(f"vodafone-ie:{MSISDN}") is None
    # sandbox always submits the fixed test code
    assert upstream.params()["pin"] == "000000"
    assert upstream.params()["campaign"] == "campaign:1"
    notifier.notify_completion.assert_called_once()
    _, subject, ctx = notifier.notify_completion.call_args.args
    assert subject == MSISDN
    assert ctx["subscription_id"] == "sub-1"
    assert ctx["service_name"] == "Games"


def test_verify_after_deadline_is_expired_then_gone(pin_flow, clock):
    pin_flow.issue_code("vodafone-ie", MSISDN, dict(CTX))
    clock.advance(120)

    with pytest.raises(CodeExpired):
        pin_flow.verify_and_complete("vodafone-ie", MSISDN, "12345")
    with pytest.raises(NoPendingCode):
        pin_flow.verify_and_complete("vodafone-ie", MSISDN, "12345")


def test_verify_without_issue(pin_flow):
    with pytest.raises(NoPendingCode):
        pin_flow.verify_and_complete("vodafone-ie", MSISDN, "12345")


def test_attempt_budget_is_three(pin_flow, upstream, codes):
    pin_flow.issue_code("vodafone-ie", MSISDN, dict(CTX))
    upstream.reply("subscription/create", PIN_REJECTED, status=400)

    remaining = []
    for _ in range(3):
        res = pin_flow.verify_and_complete("vodafone-ie", MSISDN, "00000")
        assert res.action == FlowAction.UPSTREAM_ERROR
        assert res.success is False
        remaining.append(res.attempts_remaining)
    assert remaining == [2, 1, 0]

    with pytest.raises(AttemptsExhausted):
        pin_flow.verify_and_complete("vodafone-ie", MSISDN, "00000")
    assert codes.get(f"vodafone-ie:{MSISDN}") is None


def test_upstream_error_on_issue_stores_nothing(pin_flow, upstream, codes):
    upstream.reply("pin", {"error": {"category": "PIN API", "code": "3001", "message": "PIN sending failed"}},
                   status=400)

    res = pin_flow.issue_code("vodafone-ie", MSISDN, dict(CTX))

    assert res.action == FlowAction.UPSTREAM_ERROR
    assert res.result.error.retryable is True
    assert codes.get(f"vodafone-ie:{MSISDN}") is None


def test_checkout_only_operator_rejects_code_flow(pin_flow, upstream):
    with pytest.raises(UnsupportedProtocol):
        pin_flow.issue_code("vodafone-uk", MSISDN, dict(CTX))
    assert upstream.requests == []


def test_fraud_token_required_before_any_call(pin_flow, upstream):
    with pytest.raises(MissingFraudToken):
        pin_flow.issue_code("mobily-sa", "966500000000", dict(CTX))
    assert upstream.requests == []


def test_amount_required_for_amount_operator(pin_flow, upstream):
    with pytest.raises(MissingAmount):
        pin_flow.issue_code("ooredoo-kw", "96550000000", dict(CTX))
    assert upstream.requests == []


def test_charge_uses_charge_endpoint(pin_flow, upstream):
    ctx = dict(CTX, operation="charge", amount="1.5")
    pin_flow.issue_code("vodafone-ie", MSISDN, ctx)
    assert upstream.params()["template"] == "charge"

    pin_flow.verify_and_complete("vodafone-ie", MSISDN, "12345")
    assert upstream.paths()[-1].endswith("/charge")
    assert upstream.params()["amount"] == "1.5"
    assert upstream.params()["currency"] == "EUR"


def test_unknown_operator(pin_flow):
    with pytest.raises(UnknownOperator):
        pin_flow.issue_code("nope", MSISDN, dict(CTX))


def test_sweep_drops_expired_codes(pin_flow, clock):
    pin_flow.issue_code("vodafone-ie", MSISDN, dict(CTX))
    assert pin_flow.sweep() == 0
    clock.advance(120 + 300)
    assert pin_flow.sweep() == 1


BH_MSISDN = "97312345678"
BH_CODE = "54321"


def _accept_only(code):
    def answer(request):
        if request.url.params.get("pin") == code:
            return 200, {"success": {"uuid": "sub-bh", "msisdn": BH_MSISDN, "status": "CHARGED"}}
        return 400, {"error": {"category": "PIN API", "code": "3004", "message": "Invalid PIN"}}
    return answer


def test_wrong_code_twice_then_right_code(live_pin_flow, upstream, codes):
    live_pin_flow.issue_code("zain-bh", BH_MSISDN, dict(CTX))
    upstream.reply("subscription/create", _accept_only(BH_CODE))

    first = live_pin_flow.verify_and_complete("zain-bh", BH_MSISDN, "11111")
    second = live_pin_flow.verify_and_complete("zain-bh", BH_MSISDN, "22222")
    third = live_pin_flow.verify_and_complete("zain-bh", BH_MSISDN, BH_CODE)

    assert [first.action, second.action] == [FlowAction.UPSTREAM_ERROR, FlowAction.UPSTREAM_ERROR]
    assert second.attempts_remaining == 1
    assert third.action == FlowAction.COMPLETED
    assert third.result.data["uuid"] == "sub-bh"
    assert upstream.params()["pin"] == BH_CODE
    assert codes.get(f"zain-bh:{BH_MSISDN}") is None


def test_wrong_length_code_never_reaches_upstream(live_pin_flow, upstream, codes):
    live_pin_flow.issue_code("zain-bh", BH_MSISDN, dict(CTX))
    sent = len(upstream.requests)

    with pytest.raises(InvalidCodeFormat):
        live_pin_flow.verify_and_complete("zain-bh", BH_MSISDN, "12")

    assert len(upstream.requests) == sent
    assert codes.get(f"zain-bh:{BH_MSISDN}")["attempts"] == 0


def test_concurrent_verifications_are_serialized(live_pin_flow, upstream):
    live_pin_flow.issue_code("zain-bh", BH_MSISDN, dict(CTX))
    in_flight = []
    overlap = []
    guard = threading.Lock()

    def slow_reject(request):
        with guard:
            in_flight.append(1)
            overlap.append(len(in_flight))
        time.sleep(0.02)
        with guard:
            in_flight.pop()
        return 400, {"error": {"category": "PIN API", "code": "3004", "message": "Invalid PIN"}}

    upstream.reply("subscription/create", slow_reject)
    outcomes = []

    def attempt():
        try:
            res = live_pin_flow.verify_and_complete("zain-bh", BH_MSISDN, "11111")
            outcomes.append(res.attempts_remaining)
        except (AttemptsExhausted, NoPendingCode) as e:
            outcomes.append(type(e).__name__)

    threads = [threading.Thread(target=attempt) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert max(overlap) == 1
    assert sorted(o for o in outcomes if isinstance(o, int)) == [0, 1, 2]
    assert sorted(o for o in outcomes if isinstance(o, str)) == [
        "AttemptsExhausted", "NoPendingCode", "NoPendingCode",
    ]
