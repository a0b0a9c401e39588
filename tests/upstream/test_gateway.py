import base64
import re

import httpx
import pytest

from carrierflow.upstream.catalogue import ENDPOINTS, describe_error, is_retryable, suggested_action
from carrierflow.upstream.gateway import (
    RawResponse,
    TransportError,
    UpstreamGateway,
    canonical_token,
    generate_transaction_id,
)


def _gateway(handler, environment="sandbox"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return UpstreamGateway(environment, "user", "secret", client=client)


def test_enrich_adds_identifiers_and_sandbox_pin():
    gw = UpstreamGateway("sandbox")

    uk = gw.enrich({"msisdn": "447700900000", "pin": "12345", "trial": True, "language": None}, "vodafone-uk")
    assert re.fullmatch(r"[0-9a-f]{32}", uk["correlator"])
    assert uk["pin"] == "000000"
    assert uk["trial"] == "true"
    assert "language" not in uk

    axiata = gw.enrich({"msisdn": "94770000000"}, "axiata-lk")
    assert re.fullmatch(r"TXN_\d+_[0-9a-f]{16}", axiata["transaction_id"])
    assert "correlator" not in axiata


def test_enrich_keeps_caller_values_outside_sandbox():
    gw = UpstreamGateway("production")
    out = gw.enrich({"pin": "12345", "correlator": "mine"}, "vodafone-uk")
    assert out == {"pin": "12345", "correlator": "mine"}


def test_call_posts_query_with_basic_auth():
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(200, json={"success": {"status": "CHARGED"}})

    out = _gateway(handler).call("subscription.create", {"msisdn": "9647000000", "campaign": "c"}, "zain-iq")

    assert isinstance(out, RawResponse)
    assert out.payload == {"success": {"status": "CHARGED"}}
    req = seen["request"]
    assert req.method == "POST"
    assert str(req.url).startswith("https://api-sandbox.sla-alacrity.com/v2.2/subscription/create?")
    assert dict(req.url.params) == {"msisdn": "9647000000", "campaign": "c"}
    assert req.headers["authorization"] == "Basic " + base64.b64encode(b"user:secret").decode()
    assert req.headers["accept"] == "application/json"


def test_operator_specific_base_url():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"success": {}})

    _gateway(handler).call("pin", {"msisdn": "97312345678"}, "zain-bh")
    assert seen["url"].startswith("https://api.sla-alacrity.com/api/alacrity/v2.2/pin?")


def test_structured_error_body():
    def handler(request):
        return httpx.Response(400, json={"error": {"category": "PIN API", "code": "3001", "message": "fail"}})

    out = _gateway(handler).call("pin", {}, "zain-iq")

    assert isinstance(out, TransportError)
    assert (out.http_status, out.category, out.code, out.retryable) == (400, "PIN API", "3001", True)


def test_unstructured_http_error():
    out = _gateway(lambda r: httpx.Response(502, text="bad gateway")).call("charge", {}, "zain-iq")
    assert out.code == "HTTP_502"
    assert out.category == "Transport"
    assert out.message == "bad gateway"


def test_non_json_success_body():
    out = _gateway(lambda r: httpx.Response(200, text="<html>")).call("charge", {}, "zain-iq")
    assert isinstance(out, TransportError)
    assert out.code == "INVALID_PAYLOAD"


@pytest.mark.parametrize("exc,code", [
    (httpx.ReadTimeout("slow"), "TIMEOUT"),
    (httpx.ConnectError("refused"), "NETWORK"),
])
def test_transport_failures_are_returned(exc, code):
    def handler(request):
        raise exc

    out = _gateway(handler).call("charge", {"msisdn": "1"}, "zain-iq")
    assert isinstance(out, TransportError)
    assert out.code == code
    assert out.http_status is None
    assert out.sent == {"msisdn": "1"}


def test_build_checkout_url():
    gw = UpstreamGateway("sandbox")
    url, correlator, txn = gw.build_checkout_url("axiata-lk", {
        "merchant": "m", "campaign": "c", "redirect_url": "https://r", "language": "en",
    })
    assert url.startswith("https://checkout-sandbox.sla-alacrity.com/purchase/axiata?merchant=m&service=c")
    assert correlator is None
    assert txn.startswith("TXN_")
    assert f"transaction_id={txn}" in url

    prod = UpstreamGateway("production")
    url, correlator, _ = prod.build_checkout_url("three-ie", {"merchant": "m", "campaign": "c",
                                                              "redirect_url": "https://r", "correlator": "abc"})
    assert url.startswith("http://checkout.sla-alacrity.com/purchase?")
    assert correlator == "abc"


def test_helpers():
    assert canonical_token(" abc ") == "TOKEN:abc"
    assert canonical_token("TOKEN:abc") == "TOKEN:abc"
    assert generate_transaction_id() != generate_transaction_id()


def test_catalogue():
    assert describe_error("Charge API", "5003") == "Daily limit exceeded"
    assert describe_error("Charge API", "9999") == "Unknown error"
    assert is_retryable(5001) and not is_retryable("5002")
    assert suggested_action("1002", "zain-kw") == "Whitelist your IP address in the Alacrity portal"


def test_every_endpoint_has_a_convenience_operation():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={"success": {"status": "CHARGED"}})

    gw = _gateway(handler)
    gw.generate_code("zain-iq", "964", "c", "m")
    gw.create_subscription("zain-iq", "964", "c", "m", pin="1")
    gw.charge("zain-iq", "964", "c", "m", 1, "IQD")
    gw.send_message("zain-iq", "964", "hi")
    gw.delete_subscription("zain-iq", "u")
    gw.subscription_status("zain-iq", uuid="u")
    gw.resume_subscription("zain-iq", "u")
    gw.apply_trial("zain-iq", "u", 3)

    assert sorted(p.rsplit("/v2.2/", 1)[1] for p in paths) == sorted(ENDPOINTS.values())
