import httpx
import pytest
from unittest.mock import MagicMock

from carrierflow.core.checkout_flow import CheckoutFlow
from carrierflow.core.flow_manager import FlowManager
from carrierflow.core.flow_references import FlowReferenceRegistry
from carrierflow.core.pin_flow import PinFlow
from carrierflow.core.reconciler import WebhookReconciler
from carrierflow.core.subscriptions import SubscriptionManager
from carrierflow.store.ttl_store import MemoryTTLStore
from carrierflow.upstream.gateway import UpstreamGateway
from carrierflow.utils.lock import KeyedLocks

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = START):
        self.t = start

    def now(self) -> float:
        return self.t

    def now_ms(self) -> int:
        return int(self.t * 1000)

    def advance(self, seconds: float):
        self.t += seconds


class FakeUpstream:
    """Answers gateway calls by endpoint path suffix and records every request."""

    def __init__(self):
        self.responses = {}
        self.requests = []

    def reply(self, endpoint: str, body, status: int = 200):
        # body may be a callable taking the request and returning (status, body)
        self.responses[endpoint] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for endpoint, (status, body) in self.responses.items():
            if request.url.path.endswith("/" + endpoint):
                if isinstance(body, Exception):
                    raise body
                if callable(body):
                    status, body = body(request)
                return httpx.Response(status, json=body)
        return httpx.Response(200, json={"success": {"status": "CHARGED"}})

    def params(self, index: int = -1) -> dict:
        return dict(self.requests[index].url.params)

    def paths(self):
        return [r.url.path for r in self.requests]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def gateway(upstream):
    client = httpx.Client(transport=httpx.MockTransport(upstream.handler))
    return UpstreamGateway("sandbox", "user", "secret", client=client)


@pytest.fixture
def live_gateway(upstream):
    client = httpx.Client(transport=httpx.MockTransport(upstream.handler))
    return UpstreamGateway("production", "user", "secret", client=client)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def locks():
    return KeyedLocks(wait_sec=0.5)


@pytest.fixture
def codes(clock):
    return MemoryTTLStore("codes", clock)


@pytest.fixture
def sessions(clock):
    return MemoryTTLStore("sessions", clock)


@pytest.fixture
def anonymous_refs(clock):
    return MemoryTTLStore("anonymous_refs", clock)


@pytest.fixture
def references(clock):
    return FlowReferenceRegistry(MemoryTTLStore("references", clock), clock)


@pytest.fixture
def pin_flow(gateway, codes, locks, clock, notifier):
    return PinFlow(gateway, codes, locks, clock, sink=MagicMock(), notifier=notifier)


@pytest.fixture
def live_pin_flow(live_gateway, codes, clock, notifier):
    return PinFlow(live_gateway, codes, KeyedLocks(wait_sec=5), clock, sink=MagicMock(), notifier=notifier)


@pytest.fixture
def checkout_flow(gateway, sessions, references, anonymous_refs, locks, clock, notifier):
    return CheckoutFlow(gateway, sessions, references, anonymous_refs, locks, clock,
                        sink=MagicMock(), notifier=notifier)


@pytest.fixture
def manager(pin_flow, checkout_flow, references, anonymous_refs):
    return FlowManager(pin_flow, checkout_flow, references, anonymous_refs)


@pytest.fixture
def reconciler(references, locks, clock):
    return WebhookReconciler(references, MemoryTTLStore("fingerprints", clock), locks, clock,
                             sink=MagicMock(), environment="sandbox")


@pytest.fixture
def subscriptions(gateway, anonymous_refs, pin_flow, clock):
    return SubscriptionManager(gateway, anonymous_refs, pin_flow, clock, sink=MagicMock())


@pytest.fixture
def checkout_params():
    return {
        "merchant": "partner:1",
        "campaign": "campaign:1",
        "redirect_url": "https://merchant.example/return",
    }
