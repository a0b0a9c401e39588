import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import urlencode

import httpx

from carrierflow.core.operators import api_base_url, capabilities_of, checkout_base_url
from carrierflow.observability.logging import log
from carrierflow.upstream.catalogue import ENDPOINTS, TRANSPORT_CATEGORY, is_retryable
from carrierflow.utils.time import now_ms

SANDBOX_PIN = "000000"
TOKEN_PREFIX = "TOKEN:"


@dataclass
class RawResponse:
    status_code: int
    payload: Dict[str, Any] = field(default_factory=dict)
    # parameters as sent, after enrichment
    sent: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransportError:
    """Returned, never raised: the call did not produce a usable vendor payload."""
    http_status: Optional[int]
    category: str
    code: str
    message: str
    retryable: bool = False
    sent: Dict[str, Any] = field(default_factory=dict, compare=False)


UpstreamOutcome = Union[RawResponse, TransportError]


def generate_correlator() -> str:
    return secrets.token_hex(16)


def generate_transaction_id() -> str:
    return f"TXN_{now_ms()}_{secrets.token_hex(8)}"


def canonical_token(token: str) -> str:
    token = (token or "").strip()
    return token if token.startswith(TOKEN_PREFIX) else f"{TOKEN_PREFIX}{token}"


class UpstreamGateway:
    """
    Authenticated calls to the remote billing API.
    Every call is a POST with query-string parameters and Basic auth. No internal retry.
    """

    def __init__(
        self,
        environment: str = "sandbox",
        username: str = "",
        password: str = "",
        timeout_sec: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.environment = environment
        self.username = username
        self.password = password
        self.timeout_sec = timeout_sec
        self._client = client

    # ---------------------------------------------------------------------
    # transport
    # ---------------------------------------------------------------------
    def enrich(self, params: Dict[str, Any], operator: str) -> Dict[str, Any]:
        cap = capabilities_of(operator)
        enriched = {k: v for k, v in (params or {}).items() if v is not None}

        if cap.requires_correlation_id and not enriched.get("correlator"):
            enriched["correlator"] = generate_correlator()
        if cap.requires_transaction_id and not enriched.get("transaction_id"):
            enriched["transaction_id"] = generate_transaction_id()
        if self.environment == "sandbox" and enriched.get("pin"):
            enriched["pin"] = SANDBOX_PIN

        for k, v in list(enriched.items()):
            if isinstance(v, bool):
                enriched[k] = "true" if v else "false"
        return enriched

    def url_for(self, endpoint: str, operator: Optional[str] = None) -> str:
        path = ENDPOINTS.get(endpoint, endpoint).lstrip("/")
        return f"{api_base_url(operator, self.environment).rstrip('/')}/{path}"

    def _post(self, client: httpx.Client, url: str, params: Dict[str, Any]) -> httpx.Response:
        return client.post(
            url,
            params=params,
            auth=(self.username, self.password),
            headers={"Accept": "application/json"},
        )

    def call(self, endpoint: str, params: Dict[str, Any], operator: str) -> UpstreamOutcome:
        enriched = self.enrich(params, operator)
        url = self.url_for(endpoint, operator)
        start = time.time()

        try:
            if self._client is not None:
                resp = self._post(self._client, url, enriched)
            else:
                with httpx.Client(timeout=self.timeout_sec) as client:
                    resp = self._post(client, url, enriched)
        except httpx.TimeoutException as e:
            log(event="upstream_timeout", operator=operator, endpoint=endpoint, error=str(e))
            return TransportError(None, TRANSPORT_CATEGORY, "TIMEOUT", f"Upstream timed out: {e}", sent=enriched)
        except httpx.HTTPError as e:
            log(event="upstream_transport_error", operator=operator, endpoint=endpoint, error=str(e))
            return TransportError(None, TRANSPORT_CATEGORY, "NETWORK", f"Upstream unreachable: {e}", sent=enriched)

        elapsed_ms = int((time.time() - start) * 1000)
        try:
            payload = resp.json()
        except ValueError:
            payload = None

        log(
            event="upstream_call",
            operator=operator,
            endpoint=endpoint,
            statusCode=int(resp.status_code),
            elapsedMs=elapsed_ms,
        )

        if resp.status_code >= 400:
            err = (payload or {}).get("error") if isinstance(payload, dict) else None
            if isinstance(err, dict):
                code = str(err.get("code") or "")
                return TransportError(
                    int(resp.status_code),
                    str(err.get("category") or ""),
                    code,
                    str(err.get("message") or ""),
                    retryable=is_retryable(code),
                    sent=enriched,
                )
            return TransportError(
                int(resp.status_code), TRANSPORT_CATEGORY, f"HTTP_{resp.status_code}",
                (resp.text or "")[:300], sent=enriched,
            )

        if not isinstance(payload, dict):
            return TransportError(
                int(resp.status_code), TRANSPORT_CATEGORY, "INVALID_PAYLOAD",
                "Upstream returned a non-JSON body", sent=enriched,
            )
        return RawResponse(int(resp.status_code), payload, sent=enriched)

    # ---------------------------------------------------------------------
    # convenience operations
    # ---------------------------------------------------------------------
    def generate_code(self, operator: str, msisdn: str, campaign: str, merchant: str, **extra) -> UpstreamOutcome:
        params = {"msisdn": msisdn, "campaign": campaign, "merchant": merchant}
        params.update(extra)
        params.setdefault("template", "subscription")
        return self.call("pin", params, operator)

    def create_subscription(self, operator: str, msisdn: str, campaign: str, merchant: str, **extra) -> UpstreamOutcome:
        params = {"msisdn": msisdn, "campaign": campaign, "merchant": merchant}
        params.update(extra)
        return self.call("subscription.create", params, operator)

    def charge(self, operator: str, msisdn: str, campaign: str, merchant: str,
               amount, currency: str, **extra) -> UpstreamOutcome:
        params = {"msisdn": msisdn, "campaign": campaign, "merchant": merchant,
                  "amount": amount, "currency": currency}
        params.update(extra)
        return self.call("charge", params, operator)

    def send_message(self, operator: str, msisdn: str, text: str, **extra) -> UpstreamOutcome:
        params = {"msisdn": msisdn, "text": text}
        params.update(extra)
        return self.call("sms", params, operator)

    def delete_subscription(self, operator: str, uuid: str, **extra) -> UpstreamOutcome:
        params = {"uuid": uuid}
        params.update(extra)
        return self.call("subscription.delete", params, operator)

    def subscription_status(self, operator: str, uuid: Optional[str] = None,
                            msisdn: Optional[str] = None, **extra) -> UpstreamOutcome:
        params = {"uuid": uuid, "msisdn": msisdn}
        params.update(extra)
        return self.call("subscription.status", params, operator)

    def resume_subscription(self, operator: str, uuid: str, **extra) -> UpstreamOutcome:
        params = {"uuid": uuid}
        params.update(extra)
        return self.call("subscription.resume", params, operator)

    def apply_trial(self, operator: str, uuid: str, trial_days: int, **extra) -> UpstreamOutcome:
        params = {"uuid": uuid, "trial_days": int(trial_days)}
        params.update(extra)
        return self.call("subscription.coupon", params, operator)

    def build_checkout_url(self, operator: str, params: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str]]:
        """
        Redirect target for the operator-hosted checkout page.
        Returns (url, correlator, transaction_id); the ids are None when not used.
        """
        cap = capabilities_of(operator)
        base = checkout_base_url(operator, self.environment)
        if self.environment == "sandbox":
            base = base.replace("checkout.sla-alacrity.com", "checkout-sandbox.sla-alacrity.com")

        query = {
            "merchant": params.get("merchant"),
            "service": params.get("campaign") or params.get("service"),
            "redirect_url": params.get("redirect_url"),
        }

        correlator = None
        if params.get("correlator") or cap.requires_correlation_id:
            correlator = params.get("correlator") or generate_correlator()
            query["correlator"] = correlator

        if params.get("price") is not None:
            query["price"] = params["price"]

        transaction_id = None
        if params.get("transaction_id") or cap.requires_transaction_id:
            transaction_id = params.get("transaction_id") or generate_transaction_id()
            query["transaction_id"] = transaction_id

        if params.get("language"):
            query["language"] = params["language"]

        query = {k: v for k, v in query.items() if v is not None}
        return f"{base}?{urlencode(query)}", correlator, transaction_id
