# Static vocabulary of the remote billing API: endpoints, error catalogue, statuses.

ENDPOINTS = {
    "subscription.create": "subscription/create",
    "subscription.delete": "subscription/delete",
    "subscription.status": "subscription/status",
    "subscription.resume": "subscription/resume",
    "subscription.coupon": "subscription/coupon",
    "charge": "charge",
    "pin": "pin",
    "sms": "sms",
}

ERROR_CATEGORIES = {
    "Authorization": {
        "1001": "Basic Auth required. Invalid credentials",
        "1002": "IP not whitelisted",
        "1003": "Service not approved for operator",
    },
    "PIN API": {
        "3001": "PIN sending failed",
        "3002": "PIN expired",
        "3003": "Invalid MSISDN format",
        "3004": "PIN generation limit exceeded",
    },
    "Subscription API": {
        "4001": "Subscription already exists",
        "4002": "Invalid campaign ID",
        "4003": "Invalid merchant ID",
        "4004": "Free trial not approved",
        "4005": "Maximum subscriptions reached",
    },
    "Charge API": {
        "5001": "Charge failed",
        "5002": "Invalid amount",
        "5003": "Daily limit exceeded",
        "5004": "Monthly limit exceeded",
    },
    "SMS API": {
        "8001": "SMS sending failed",
        "8002": "Invalid message format",
        "8003": "SMS not supported for operator",
    },
}

# code issuance, code expiry, charge issuance, message issuance
RETRYABLE_CODES = {"3001", "3002", "5001", "8001"}

SUGGESTED_ACTIONS = {
    "1001": "Check API credentials",
    "1002": "Whitelist your IP address in the Alacrity portal",
    "1003": "Ensure service is approved for this operator",
    "3001": "Retry PIN generation",
    "3002": "Generate new PIN (previous expired)",
    "3004": "Wait before requesting new PIN",
    "4001": "Check if subscription already exists",
    "4004": "Enable free trial in service settings",
    "5003": "Daily limit reached, retry tomorrow",
    "5004": "Monthly limit reached",
    "8003": "SMS not supported for {operator}",
}

DEFAULT_SUGGESTED_ACTION = "Contact support"

# category used for failures that never reached the vendor
TRANSPORT_CATEGORY = "Transport"


def describe_error(category, code) -> str:
    return ERROR_CATEGORIES.get(str(category or ""), {}).get(str(code or ""), "Unknown error")


def is_retryable(code) -> bool:
    return str(code or "") in RETRYABLE_CODES


def suggested_action(code, operator: str) -> str:
    tmpl = SUGGESTED_ACTIONS.get(str(code or ""))
    if tmpl is None:
        return DEFAULT_SUGGESTED_ACTION
    return tmpl.format(operator=operator)
