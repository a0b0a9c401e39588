# Flow state constants and fixed validity windows

# Only live records are stored. Verified, expired, exhausted and exchanged
# records are deleted, so those states have no stored value.

# PIN flow: a code is outstanding and may be verified
CODE_ISSUED = "CODE_ISSUED"

# Checkout flow: redirect issued, waiting for the returned token
SESSION_CREATED = "SESSION_CREATED"


# FlowReference kinds (out-of-band resolution)
ASYNC_WEBHOOK_PENDING = "async-webhook-pending"
ANONYMOUS_REFERENCE_PENDING = "anonymous-reference-pending"
ASYNC_NOTIFICATION_PENDING = "async-notification-pending"


# Validity windows, seconds
CODE_TTL_SEC = 120
CHECKOUT_SESSION_TTL_SEC = 10 * 60
FLOW_REFERENCE_TTL_SEC = 30 * 60

# Expired PendingCode records stay readable this long so a late verify reports CodeExpired
CODE_RETENTION_SEC = 5 * 60

MAX_CODE_ATTEMPTS = 3

# Removed subscriptions may be resumed within this many days
RESUME_GRACE_DAYS = 30
