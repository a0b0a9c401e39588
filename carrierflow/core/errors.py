class FlowError(Exception):
    """
    Base for every condition the engine rejects synchronously.
    Upstream-reported failures are not raised; they come back as normalized results.
    """
    code = "FLOW_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "retryable": self.retryable,
                "details": self.details,
            },
        }


class UnknownOperator(FlowError):
    code = "UNKNOWN_OPERATOR"
    http_status = 404


class UnsupportedProtocol(FlowError):
    code = "UNSUPPORTED_PROTOCOL"


class MissingAmount(FlowError):
    code = "MISSING_AMOUNT"
    http_status = 422


class MissingFraudToken(FlowError):
    code = "MISSING_FRAUD_TOKEN"
    http_status = 422


class MissingParameter(FlowError):
    code = "MISSING_PARAMETER"
    http_status = 422


class NoPendingCode(FlowError):
    code = "NO_PENDING_CODE"
    http_status = 404


class CodeExpired(FlowError):
    code = "CODE_EXPIRED"
    http_status = 410
    # a fresh code may be requested
    retryable = True


class AttemptsExhausted(FlowError):
    code = "ATTEMPTS_EXHAUSTED"
    http_status = 429


class SessionNotFound(FlowError):
    code = "SESSION_NOT_FOUND"
    http_status = 404


class OperatorDeleteUnsupported(FlowError):
    code = "OPERATOR_DELETE_UNSUPPORTED"


class AnonymousReferenceNotFound(FlowError):
    code = "ANONYMOUS_REFERENCE_NOT_FOUND"
    http_status = 404


class GracePeriodExceeded(FlowError):
    code = "GRACE_PERIOD_EXCEEDED"
    http_status = 409


class TrialUnsupported(FlowError):
    code = "TRIAL_UNSUPPORTED"


class LockUnavailable(FlowError):
    code = "LOCK_UNAVAILABLE"
    http_status = 409
    retryable = True


class UnsupportedOperation(FlowError):
    code = "UNSUPPORTED_OPERATION"


class InvalidCodeFormat(FlowError):
    code = "INVALID_CODE_FORMAT"
    http_status = 422
