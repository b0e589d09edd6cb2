# mqrgen/errors.py

ENTITLEMENT_STATUS = {
    "LIMIT_EXCEEDED": 429,
    "RATE_LIMIT_EXCEEDED": 429,
    "UPGRADE_REQUIRED": 403,
    "SUBSCRIPTION_INACTIVE": 403,
    "COUPON_NOT_USABLE": 403,
    "NO_ACTIVE_SUBSCRIPTION": 400,
}


class MqrgenError(Exception):
    """Base class for errors that map onto an HTTP response."""

    code = "ERROR"
    status = 400

    def __init__(self, message: str, code: str | None = None, status: int | None = None, **details):
        self.message = message
        if code:
            self.code = code
        if status:
            self.status = status
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, **self.details}


class ValidationError(MqrgenError):
    code = "VALIDATION_ERROR"
    status = 400


class NotFoundError(MqrgenError):
    code = "NOT_FOUND"
    status = 404


class AuthError(MqrgenError):
    code = "UNAUTHORIZED"
    status = 401


class ConflictError(MqrgenError):
    code = "CONFLICT"
    status = 409


class GatewayError(MqrgenError):
    code = "GATEWAY_ERROR"
    status = 502


class RenderError(MqrgenError):
    code = "RENDER_FAILED"
    status = 422


class EntitlementDenied(MqrgenError):
    """Raised when a plan, quota or coupon rule refuses an operation."""

    code = "ENTITLEMENT_DENIED"
    status = 403

    def __init__(self, message: str, code: str | None = None, status: int | None = None, **details):
        if code and status is None:
            status = ENTITLEMENT_STATUS.get(code)
        super().__init__(message, code=code, status=status, **details)

    @classmethod
    def from_entitlement(cls, entitlement) -> "EntitlementDenied":
        details = {
            key: value
            for key, value in entitlement.to_dict().items()
            if key not in ("allowed", "reason", "message")
        }
        return cls(entitlement.message or "Not allowed", code=entitlement.reason, **details)


class StaleVersionError(Exception):
    """A compare-and-swap save lost against a concurrent writer."""

    def __init__(self, entity: str, record_id: str, expected_version: int):
        self.entity = entity
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(f"{entity} {record_id} is no longer at version {expected_version}")


class DuplicateRecordError(Exception):
    """A unique key (code, external id, api key, transaction id) is already taken."""

    def __init__(self, entity: str, field: str, value):
        self.entity = entity
        self.field = field
        self.value = value
        super().__init__(f"{entity} with {field}={value!r} already exists")
