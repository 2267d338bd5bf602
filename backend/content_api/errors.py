"""Error taxonomy shared by services and the HTTP layer.

Services raise these exceptions; `main.py` registers one handler that
renders every `ApiError` into the JSON envelope
`{"status": <code>, "error": <kind>, "msg": <message>}`.
"""


class ApiError(Exception):
    """Base class for errors that map onto a caller-facing response."""
    status_code = 500
    kind = "internal"

    def __init__(self, msg: str, *, scope: str = ""):
        super().__init__(msg)
        self.msg = msg
        self.scope = scope


class ValidationError(ApiError):
    """Malformed or missing input."""
    status_code = 400
    kind = "validation"


class AuthTokenError(ApiError):
    """Missing, malformed, wrongly signed or expired bearer token."""
    status_code = 401
    kind = "unauthorized"


class TokenInvalidError(AuthTokenError):
    pass


class TokenExpiredError(AuthTokenError):
    pass


class ForbiddenError(ApiError):
    """Valid identity, but missing credential or not the owner."""
    status_code = 403
    kind = "forbidden"


class NotFoundError(ApiError):
    status_code = 404
    kind = "not_found"


class UpstreamError(ApiError):
    """Database or object-store failure. The message is always generic."""
    status_code = 500
    kind = "upstream"
