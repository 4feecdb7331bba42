"""Credit operation errors.

Every failure of a credit operation is one of these. The HTTP layer turns
them into `{"detail": message, "kind": kind}` responses.
"""


class CreditError(Exception):
    """Base exception for credit operations."""
    kind = "internal"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class Unauthenticated(CreditError):
    """No caller identity present."""
    kind = "unauthenticated"
    status_code = 401


class PermissionDenied(CreditError):
    """Caller is known but lacks the required claim or role."""
    kind = "permission-denied"
    status_code = 403


class InvalidArgument(CreditError):
    """A required argument is missing or malformed."""
    kind = "invalid-argument"
    status_code = 400


class NotFound(CreditError):
    """The operation needs a balance record that does not exist."""
    kind = "not-found"
    status_code = 404


class ResourceExhausted(CreditError):
    """Consumption asked for more credits than the balance holds."""
    kind = "resource-exhausted"
    status_code = 429
