"""Error taxonomy for runweave."""

PAYMENT_REQUIRED = "PAYMENT_REQUIRED"


class RunweaveError(Exception):
    """Base class for all runweave errors."""


class RunError(RunweaveError):
    """A failure of the remote run call."""

    def __init__(self, message: str, error_code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code


class TransientRunError(RunError):
    """Network or service hiccup that is worth retrying."""


class PaymentRequiredError(RunError):
    """Authorization or payment failure. Never retried automatically."""

    def __init__(
        self,
        message: str,
        error_code: str | None = PAYMENT_REQUIRED,
        status_code: int | None = None,
    ):
        super().__init__(message, error_code=error_code, status_code=status_code)


class RunFailedError(RunError):
    """Unclassified failure reported by the remote service."""


class RunCancelledError(RunweaveError):
    """The run was cancelled by the caller."""


class RunInProgressError(RunweaveError):
    """A run is already active on this controller."""


def is_payment_required(error: object) -> bool:
    """Check whether an exception or error output is a payment/authorization failure."""
    if isinstance(error, PaymentRequiredError):
        return True
    return getattr(error, "error_code", None) == PAYMENT_REQUIRED


def error_message(error: object, fallback: str = "Unknown error occurred") -> str:
    """Normalize an exception or error payload to a user-facing string."""
    if isinstance(error, str):
        return error or fallback
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    if isinstance(error, Exception) and str(error):
        return str(error)
    return fallback
