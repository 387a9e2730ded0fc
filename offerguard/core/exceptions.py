"""
offerguard Exception Hierarchy

All structural errors inherit from OfferGuardError for easy catching.

Business rejections are NOT exceptions. A fill that breaks a guardrail
yields a RejectionReason (offerguard.core.rejection). The classes below are
for malformed input, lifecycle misuse, I/O failures, and the deliberate
abort of a proof-sandboxed evaluation.
"""


class OfferGuardError(Exception):
    """Base exception for all offerguard errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(OfferGuardError):
    """Raised when input data is structurally invalid"""

    def __init__(self, message: str, errors: list = None, details: dict = None):
        super().__init__(message, details)
        self.errors = list(errors or [])

    def __str__(self):
        base = super().__str__()
        if self.errors:
            return f"{base}: " + "; ".join(self.errors)
        return base


class DecodeError(ValidationError):
    """Raised when a binary evaluation payload cannot be decoded"""
    pass


class LifecycleError(OfferGuardError):
    """Raised when an offer transition is not permitted"""
    pass


class OfferNotFoundError(LifecycleError):
    """Raised when an offer id is unknown to the store"""
    pass


class JournalError(OfferGuardError):
    """Raised when the receipt journal cannot be written or read"""
    pass


class GuardrailViolation(OfferGuardError):
    """
    Raised by enforce() when a fill breaks a guardrail.

    Carries the structured RejectionReason so callers never need to parse
    the message.
    """

    def __init__(self, reason):
        super().__init__(reason.message(), {"code": reason.code})
        self.reason = reason


class ProofAborted(GuardrailViolation):
    """Raised inside the proof sandbox; a rejected fill yields no commitment"""
    pass
