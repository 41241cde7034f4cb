# app/errors.py
"""
Error taxonomy shared by services and routers.

Services raise these; routers translate them into HTTP status codes.
Third-party exceptions (requests, twilio, openai, SQLAlchemy, OS errors)
are wrapped at the client / store boundary so the orchestrator only ever
sees the types below.
"""


class CallCenterError(Exception):
    """Base class for all domain errors."""


class ValidationError(CallCenterError):
    """Bad input; nothing was mutated."""


class NotFoundError(CallCenterError):
    """Unknown batch or lead."""


class ProviderError(CallCenterError):
    """The call provider rejected a request or could not be reached."""


class QualificationError(CallCenterError):
    """The qualification model failed or returned malformed output."""


class StoreError(CallCenterError):
    """Batch persistence failed; the operation is not committed."""
