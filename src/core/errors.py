"""
Error taxonomy shared by the proxy service and the training log client.

Three families, each converted at the call boundary:
- ParameterValidationError: caller sent something incomplete or malformed (HTTP 400)
- UpstreamServiceError: Sheets or Firestore call failed (HTTP 500, message echoed)
- InitializationError: a client could not be constructed (logged, feature inert)
"""


class ParameterValidationError(ValueError):
    """Raised when a required field is missing or malformed."""
    pass


class UpstreamServiceError(Exception):
    """Raised when an external API (Sheets, Firestore) call fails."""
    pass


class InitializationError(Exception):
    """Raised when an external client cannot be initialized."""
    pass
