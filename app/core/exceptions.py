"""
Exception classes for the call-stalling service.
"""


class PleaseHoldError(Exception):
    """Base exception for all service errors."""
    pass


class SessionNotFoundError(PleaseHoldError):
    """Raised when a call session id is not present in the session store."""

    def __init__(self, session_id: str):
        super().__init__(f"Call session not found: {session_id}")
        self.session_id = session_id


class InvalidCallbackError(PleaseHoldError):
    """Raised when a webhook callback payload cannot be interpreted."""
    pass


class PhraseBankError(PleaseHoldError):
    """Raised when a phrase bank is empty or malformed."""
    pass
