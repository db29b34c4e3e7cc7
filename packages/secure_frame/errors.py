"""
Frame-level error taxonomy.
"""


class ProtocolError(ValueError):
    """Frame is malformed (too short, bad message type, invalid node id)."""

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


class AuthenticationFailure(ValueError):
    """
    Frame failed authentication.

    `reason` is "tag_mismatch" or "replay"; callers treat both alike and the
    distinction only feeds diagnostics.
    """

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason
