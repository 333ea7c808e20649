"""
Game Engine Exceptions
"""


class RuleViolation(Exception):
    """
    Raised by a transition when a move is not legal in the current state.

    The transaction seam turns it into a ``success=False`` result before
    anything is written, so callers never see it directly.
    """

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


class UnknownActionError(ValueError):
    """Raised when a transport event name is not a known action kind."""
