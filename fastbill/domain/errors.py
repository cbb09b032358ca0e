from typing import List, Optional


class BillingError(Exception):
    """Base class for errors raised by the billing core."""


class FinalizeBlocked(BillingError):
    """
    Raised when an invoice cannot be saved.
    Nothing has been written when this is raised.
    """

    EMPTY_CART = "empty_cart"
    NON_POSITIVE_TOTAL = "non_positive_total"
    SPLIT_MISMATCH = "split_mismatch"
    UNDEFINED_FIELDS = "undefined_fields"

    def __init__(self, reason: str, detail: str = "", paths: Optional[List[str]] = None):
        self.reason = reason
        self.detail = detail or reason
        self.paths = paths or []
        super().__init__(f"{reason}: {self.detail}")


class RemoteParserError(BillingError):
    """The remote intent parser failed (non-2xx response or network error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SessionNotFound(BillingError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Voice session not found: {session_id}")


class InvalidPick(BillingError):
    """Pick index outside the pending suggestion list (or nothing pending)."""

    def __init__(self, index, available: int):
        self.index = index
        self.available = available
        super().__init__(f"Invalid pick {index}: {available} suggestion(s) pending")
