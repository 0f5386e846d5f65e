# bidsync/errors.py
from typing import Optional

class SyncError(Exception):
    """Base error for every rejected command."""
    fatal: bool = True

    def __init__(self, msg: str = ""):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return self.msg or self.__class__.__name__

class ValidationError(SyncError):
    """Missing or invalid input, caught before any network call."""

    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.ctx = ctx

    def __str__(self):
        base = super().__str__()
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base

class Unverified(SyncError):
    """Write blocked: the actor is not verified."""

class DuplicateBid(SyncError):
    """A pending/accepted bid already exists for this shipment and carrier."""

class NotPending(SyncError):
    """The bid is no longer pending."""

class AlreadyActive(SyncError):
    """An active subscription already exists."""

class AlreadyCancelled(SyncError):
    """Subscription is already cancelled; refresh instead of failing."""
    fatal = False

class Conflict(SyncError):
    """Server detected a race with another writer."""

class Transient(SyncError):
    """Network failure or timeout; the caller may retry."""

class Unknown(SyncError):
    """Unclassified server error, message kept verbatim."""

    def __init__(self, msg: str = "", status: Optional[int] = None):
        super().__init__(msg)
        self.status = status


def classify_http_error(status: int, message: str) -> SyncError:
    """Map an HTTP status and server message onto the error taxonomy."""
    text = (message or "").lower()

    if status in (408, 429, 599) or status >= 500:
        return Transient(message or f"HTTP {status}")
    if status == 403 and "verif" in text:
        return Unverified(message)
    if status == 409:
        if "bid" in text and "already" in text:
            return DuplicateBid(message)
        return Conflict(message)
    if status == 400:
        if "active subscription" in text or "already active" in text:
            return AlreadyActive(message)
        if "already cancelled" in text or "already canceled" in text:
            return AlreadyCancelled(message)
        if "only update pending" in text or "not pending" in text:
            return NotPending(message)
        if "already" in text and "bid" in text:
            return DuplicateBid(message)
    return Unknown(message, status=status)
