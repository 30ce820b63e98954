"""
errors.py - Error taxonomy shared by the client sync and payment modules.
"""

from typing import Optional


class MkulimaLinkError(Exception):
    """Base class for all MkulimaLink errors."""


class ValidationError(MkulimaLinkError):
    """Missing or malformed input. Never retried."""


class PersistenceError(MkulimaLinkError):
    """A write to the local durable store failed."""


class RemoteCallError(MkulimaLinkError):
    """A call to a remote service failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class TransportError(RemoteCallError):
    """Network unreachable, timeout, or retries exhausted."""


class RemoteRejection(RemoteCallError):
    """Well-formed request rejected by the counterparty (4xx)."""


class RemoteServerError(RemoteCallError):
    """Counterparty failed to process the request (5xx)."""


class GatewayUnreachable(TransportError):
    """Payment gateway could not be reached or kept failing."""


class GatewayRejected(RemoteRejection):
    """Payment gateway rejected the request."""


class VerificationFailure(MkulimaLinkError):
    """Callback signature did not match."""


class InvalidTransition(MkulimaLinkError):
    """Requested order or payment status change is not allowed."""


class OrderNotFound(MkulimaLinkError):
    pass


class ConcurrentUpdateError(MkulimaLinkError):
    """Optimistic update kept losing to concurrent writers."""
