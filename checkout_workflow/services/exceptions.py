"""
Service Layer Exceptions

Custom exceptions for the CheckoutService and related orchestration logic.
"""


class SessionNotFoundError(Exception):
    """Raised when no running or stored session exists for an ID."""
    pass


class UnknownMachineError(Exception):
    """Raised when a session is requested for a machine that is not registered."""
    pass
