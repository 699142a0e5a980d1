"""
Exceptions raised by the contact reconciliation service.

Store failures and missing records are server-side faults; invalid input is
the caller's fault. Structural anomalies in stored links are not raised at all,
they are logged and recovered where the links are resolved.
"""

from typing import Any, Dict, Optional


class ContactServiceError(Exception):
    """Base exception for all contact service errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInputError(ContactServiceError):
    """Neither an email nor a phone number was supplied."""


class ContactNotFoundError(ContactServiceError):
    """A contact that must exist could not be read back from the store."""

    def __init__(self, contact_id: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Contact with id {contact_id} not found", details)
        self.contact_id = contact_id


class StoreUnavailableError(ContactServiceError):
    """Reading from or writing to the contact store failed."""
