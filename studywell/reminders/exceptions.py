"""
Exceptions raised inside the reminder pipeline
"""
from typing import Optional


class ReminderServiceError(Exception):
    """Base class for reminder pipeline errors"""


class FirebaseInitError(ReminderServiceError):
    """Credentials for Firestore/FCM could not be established at startup"""


class PreferenceDocumentError(ReminderServiceError):
    """A preference document could not be turned into a RecurrenceConfig"""

    def __init__(self, owner_id: str, reason: str):
        super().__init__(f"Invalid preference document for {owner_id}: {reason}")
        self.owner_id = owner_id
        self.reason = reason


class DeliveryError(ReminderServiceError):
    """Push delivery for one occurrence failed"""

    retryable = True

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class InvalidAddressError(DeliveryError):
    """The push address is permanently unusable; never retry it"""

    retryable = False


class TransientDeliveryError(DeliveryError):
    """Network/provider hiccup or timeout; the next sweep retries"""
