"""
storage/errors.py

Exception taxonomy for the counseling platform.

Every error is a caller-input or state-precondition violation raised
synchronously by :class:`storage.counseling_manager.CounselingPlatform`.  None of them
are retried by the platform itself; state is never partially mutated when one
is raised.
"""


class PlatformError(Exception):
    """Base class for all counseling platform errors."""


# ---------------------------------------------------------------------------
# Profile existence
# ---------------------------------------------------------------------------


class AlreadyRegistered(PlatformError):
    def __init__(self, identity: str):
        super().__init__("Patient already registered")
        self.identity = identity


class NotRegistered(PlatformError):
    def __init__(self, identity: str):
        super().__init__("Patient not registered")
        self.identity = identity


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class OutOfRange(PlatformError, ValueError):
    """A numeric input fell outside its documented closed interval."""

    def __init__(self, field: str, low: int, high: int):
        super().__init__(f"{field} must be {low}-{high}")
        self.field = field
        self.low = low
        self.high = high


class InvalidSessionType(PlatformError, ValueError):
    def __init__(self):
        super().__init__("Invalid session type")


# ---------------------------------------------------------------------------
# Scheduling / session state
# ---------------------------------------------------------------------------


class NoSlotAvailable(PlatformError):
    def __init__(self, next_available_time: int):
        super().__init__("No session slots available")
        self.next_available_time = next_available_time


class SessionNotFound(PlatformError, LookupError):
    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionNotActive(PlatformError):
    def __init__(self, session_id: int):
        super().__init__("Session not active")
        self.session_id = session_id


class AlreadyCompleted(PlatformError):
    def __init__(self, session_id: int):
        super().__init__("Session already completed")
        self.session_id = session_id


class Unauthorized(PlatformError, PermissionError):
    """The caller lacks the identity or role required for the operation."""


# ---------------------------------------------------------------------------
# Encryption capability
# ---------------------------------------------------------------------------


class CapabilityError(PlatformError):
    """
    A ciphertext handle could not be granted, stored or decrypted.

    Raised instead of letting an unusable handle be persisted.
    """
