"""
Error taxonomy for the matching and dispatch engine.

Partial push delivery failure is deliberately absent: it is counted in the
dispatch outcome, not raised.
"""


class DispatchError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, reason: str = "error"):
        super().__init__(message)
        self.message = message
        self.reason = reason


class ValidationError(DispatchError):
    """Malformed request input, rejected before any donor lookup."""

    def __init__(self, message: str):
        super().__init__(message, reason="validation_error")


class InvalidBloodGroup(ValidationError):
    def __init__(self, value):
        super().__init__(f"Invalid blood group: {value!r}")
        self.value = value


class StorageUnavailable(DispatchError):
    """Donor registry or notification store could not be reached."""

    def __init__(self, message: str):
        super().__init__(message, reason="storage_unavailable")


class MalformedDonorRecord(DispatchError):
    """A single donor document could not be decoded; skipped by the caller."""

    def __init__(self, message: str):
        super().__init__(message, reason="malformed_record")


class RegistrationFailure(DispatchError):
    """A push token upsert was not confirmed by the backend."""

    def __init__(self, message: str):
        super().__init__(message, reason="registration_failed")
