# errors.py


class RosterError(Exception):
    """Base class for failures reported back to API callers."""
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(RosterError):
    status_code = 400


class AuthError(RosterError):
    status_code = 401


class StoreError(RosterError):
    status_code = 503


class ExtractionError(RosterError):
    status_code = 502
