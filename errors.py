"""
Error taxonomy shared by the API, the booking writer and the background paths.
"""


class CareOpsError(Exception):
    """Base error. status_code is the HTTP-equivalent surfaced by the API."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CareOpsError):
    status_code = 400


class NotFoundError(CareOpsError):
    status_code = 404


class ConflictError(CareOpsError):
    status_code = 409


class PersistenceError(CareOpsError):
    status_code = 500


class ExternalDeliveryFailure(CareOpsError):
    """A notification gateway failed. Logged, never surfaced to the end user."""
    status_code = 502

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel
