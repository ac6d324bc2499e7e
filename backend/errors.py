"""
Error taxonomy shared by the store, receipt ingestion and the HTTP layer.
Each error carries the HTTP status it is reported with.
"""


class TrackerError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class ValidationError(TrackerError):
    """Missing or malformed field, or a reference to a member/bill that does not exist."""
    status_code = 400


class ConflictError(TrackerError):
    """Unique constraint violation, e.g. a duplicate member email."""
    status_code = 409


class UnsupportedMediaError(TrackerError):
    status_code = 400


class PayloadTooLargeError(TrackerError):
    status_code = 400


class NotFoundError(TrackerError):
    status_code = 404


class StorageError(TrackerError):
    status_code = 500


class ReceiptStorageError(StorageError):
    """Writing a normalized receipt to the upload directory failed."""
