"""Document ingestion exceptions."""

from .base import BaseAppException


class InvalidDocumentError(BaseAppException):
    """Raised when an uploaded file is not a readable PDF."""

    def __init__(self, message: str = "Only PDF files are accepted"):
        super().__init__(message=message, status_code=400, error_code="INVALID_DOCUMENT")


class DocumentTooLargeError(BaseAppException):
    """Raised when an uploaded file exceeds the configured size limit."""

    def __init__(self, message: str = "File size exceeds limit"):
        super().__init__(message=message, status_code=413, error_code="DOCUMENT_TOO_LARGE")
