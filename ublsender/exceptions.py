"""
Error taxonomy for document delivery.

Every failure of schedule_delivery surfaces as one of these.
Callers must not blindly retry the ones with retryable = False.
"""


class DeliveryError(Exception):
    """Base class for delivery scheduling failures."""
    retryable = False


class MalformedInputError(DeliveryError):
    """Uploaded bytes are not a well-formed UBL document."""


class UnsupportedTypeError(DeliveryError):
    """Document type is not recognized or not supported yet."""

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(f"{document_type} is not supported yet")


class SeriesDetectionError(DeliveryError):
    """Invoice series could not be mapped to a document code."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Invalid serie, can not detect code for {document_id}")


class StorageError(DeliveryError):
    """Blob store upload/download failed."""
    retryable = True


class ChannelError(DeliveryError):
    """Publishing to the message channel failed."""
    retryable = True
