"""
File delivery model.

One row per document submitted to SUNAT. Created by the scheduler in
SCHEDULED_TO_DELIVER; only the delivery worker changes its status afterwards.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from ublsender.models.base import Base, TimestampMixin


class DocumentType(str, enum.Enum):
    """Supported UBL documents, valued by their root element name."""
    INVOICE = "Invoice"
    CREDIT_NOTE = "CreditNote"
    DEBIT_NOTE = "DebitNote"
    VOIDED_DOCUMENT = "VoidedDocuments"
    SUMMARY_DOCUMENT = "SummaryDocuments"

    @classmethod
    def from_value(cls, value: str) -> "DocumentType | None":
        """Look up a root element name; None when it is not supported."""
        for document_type in cls:
            if document_type.value == value:
                return document_type
        return None

    @property
    def is_summary(self) -> bool:
        """Summary-like documents are sent with sendSummary and answered with a ticket."""
        return self in (DocumentType.VOIDED_DOCUMENT, DocumentType.SUMMARY_DOCUMENT)


class DeliveryStatus(str, enum.Enum):
    """Delivery status enum."""
    SCHEDULED_TO_DELIVER = "SCHEDULED_TO_DELIVER"
    DELIVERING = "DELIVERING"
    DELIVERED = "DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"


class FileType(str, enum.Enum):
    """Content kinds kept in the blob store."""
    XML = "application/xml"
    ZIP = "application/zip"

    @property
    def extension(self) -> str:
        return "xml" if self is FileType.XML else "zip"


class FileDelivery(Base, TimestampMixin):
    """
    Delivery record for a single document.

    file_id, filename, ruc, document_id, document_type, server_url and
    custom_id never change after creation.
    """
    __tablename__ = "file_deliveries"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    file_id: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ruc: Mapped[str] = mapped_column(String(11), nullable=False, index=True)
    document_id: Mapped[str] = mapped_column(String(50), nullable=False)
    document_type: Mapped[DocumentType] = mapped_column(
        SQLEnum(DocumentType, native_enum=False),
        nullable=False
    )
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, native_enum=False),
        nullable=False,
        default=DeliveryStatus.SCHEDULED_TO_DELIVER,
        index=True
    )
    server_url: Mapped[str] = mapped_column(String(255), nullable=False)
    custom_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Written by the delivery worker
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    sunat_ticket: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sunat_status_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cdr_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<FileDelivery(id={self.id}, filename={self.filename}, status={self.delivery_status})>"
