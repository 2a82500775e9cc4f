"""
Outbox message model.

Written in the same transaction as its FileDelivery so the trigger message
can never be lost; the relay publishes pending rows to the channel.
"""
import uuid
from datetime import datetime
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from ublsender.models.base import Base, TimestampMixin


OUTBOX_PENDING = "pending"
OUTBOX_SENT = "sent"


class OutboxMessage(Base, TimestampMixin):
    """Pending (or already relayed) delivery trigger message."""
    __tablename__ = "outbox_messages"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    file_delivery_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("file_deliveries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    queue_name: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    delay_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OUTBOX_PENDING, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<OutboxMessage(id={self.id}, delivery={self.file_delivery_id}, status={self.status})>"
