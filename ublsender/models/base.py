"""
Declarative base and shared columns for the delivery tables.
"""
from datetime import datetime
from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for file_deliveries and outbox_messages."""
    pass


class TimestampMixin:
    """
    Server-side created_at / updated_at.

    updated_at moves on every status change; the reconciliation sweep and the
    outbox relay use these columns to find rows that have been left behind.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
