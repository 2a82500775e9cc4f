"""
Delivery record service.

Read access for the API and the status transitions used by the delivery
worker. The scheduler creates records; everything else here belongs to the
consumer side.
"""
from datetime import datetime, timedelta, timezone
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from ublsender.models.delivery import FileDelivery, DeliveryStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryService:
    """Service for reading and transitioning file deliveries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, file_delivery_id: str) -> FileDelivery | None:
        """Get delivery by ID."""
        stmt = select(FileDelivery).where(FileDelivery.id == file_delivery_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def claim(self, file_delivery_id: str) -> FileDelivery | None:
        """
        Move a delivery from SCHEDULED_TO_DELIVER to DELIVERING.

        The conditional UPDATE makes redelivered trigger messages harmless:
        only one consumer can win the claim.

        Args:
            file_delivery_id: Delivery UUID

        Returns:
            FileDelivery if claimed, None if missing or not scheduled
        """
        stmt = (
            update(FileDelivery)
            .where(
                FileDelivery.id == file_delivery_id,
                FileDelivery.delivery_status == DeliveryStatus.SCHEDULED_TO_DELIVER,
            )
            .values(
                delivery_status=DeliveryStatus.DELIVERING,
                attempt_count=FileDelivery.attempt_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount != 1:
            return None

        delivery = await self.get_by_id(file_delivery_id)
        await self.db.refresh(delivery)
        return delivery

    async def mark_delivered(
        self,
        delivery: FileDelivery,
        sunat_status_code: str | None = None,
        sunat_ticket: str | None = None,
        cdr_file_id: str | None = None,
    ) -> FileDelivery:
        """Mark a delivery as DELIVERED with SUNAT's answer."""
        delivery.delivery_status = DeliveryStatus.DELIVERED
        delivery.sunat_status_code = sunat_status_code
        delivery.sunat_ticket = sunat_ticket
        delivery.cdr_file_id = cdr_file_id
        delivery.error_message = None
        delivery.delivered_at = utcnow()

        await self.db.commit()
        await self.db.refresh(delivery)
        return delivery

    async def mark_failed(
        self,
        delivery: FileDelivery,
        error_message: str,
        sunat_status_code: str | None = None,
    ) -> FileDelivery:
        """Mark a delivery as DELIVERY_FAILED (terminal)."""
        delivery.delivery_status = DeliveryStatus.DELIVERY_FAILED
        delivery.sunat_status_code = sunat_status_code
        delivery.error_message = error_message

        await self.db.commit()
        await self.db.refresh(delivery)
        return delivery

    async def release(self, delivery: FileDelivery, error_message: str) -> FileDelivery:
        """Give a claimed delivery back (DELIVERING -> SCHEDULED_TO_DELIVER) for a retry."""
        delivery.delivery_status = DeliveryStatus.SCHEDULED_TO_DELIVER
        delivery.error_message = error_message

        await self.db.commit()
        await self.db.refresh(delivery)
        return delivery

    async def find_stuck(
        self,
        status: DeliveryStatus,
        older_than_seconds: int,
        limit: int = 100,
    ) -> list[FileDelivery]:
        """Deliveries in status whose last update is older than the grace period."""
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        stmt = (
            select(FileDelivery)
            .where(
                FileDelivery.delivery_status == status,
                FileDelivery.updated_at < cutoff,
            )
            .order_by(FileDelivery.updated_at)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_by_custom_id(self, custom_id: str) -> list[FileDelivery]:
        """All deliveries submitted with a caller correlation token."""
        stmt = (
            select(FileDelivery)
            .where(FileDelivery.custom_id == custom_id)
            .order_by(FileDelivery.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
