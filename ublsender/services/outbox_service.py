"""
Outbox relay for delivery trigger messages.

FileDelivery rows and their OutboxMessage are committed together; this
service moves pending outbox rows onto the message channel and re-schedules
deliveries that were left behind.
"""
from datetime import timedelta
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ublsender.config import Settings, settings as default_settings
from ublsender.exceptions import ChannelError
from ublsender.logging_config import get_logger
from ublsender.models.delivery import FileDelivery, DeliveryStatus
from ublsender.models.outbox import OutboxMessage, OUTBOX_PENDING, OUTBOX_SENT
from ublsender.routes.metrics import track_outbox_published, track_outbox_publish_failed
from ublsender.services.channel import MessageChannel
from ublsender.services.delivery_service import DeliveryService, utcnow

logger = get_logger(component="outbox")


def new_outbox_message(delivery: FileDelivery, settings: Settings = default_settings) -> OutboxMessage:
    """Trigger message for a delivery; the payload is the delivery id only."""
    return OutboxMessage(
        file_delivery_id=delivery.id,
        queue_name=settings.SEND_FILE_QUEUE,
        payload=delivery.id,
        delay_ms=settings.MESSAGE_DELAY_MILLIS,
        status=OUTBOX_PENDING,
        attempts=0,
    )


class OutboxRelay:
    """Publishes outbox rows to the message channel."""

    def __init__(
        self,
        db: AsyncSession,
        channel: MessageChannel,
        settings: Settings = default_settings,
    ):
        self.db = db
        self.channel = channel
        self.settings = settings

    async def publish(self, message: OutboxMessage) -> bool:
        """
        Publish one outbox row and mark it sent.

        Returns:
            True if the row is now sent, False if publishing failed
            (the row stays pending for the next relay run)
        """
        message.attempts += 1
        try:
            await self.channel.publish(
                message.queue_name,
                message.payload,
                message.delay_ms,
                message_id=message.id,
            )
        except ChannelError as e:
            message.last_error = str(e)
            await self.db.commit()
            track_outbox_publish_failed()
            logger.warning(
                "outbox_publish_failed",
                outbox_id=message.id,
                file_delivery_id=message.file_delivery_id,
                attempts=message.attempts,
                error=str(e),
            )
            return False

        message.status = OUTBOX_SENT
        message.sent_at = utcnow()
        message.last_error = None
        await self.db.commit()
        track_outbox_published()
        logger.debug("outbox_sent", outbox_id=message.id, file_delivery_id=message.file_delivery_id)
        return True

    async def relay_pending(self, limit: int | None = None) -> int:
        """
        Publish pending rows older than the relay grace period.

        The grace period keeps the relay from racing the scheduler's own
        immediate publish. Rows are claimed with FOR UPDATE SKIP LOCKED so
        several relays can run side by side.

        Returns:
            Number of rows published
        """
        if limit is None:
            limit = self.settings.OUTBOX_RELAY_BATCH_SIZE
        cutoff = utcnow() - timedelta(seconds=self.settings.OUTBOX_RELAY_GRACE_SECONDS)
        stmt = (
            select(OutboxMessage)
            .where(
                OutboxMessage.status == OUTBOX_PENDING,
                OutboxMessage.created_at < cutoff,
            )
            .order_by(OutboxMessage.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.db.execute(stmt)
        messages = list(result.scalars().all())

        published = 0
        for message in messages:
            if await self.publish(message):
                published += 1

        if messages:
            logger.info("outbox_relayed", claimed=len(messages), published=published)
        return published

    async def reconcile_stuck(self, grace_seconds: int | None = None) -> int:
        """
        Re-schedule deliveries that no pending message will ever pick up.

        - SCHEDULED_TO_DELIVER past the grace period with no pending outbox row
          (message lost by the broker, or consumed while the record was locked)
        - DELIVERING past the claim timeout (worker died mid-delivery); reset
          to SCHEDULED_TO_DELIVER first

        Returns:
            Number of deliveries given a new outbox row
        """
        if grace_seconds is None:
            grace_seconds = self.settings.RECONCILE_GRACE_SECONDS
        deliveries = DeliveryService(self.db)

        scheduled = [
            d for d in await deliveries.find_stuck(DeliveryStatus.SCHEDULED_TO_DELIVER, grace_seconds)
            if not await self._has_pending(d.id)
        ]
        stale = await deliveries.find_stuck(
            DeliveryStatus.DELIVERING, self.settings.DELIVERY_CLAIM_TIMEOUT_SECONDS
        )

        for delivery in stale:
            delivery.delivery_status = DeliveryStatus.SCHEDULED_TO_DELIVER

        rescheduled = []
        for delivery in scheduled + stale:
            message = new_outbox_message(delivery, self.settings)
            self.db.add(message)
            rescheduled.append(message)
        await self.db.commit()

        for message in rescheduled:
            await self.publish(message)

        if rescheduled:
            logger.warning(
                "deliveries_reconciled",
                scheduled=len(scheduled),
                stale=len(stale),
            )
        return len(rescheduled)

    async def _has_pending(self, file_delivery_id: str) -> bool:
        stmt = select(OutboxMessage.id).where(
            OutboxMessage.file_delivery_id == file_delivery_id,
            OutboxMessage.status == OUTBOX_PENDING,
        )
        result = await self.db.execute(stmt)
        return result.first() is not None
