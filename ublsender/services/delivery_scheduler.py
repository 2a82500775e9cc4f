"""
Delivery scheduler.

Turns an uploaded UBL document into a FileDelivery plus a trigger message
for the delivery worker:

    classify -> resolve endpoint -> derive filename -> upload
      -> [FileDelivery + OutboxMessage in one transaction] -> publish

Nothing is uploaded or persisted when the document is rejected. The upload
happens before the database write so no record ever points to a missing
file; a blob orphaned by a failed commit is left for retention cleanup.
"""
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ublsender.config import Settings, settings as default_settings
from ublsender.exceptions import (
    DeliveryError,
    MalformedInputError,
    SeriesDetectionError,
    UnsupportedTypeError,
)
from ublsender.logging_config import get_logger
from ublsender.models.delivery import FileDelivery, DeliveryStatus, DocumentType, FileType
from ublsender.routes.metrics import track_delivery_rejected, track_delivery_scheduled
from ublsender.services.channel import MessageChannel
from ublsender.services.filename import SeriesNotDetected, SeriesPolicy, derive_filename
from ublsender.services.outbox_service import OutboxRelay, new_outbox_message
from ublsender.services.storage_service import FileStorage
from ublsender.xml.content import read_content


# file_deliveries.custom_id column size
CUSTOM_ID_MAX_LENGTH = 255


def blob_key(file_delivery_id: str, filename: str) -> str:
    """Storage key of a delivery's document: {file_delivery_id}/{filename}."""
    return f"{file_delivery_id}/{filename}"


def resolve_server_url(document_type: DocumentType, settings: Settings = default_settings) -> str:
    """SUNAT endpoint for a document type; every type currently goes to the same URL."""
    return settings.DESTINATION_ENDPOINT


class DeliveryScheduler:
    """Schedules documents for asynchronous delivery to SUNAT."""

    def __init__(
        self,
        db: AsyncSession,
        storage: FileStorage,
        channel: MessageChannel,
        settings: Settings = default_settings,
        series_policy: SeriesPolicy | None = None,
    ):
        self.db = db
        self.storage = storage
        self.settings = settings
        self.series_policy = series_policy or SeriesPolicy.from_settings(settings)
        self.relay = OutboxRelay(db, channel, settings)

    async def schedule_delivery(self, content: bytes, custom_id: str | None = None) -> FileDelivery:
        """
        Validate, store and schedule a document for delivery.

        Args:
            content: Raw XML file
            custom_id: Caller correlation token (at most 255 characters), stored as-is

        Returns:
            Persisted FileDelivery in SCHEDULED_TO_DELIVER

        Raises:
            MalformedInputError: not a well-formed UBL document, or custom_id too long
            UnsupportedTypeError: document type is not supported
            SeriesDetectionError: invoice series is neither factura nor boleta
            StorageError: the file could not be uploaded
        """
        log = get_logger(custom_id=custom_id)
        try:
            document_type, content_model, filename = self._prepare(content, custom_id)
        except DeliveryError as e:
            track_delivery_rejected(type(e).__name__)
            log.info("document_rejected", reason=type(e).__name__, error=str(e))
            raise

        log = log.bind(filename=filename, document_type=document_type.value)
        server_url = resolve_server_url(document_type, self.settings)

        # one blob per record, resubmissions of the same document never share a file
        delivery_id = str(uuid.uuid4())
        try:
            file_id = await self.storage.upload(content, blob_key(delivery_id, filename), FileType.XML)
        except DeliveryError as e:
            track_delivery_rejected(type(e).__name__)
            raise

        delivery = FileDelivery(
            id=delivery_id,
            file_id=file_id,
            filename=filename,
            ruc=content_model.ruc,
            document_id=content_model.document_id,
            document_type=document_type,
            delivery_status=DeliveryStatus.SCHEDULED_TO_DELIVER,
            server_url=server_url,
            custom_id=custom_id,
        )
        try:
            self.db.add(delivery)
            await self.db.flush()
            message = new_outbox_message(delivery, self.settings)
            self.db.add(message)
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            log.error("delivery_persist_failed", file_id=file_id)
            raise

        await self.db.refresh(delivery)
        log = log.bind(file_delivery_id=delivery.id)
        track_delivery_scheduled(document_type.value)

        # A failed publish leaves the outbox row pending for the relay
        if not await self.relay.publish(message):
            log.warning("delivery_publish_deferred", outbox_id=message.id)

        log.info("delivery_scheduled", queue=message.queue_name, delay_ms=message.delay_ms)
        return delivery

    def _prepare(self, content: bytes, custom_id: str | None):
        """Classify the document and derive its filename; no side effects."""
        if custom_id is not None and len(custom_id) > CUSTOM_ID_MAX_LENGTH:
            raise MalformedInputError(f"customId is longer than {CUSTOM_ID_MAX_LENGTH} characters")

        content_model = read_content(content)

        document_type = DocumentType.from_value(content_model.document_type)
        if document_type is None:
            raise UnsupportedTypeError(content_model.document_type)

        match derive_filename(
            document_type,
            content_model.ruc,
            content_model.document_id,
            self.series_policy,
        ):
            case SeriesNotDetected(document_id=document_id):
                raise SeriesDetectionError(document_id)
            case str() as filename:
                return document_type, content_model, filename
