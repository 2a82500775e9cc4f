"""
ARQ delivery worker for ubl-sender.

Consumes trigger messages from the send-file queue and forwards documents to
SUNAT. Also runs the outbox relay and the reconciliation sweep on cron.

Run with: arq ublsender.worker.WorkerSettings
"""
from arq import Retry, cron
from arq.connections import RedisSettings

from ublsender.config import settings
from ublsender.database import AsyncSessionLocal
from ublsender.exceptions import StorageError
from ublsender.logging_config import get_logger
from ublsender.models.delivery import FileDelivery, FileType
from ublsender.routes.metrics import (
    track_delivery_completed,
    track_delivery_failed,
    track_delivery_retry,
    track_delivery_skipped,
)
from ublsender.sentry_config import capture_exception, configure_sentry
from ublsender.services.channel import MessageChannel
from ublsender.services.delivery_service import DeliveryService
from ublsender.services.outbox_service import OutboxRelay
from ublsender.services.storage_service import create_storage
from ublsender.services.sunat_client import SunatClient, SunatResponse, SunatTransportError

logger = get_logger(component="worker")


def cdr_key(delivery: FileDelivery) -> str:
    """Blob key of the CDR SUNAT returns for a delivery, next to the document."""
    stem = delivery.filename.rsplit(".", 1)[0]
    return f"{delivery.id}/R-{stem}.zip"


async def _record_answer(
    deliveries: DeliveryService,
    delivery: FileDelivery,
    answer: SunatResponse,
    storage,
) -> dict:
    document_type = delivery.document_type.value

    if not answer.success:
        await deliveries.mark_failed(
            delivery,
            error_message=answer.fault_message or "Rejected by SUNAT",
            sunat_status_code=answer.fault_code,
        )
        track_delivery_failed(document_type)
        return {"status": "failed", "code": answer.fault_code}

    cdr_file_id = None
    if answer.cdr is not None:
        # SUNAT already accepted the document, a lost CDR must not trigger a resend
        try:
            cdr_file_id = await storage.upload(answer.cdr, cdr_key(delivery), FileType.ZIP)
        except StorageError as e:
            logger.warning("cdr_not_stored", file_delivery_id=delivery.id, error=str(e))

    await deliveries.mark_delivered(
        delivery,
        sunat_status_code="0",
        sunat_ticket=answer.ticket,
        cdr_file_id=cdr_file_id,
    )
    track_delivery_completed(document_type)
    return {"status": "delivered", "ticket": answer.ticket, "cdr_file_id": cdr_file_id}


async def deliver_file(ctx: dict, file_delivery_id: str) -> dict:
    """
    Deliver one document to SUNAT.

    Safe to run more than once for the same id: only the run that claims the
    delivery (SCHEDULED_TO_DELIVER -> DELIVERING) sends anything.
    """
    job_try = ctx.get("job_try", 1)
    max_tries = ctx.get("max_tries", settings.DELIVERY_MAX_TRIES)
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    storage = ctx["storage"]
    sunat = ctx["sunat_client"]

    log = get_logger(file_delivery_id=file_delivery_id, attempt=job_try, max_tries=max_tries)

    async with session_factory() as db:
        deliveries = DeliveryService(db)
        delivery = await deliveries.claim(file_delivery_id)

        if delivery is None:
            track_delivery_skipped()
            log.info("delivery_skipped", reason="not scheduled")
            return {"status": "skipped"}

        log = log.bind(filename=delivery.filename, document_type=delivery.document_type.value)
        log.info("delivery_claimed", server_url=delivery.server_url)

        try:
            content = await storage.download(delivery.file_id)
            answer = await sunat.send(
                delivery.server_url,
                delivery.filename,
                content,
                summary=delivery.document_type.is_summary,
            )
            result = await _record_answer(deliveries, delivery, answer, storage)
        except (SunatTransportError, StorageError) as e:
            error_message = str(e)

            if job_try >= max_tries:
                capture_exception(e)
                await deliveries.mark_failed(delivery, error_message=error_message)
                track_delivery_failed(delivery.document_type.value)
                log.error("delivery_failed", error=error_message)
                return {"status": "failed", "error": error_message}

            await deliveries.release(delivery, error_message=error_message)
            track_delivery_retry(delivery.document_type.value)
            defer = settings.DELIVERY_RETRY_DELAY_SECONDS * job_try
            log.warning("delivery_retry", error=error_message, defer_seconds=defer)
            raise Retry(defer=defer)
        except Exception as e:
            # a crashed send ends the delivery; the sweep must not resend it
            capture_exception(e)
            await deliveries.mark_failed(delivery, error_message=f"Unexpected error: {e}")
            track_delivery_failed(delivery.document_type.value)
            log.exception("delivery_crashed")
            raise

        log.info("delivery_finished", **result)
        return result


async def relay_outbox(ctx: dict) -> int:
    """Cron: publish outbox rows the scheduler could not publish itself."""
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    async with session_factory() as db:
        return await OutboxRelay(db, ctx["channel"], settings).relay_pending()


async def reconcile_deliveries(ctx: dict) -> int:
    """Cron: re-schedule deliveries stuck without a pending message."""
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    async with session_factory() as db:
        return await OutboxRelay(db, ctx["channel"], settings).reconcile_stuck()


async def startup(ctx: dict):
    """Build the collaborators shared by every job in this worker process."""
    configure_sentry()
    ctx["session_factory"] = AsyncSessionLocal
    ctx["storage"] = create_storage(settings)
    ctx["sunat_client"] = SunatClient(settings)
    ctx["channel"] = MessageChannel.from_settings(settings)
    logger.info("worker_started", queue=settings.SEND_FILE_QUEUE)


async def shutdown(ctx: dict):
    channel = ctx.get("channel")
    if channel is not None:
        await channel.close()
    logger.info("worker_stopped")


# Register functions for ARQ
ARQ_FUNCTIONS = [
    deliver_file,
]


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq ublsender.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    queue_name = settings.SEND_FILE_QUEUE
    functions = ARQ_FUNCTIONS
    cron_jobs = [
        cron(relay_outbox, second={0, 30}, run_at_startup=True),
        cron(reconcile_deliveries, minute=set(range(0, 60, 5))),
    ]
    on_startup = startup
    on_shutdown = shutdown
    job_timeout = 300
    max_tries = settings.DELIVERY_MAX_TRIES
