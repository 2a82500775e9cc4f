"""
Document API routes.

Upload a UBL document to schedule its delivery and poll the delivery record.
"""
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ublsender.database import get_db
from ublsender.exceptions import (
    ChannelError,
    DeliveryError,
    MalformedInputError,
    SeriesDetectionError,
    StorageError,
    UnsupportedTypeError,
)
from ublsender.models.delivery import FileDelivery
from ublsender.services.channel import MessageChannel
from ublsender.services.delivery_scheduler import DeliveryScheduler
from ublsender.services.delivery_service import DeliveryService
from ublsender.services.storage_service import FileStorage


router = APIRouter(prefix="/api/documents", tags=["documents"])


class FileDeliveryResponse(BaseModel):
    """Response model for a delivery record."""
    id: str
    file_id: str
    filename: str
    ruc: str
    document_id: str
    document_type: str
    delivery_status: str
    server_url: str
    custom_id: str | None = None
    sunat_ticket: str | None = None
    sunat_status_code: str | None = None
    error_message: str | None = None
    delivered_at: str | None = None
    created_at: str | None = None


def delivery_to_response(delivery: FileDelivery) -> FileDeliveryResponse:
    """Convert FileDelivery model to FileDeliveryResponse."""
    return FileDeliveryResponse(
        id=delivery.id,
        file_id=delivery.file_id,
        filename=delivery.filename,
        ruc=delivery.ruc,
        document_id=delivery.document_id,
        document_type=delivery.document_type.value,
        delivery_status=delivery.delivery_status.value,
        server_url=delivery.server_url,
        custom_id=delivery.custom_id,
        sunat_ticket=delivery.sunat_ticket,
        sunat_status_code=delivery.sunat_status_code,
        error_message=delivery.error_message,
        delivered_at=delivery.delivered_at.isoformat() if delivery.delivered_at else None,
        created_at=delivery.created_at.isoformat() if delivery.created_at else None,
    )


def get_storage(request: Request) -> FileStorage:
    return request.app.state.storage


def get_channel(request: Request) -> MessageChannel:
    return request.app.state.channel


def error_status(error: DeliveryError) -> int:
    """400 for documents that will never be accepted, 503 for retryable failures."""
    if isinstance(error, (MalformedInputError, UnsupportedTypeError, SeriesDetectionError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, (StorageError, ChannelError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post("", response_model=FileDeliveryResponse)
async def create_document(
    file: UploadFile = File(...),
    custom_id: str | None = Form(None, alias="customId"),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    channel: MessageChannel = Depends(get_channel),
):
    """
    Schedule an XML document for delivery to SUNAT.

    Returns the delivery record in SCHEDULED_TO_DELIVER; the actual send
    happens in the worker.
    """
    content = await file.read()

    scheduler = DeliveryScheduler(db, storage, channel)
    try:
        delivery = await scheduler.schedule_delivery(content, custom_id)
    except DeliveryError as e:
        raise HTTPException(
            status_code=error_status(e),
            detail={"error": type(e).__name__, "message": str(e), "retryable": e.retryable},
        )

    return delivery_to_response(delivery)


@router.get("/{file_delivery_id}", response_model=FileDeliveryResponse)
async def get_document(
    file_delivery_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Get a delivery record by ID."""
    delivery = await DeliveryService(db).get_by_id(file_delivery_id)

    if not delivery:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery not found"
        )

    return delivery_to_response(delivery)


@router.get("", response_model=list[FileDeliveryResponse])
async def list_documents_by_custom_id(
    custom_id: str = Query(..., alias="customId"),
    db: AsyncSession = Depends(get_db)
):
    """List deliveries submitted with a given customId."""
    deliveries = await DeliveryService(db).get_by_custom_id(custom_id)
    return [delivery_to_response(delivery) for delivery in deliveries]
