import base64

import httpx
import pytest
from arq import Retry

from ublsender.models.delivery import DeliveryStatus
from ublsender.services.delivery_scheduler import DeliveryScheduler
from ublsender.services.delivery_service import DeliveryService
from ublsender.services.sunat_client import SunatClient
from ublsender.worker import cdr_key, deliver_file, relay_outbox

from conftest import make_document


CDR = b"PK\x03\x04fake-cdr"

SEND_BILL_OK = (
    '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
    '<soap:Body><br:sendBillResponse xmlns:br="http://service.sunat.gob.pe">'
    f"<applicationResponse>{base64.b64encode(CDR).decode()}</applicationResponse>"
    "</br:sendBillResponse></soap:Body></soap:Envelope>"
).encode()

SEND_SUMMARY_OK = (
    '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
    '<soap:Body><br:sendSummaryResponse xmlns:br="http://service.sunat.gob.pe">'
    "<ticket>1585012345678</ticket>"
    "</br:sendSummaryResponse></soap:Body></soap:Envelope>"
).encode()

FAULT = (
    '<soap-env:Envelope xmlns:soap-env="http://schemas.xmlsoap.org/soap/envelope/">'
    "<soap-env:Body><soap-env:Fault>"
    "<faultcode>soap-env:Client.0151</faultcode>"
    "<faultstring>El nombre del archivo ZIP es incorrecto</faultstring>"
    "</soap-env:Fault></soap-env:Body></soap-env:Envelope>"
).encode()

SEND_BILL_BROKEN_CDR = (
    '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
    '<soap:Body><br:sendBillResponse xmlns:br="http://service.sunat.gob.pe">'
    "<applicationResponse>abc</applicationResponse>"
    "</br:sendBillResponse></soap:Body></soap:Envelope>"
).encode()


class FakeSunat:
    """Records requests and replays canned answers."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        status_code, body = answer
        return httpx.Response(status_code, content=body)


@pytest.fixture
def make_ctx(session_factory, storage, test_settings):
    def _make(sunat: FakeSunat, job_try: int = 1) -> dict:
        return {
            "session_factory": session_factory,
            "storage": storage,
            "sunat_client": SunatClient(test_settings, transport=httpx.MockTransport(sunat)),
            "job_try": job_try,
            "max_tries": test_settings.DELIVERY_MAX_TRIES,
        }
    return _make


async def schedule(db, storage, channel, test_settings, root="Invoice", document_id="F123-45678"):
    scheduler = DeliveryScheduler(db, storage, channel, test_settings)
    return await scheduler.schedule_delivery(make_document(root, document_id))


async def reload(session_factory, delivery_id):
    async with session_factory() as db:
        return await DeliveryService(db).get_by_id(delivery_id)


@pytest.mark.asyncio
async def test_delivers_invoice_and_stores_cdr(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings)
    sunat = FakeSunat((200, SEND_BILL_OK))

    result = await deliver_file(make_ctx(sunat), delivery.id)

    assert result["status"] == "delivered"
    assert result["cdr_file_id"] == f"{delivery.id}/R-20123456789-01-F123-45678.zip"
    assert storage.files[result["cdr_file_id"]] == CDR

    [request] = sunat.requests
    assert str(request.url) == test_settings.DESTINATION_ENDPOINT
    assert b"<ser:sendBill>" in request.content
    assert b"<fileName>20123456789-01-F123-45678.zip</fileName>" in request.content

    stored = await reload(session_factory, delivery.id)
    assert stored.delivery_status == DeliveryStatus.DELIVERED
    assert stored.cdr_file_id == cdr_key(stored)
    assert stored.sunat_status_code == "0"
    assert stored.attempt_count == 1


@pytest.mark.asyncio
async def test_summary_is_answered_with_ticket(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings, "VoidedDocuments", "RA-20200328-1")
    sunat = FakeSunat((200, SEND_SUMMARY_OK))

    result = await deliver_file(make_ctx(sunat), delivery.id)

    assert result["status"] == "delivered"
    assert b"<ser:sendSummary>" in sunat.requests[0].content
    stored = await reload(session_factory, delivery.id)
    assert stored.sunat_ticket == "1585012345678"
    assert stored.cdr_file_id is None


@pytest.mark.asyncio
async def test_sunat_fault_is_terminal(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings)

    result = await deliver_file(make_ctx(FakeSunat((500, FAULT))), delivery.id)

    assert result == {"status": "failed", "code": "0151"}
    stored = await reload(session_factory, delivery.id)
    assert stored.delivery_status == DeliveryStatus.DELIVERY_FAILED
    assert stored.sunat_status_code == "0151"
    assert "ZIP" in stored.error_message


@pytest.mark.asyncio
async def test_transport_error_is_retried(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings)
    sunat = FakeSunat(httpx.ConnectError("connection refused"), (200, SEND_BILL_OK))

    with pytest.raises(Retry):
        await deliver_file(make_ctx(sunat, job_try=1), delivery.id)

    stored = await reload(session_factory, delivery.id)
    assert stored.delivery_status == DeliveryStatus.SCHEDULED_TO_DELIVER
    assert "connection refused" in stored.error_message

    result = await deliver_file(make_ctx(sunat, job_try=2), delivery.id)
    assert result["status"] == "delivered"
    stored = await reload(session_factory, delivery.id)
    assert stored.attempt_count == 2
    assert stored.error_message is None


@pytest.mark.asyncio
async def test_last_try_marks_failed(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings)
    sunat = FakeSunat((503, b"Service Unavailable"))

    result = await deliver_file(make_ctx(sunat, job_try=test_settings.DELIVERY_MAX_TRIES), delivery.id)

    assert result["status"] == "failed"
    stored = await reload(session_factory, delivery.id)
    assert stored.delivery_status == DeliveryStatus.DELIVERY_FAILED
    assert "HTTP 503" in stored.error_message


@pytest.mark.asyncio
async def test_missing_file_is_retried(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings)
    storage.files.clear()
    sunat = FakeSunat((200, SEND_BILL_OK))

    with pytest.raises(Retry):
        await deliver_file(make_ctx(sunat), delivery.id)

    assert sunat.requests == []


@pytest.mark.asyncio
async def test_redelivered_message_sends_once(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings)
    sunat = FakeSunat((200, SEND_BILL_OK))

    first = await deliver_file(make_ctx(sunat), delivery.id)
    second = await deliver_file(make_ctx(sunat), delivery.id)

    assert first["status"] == "delivered"
    assert second == {"status": "skipped"}
    assert len(sunat.requests) == 1


@pytest.mark.asyncio
async def test_unknown_delivery_is_skipped(make_ctx):
    assert await deliver_file(make_ctx(FakeSunat((200, SEND_BILL_OK))), "missing-id") == {"status": "skipped"}


@pytest.mark.asyncio
async def test_relay_cron_uses_worker_channel(session_factory, channel, arq_redis):
    assert await relay_outbox({"session_factory": session_factory, "channel": channel}) == 0
    assert arq_redis.jobs == []


@pytest.mark.asyncio
async def test_unreadable_cdr_is_retried(db, storage, channel, test_settings, session_factory, make_ctx):
    delivery = await schedule(db, storage, channel, test_settings)

    with pytest.raises(Retry):
        await deliver_file(make_ctx(FakeSunat((200, SEND_BILL_BROKEN_CDR))), delivery.id)

    stored = await reload(session_factory, delivery.id)
    assert stored.delivery_status == DeliveryStatus.SCHEDULED_TO_DELIVER
    assert "applicationResponse" in stored.error_message


@pytest.mark.asyncio
async def test_unexpected_error_ends_the_claim(db, storage, channel, test_settings, session_factory, make_ctx):
    class BrokenSunat:
        async def send(self, *args, **kwargs):
            raise RuntimeError("boom")

    delivery = await schedule(db, storage, channel, test_settings)
    ctx = make_ctx(FakeSunat((200, SEND_BILL_OK)))
    ctx["sunat_client"] = BrokenSunat()

    with pytest.raises(RuntimeError):
        await deliver_file(ctx, delivery.id)

    stored = await reload(session_factory, delivery.id)
    assert stored.delivery_status == DeliveryStatus.DELIVERY_FAILED
    assert "boom" in stored.error_message
