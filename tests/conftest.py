"""
Shared fixtures for ubl-sender tests.

Database is an in-memory SQLite (aiosqlite); the blob store and the Redis
side of the message channel are replaced with in-memory doubles so the real
FileStorage / MessageChannel wrappers are still exercised.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SENTRY_DSN", "")

from dataclasses import dataclass
from datetime import timedelta

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ublsender.config import Settings
from ublsender.models.base import Base
from ublsender.models.delivery import FileType
from ublsender.models.outbox import OutboxMessage  # noqa: F401
from ublsender.services.channel import MessageChannel
from ublsender.services.storage_service import FileStorage


CAC = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"

ROOT_NAMESPACES = {
    "Invoice": "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2",
    "CreditNote": "urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2",
    "DebitNote": "urn:oasis:names:specification:ubl:schema:xsd:DebitNote-2",
    "VoidedDocuments": "urn:sunat:names:specification:ubl:peru:schema:xsd:VoidedDocuments-1",
    "SummaryDocuments": "urn:sunat:names:specification:ubl:peru:schema:xsd:SummaryDocuments-1",
}


def make_document(
    root: str = "Invoice",
    document_id: str = "F123-45678",
    ruc: str = "20123456789",
    ubl21: bool = True,
) -> bytes:
    """Minimal UBL document with just the fields the classifier reads."""
    namespace = ROOT_NAMESPACES.get(root, f"urn:example:{root}")
    if ubl21:
        supplier = (
            "<cac:AccountingSupplierParty><cac:Party><cac:PartyIdentification>"
            f'<cbc:ID schemeID="6">{ruc}</cbc:ID>'
            "</cac:PartyIdentification></cac:Party></cac:AccountingSupplierParty>"
        )
    else:
        supplier = (
            "<cac:AccountingSupplierParty>"
            f"<cbc:CustomerAssignedAccountID>{ruc}</cbc:CustomerAssignedAccountID>"
            "<cbc:AdditionalAccountID>6</cbc:AdditionalAccountID>"
            "</cac:AccountingSupplierParty>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<{root} xmlns="{namespace}" xmlns:cac="{CAC}" xmlns:cbc="{CBC}">'
        "<cbc:UBLVersionID>2.1</cbc:UBLVersionID>"
        f"<cbc:ID>{document_id}</cbc:ID>"
        f"{supplier}"
        f"</{root}>"
    ).encode("utf-8")


class InMemoryStorage(FileStorage):
    """Dict-backed blob store; set fail=True to make every call raise."""

    def __init__(self):
        super().__init__(timeout=1.0)
        self.files: dict[str, bytes] = {}
        self.uploads: list[tuple[str, FileType]] = []
        self.fail = False
        self.return_empty = False

    def _put(self, content, key, file_type):
        if self.fail:
            raise OSError("disk unavailable")
        self.uploads.append((key, file_type))
        if self.return_empty:
            return ""
        self.files[key] = content
        return key

    def _get(self, file_id):
        if self.fail:
            raise OSError("disk unavailable")
        if file_id not in self.files:
            raise FileNotFoundError(file_id)
        return self.files[file_id]


@dataclass
class EnqueuedJob:
    job_id: str
    function: str
    args: tuple
    queue_name: str
    defer_by: timedelta


class FakeArqRedis:
    """Records enqueue_job calls the way ArqRedis would accept them."""

    def __init__(self):
        self.jobs: list[EnqueuedJob] = []
        self.fail = False

    async def enqueue_job(self, function, *args, _job_id=None, _queue_name=None, _defer_by=None):
        if self.fail:
            raise RedisConnectionError("redis is down")
        if _job_id is not None and any(job.job_id == _job_id for job in self.jobs):
            return None
        job = EnqueuedJob(
            job_id=_job_id or f"job-{len(self.jobs) + 1}",
            function=function,
            args=args,
            queue_name=_queue_name,
            defer_by=_defer_by,
        )
        self.jobs.append(job)
        return job

    async def aclose(self):
        pass


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        DESTINATION_ENDPOINT="https://sunat.test/billService",
        SEND_FILE_QUEUE="send-file-queue",
        MESSAGE_DELAY_MILLIS=5000,
        DELIVERY_MAX_TRIES=3,
        DELIVERY_RETRY_DELAY_SECONDS=1,
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def arq_redis() -> FakeArqRedis:
    return FakeArqRedis()


@pytest.fixture
def channel(arq_redis) -> MessageChannel:
    return MessageChannel(arq_redis, timeout=1.0)
