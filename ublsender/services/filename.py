"""
Filename derivation for documents sent to SUNAT.

The filename is what SUNAT sees (and names the stored blob), so
derive_filename must stay deterministic: same (type, ruc, document_id) -> same name.
"""
import re
from dataclasses import dataclass

from ublsender.config import Settings, settings as default_settings
from ublsender.exceptions import UnsupportedTypeError
from ublsender.models.delivery import DocumentType


FACTURA_CODE = "01"
BOLETA_CODE = "03"
CREDIT_NOTE_CODE = "07"
DEBIT_NOTE_CODE = "08"


@dataclass(frozen=True)
class SeriesPolicy:
    """Patterns that map an invoice series to its document code."""
    factura: re.Pattern
    boleta: re.Pattern

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "SeriesPolicy":
        return cls(
            factura=re.compile(settings.FACTURA_SERIES_PATTERN),
            boleta=re.compile(settings.BOLETA_SERIES_PATTERN),
        )


@dataclass(frozen=True)
class SeriesNotDetected:
    """An invoice whose series matches neither factura nor boleta."""
    document_id: str


def invoice_code(document_id: str, policy: SeriesPolicy) -> str | None:
    """Return 01 (factura) or 03 (boleta), None when the series is unknown."""
    if policy.factura.search(document_id):
        return FACTURA_CODE
    if policy.boleta.search(document_id):
        return BOLETA_CODE
    return None


def derive_filename(
    document_type: DocumentType,
    ruc: str,
    document_id: str,
    policy: SeriesPolicy,
) -> str | SeriesNotDetected:
    """
    Compute the canonical filename of a document.

    Returns:
        "{ruc}-{code}-{document_id}.xml" for coded types,
        "{ruc}-{document_id}.xml" for voided/summary documents, or
        SeriesNotDetected when an invoice series can not be classified.

    Raises:
        UnsupportedTypeError: document_type is not a DocumentType
    """
    match document_type:
        case DocumentType.INVOICE:
            code = invoice_code(document_id, policy)
            if code is None:
                return SeriesNotDetected(document_id=document_id)
        case DocumentType.CREDIT_NOTE:
            code = CREDIT_NOTE_CODE
        case DocumentType.DEBIT_NOTE:
            code = DEBIT_NOTE_CODE
        case DocumentType.VOIDED_DOCUMENT | DocumentType.SUMMARY_DOCUMENT:
            return f"{ruc}-{document_id}.xml"
        case _:
            raise UnsupportedTypeError(str(document_type))

    return f"{ruc}-{code}-{document_id}.xml"
