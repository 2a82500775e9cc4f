"""
Reads the fields needed to route a UBL document.

Only the root element name, the supplier RUC and the document ID are
extracted; no schema validation is done here.
"""
import re
from dataclasses import dataclass
from xml.etree import ElementTree

from ublsender.exceptions import MalformedInputError


CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"

NAMESPACES = {"cbc": CBC_NS, "cac": CAC_NS}

# UBL 2.0 documents (and SUNAT summaries) carry the RUC in
# CustomerAssignedAccountID, UBL 2.1 in PartyIdentification/ID.
RUC_PATHS = (
    "cac:AccountingSupplierParty/cbc:CustomerAssignedAccountID",
    "cac:AccountingSupplierParty/cac:Party/cac:PartyIdentification/cbc:ID",
)

RUC_PATTERN = re.compile(r"[0-9]{11}")

# file_deliveries.document_id column size
DOCUMENT_ID_MAX_LENGTH = 50


@dataclass(frozen=True)
class XmlContentModel:
    """Routing data read from a UBL document."""
    document_type: str
    ruc: str
    document_id: str


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if tag.startswith("{") else tag


def _find_text(root: ElementTree.Element, path: str) -> str | None:
    element = root.find(path, NAMESPACES)
    if element is None or element.text is None:
        return None
    return element.text.strip() or None


def read_content(content: bytes) -> XmlContentModel:
    """
    Parse raw bytes into an XmlContentModel.

    Args:
        content: Raw XML file

    Returns:
        XmlContentModel with the root element name as document_type

    Raises:
        MalformedInputError: bytes are not well-formed XML, or RUC/ID are missing or invalid
    """
    if not content:
        raise MalformedInputError("Empty file")

    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError as e:
        raise MalformedInputError(f"Invalid XML file: {e}") from e

    document_type = _local_name(root.tag)

    ruc = None
    for path in RUC_PATHS:
        ruc = _find_text(root, path)
        if ruc:
            break
    if not ruc:
        raise MalformedInputError(f"Could not read supplier RUC from {document_type}")
    if not RUC_PATTERN.fullmatch(ruc):
        raise MalformedInputError(f"Supplier RUC must be 11 digits, got {ruc!r}")

    document_id = _find_text(root, "cbc:ID")
    if not document_id:
        raise MalformedInputError(f"Could not read document ID from {document_type}")
    if len(document_id) > DOCUMENT_ID_MAX_LENGTH:
        raise MalformedInputError(
            f"Document ID is longer than {DOCUMENT_ID_MAX_LENGTH} characters"
        )

    return XmlContentModel(document_type=document_type, ruc=ruc, document_id=document_id)
