"""
SUNAT billService client.

Sends zipped UBL documents over SOAP with a WS-Security username token.
Invoices and notes go through sendBill (answered with a CDR), voided and
summary documents through sendSummary (answered with a ticket).
"""
import base64
import binascii
import io
import zipfile
from dataclasses import dataclass
from xml.etree import ElementTree
from xml.sax.saxutils import escape

import httpx

from ublsender.config import Settings, settings as default_settings
from ublsender.logging_config import get_logger

logger = get_logger(component="sunat")


ENVELOPE = """<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" \
xmlns:ser="http://service.sunat.gob.pe" \
xmlns:wsse="http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd">
<soapenv:Header>
<wsse:Security>
<wsse:UsernameToken>
<wsse:Username>{username}</wsse:Username>
<wsse:Password>{password}</wsse:Password>
</wsse:UsernameToken>
</wsse:Security>
</soapenv:Header>
<soapenv:Body>
<ser:{operation}>
<fileName>{file_name}</fileName>
<contentFile>{content_file}</contentFile>
</ser:{operation}>
</soapenv:Body>
</soapenv:Envelope>"""


class SunatTransportError(Exception):
    """SUNAT could not be reached or answered garbage; worth retrying."""


@dataclass(frozen=True)
class SunatResponse:
    """Outcome of a send; exactly one of cdr/ticket is set on success."""
    success: bool
    cdr: bytes | None = None
    ticket: str | None = None
    fault_code: str | None = None
    fault_message: str | None = None


def zip_document(filename: str, content: bytes) -> tuple[str, bytes]:
    """Pack filename into {stem}.zip as SUNAT expects."""
    stem = filename.rsplit(".", 1)[0]
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(filename, content)
    return f"{stem}.zip", buffer.getvalue()


def _find_local(root: ElementTree.Element, name: str) -> ElementTree.Element | None:
    for element in root.iter():
        if element.tag == name or element.tag.endswith("}" + name):
            return element
    return None


def parse_response(body: bytes) -> SunatResponse:
    """Read a sendBill/sendSummary answer or a SOAP fault."""
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as e:
        raise SunatTransportError(f"Invalid SOAP response: {e}") from e

    fault = _find_local(root, "Fault")
    if fault is not None:
        code = _find_local(fault, "faultcode")
        message = _find_local(fault, "faultstring")
        fault_code = code.text.strip() if code is not None and code.text else None
        # soap-env:Client.0151 -> 0151
        if fault_code and "." in fault_code:
            fault_code = fault_code.rsplit(".", 1)[-1]
        return SunatResponse(
            success=False,
            fault_code=fault_code,
            fault_message=message.text.strip() if message is not None and message.text else None,
        )

    application_response = _find_local(root, "applicationResponse")
    if application_response is not None and application_response.text:
        try:
            cdr = base64.b64decode("".join(application_response.text.split()), validate=True)
        except binascii.Error as e:
            raise SunatTransportError(f"Unreadable applicationResponse: {e}") from e
        return SunatResponse(success=True, cdr=cdr)

    ticket = _find_local(root, "ticket")
    if ticket is not None and ticket.text:
        return SunatResponse(success=True, ticket=ticket.text.strip())

    raise SunatTransportError("SOAP response has neither applicationResponse, ticket nor Fault")


class SunatClient:
    """Async SOAP client for SUNAT's billService."""

    def __init__(
        self,
        settings: Settings = default_settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.username = settings.SUNAT_USERNAME
        self.password = settings.SUNAT_PASSWORD
        self.timeout = settings.SUNAT_TIMEOUT_SECONDS
        self.transport = transport

    def build_envelope(self, operation: str, zip_name: str, zip_content: bytes) -> str:
        return ENVELOPE.format(
            username=escape(self.username),
            password=escape(self.password),
            operation=operation,
            file_name=escape(zip_name),
            content_file=base64.b64encode(zip_content).decode("ascii"),
        )

    async def send(self, server_url: str, filename: str, content: bytes, summary: bool = False) -> SunatResponse:
        """
        Send a document to SUNAT.

        Args:
            server_url: billService endpoint
            filename: XML filename (the zip is named after it)
            content: Raw XML
            summary: Use sendSummary instead of sendBill

        Raises:
            SunatTransportError: network failure, 5xx without fault, unreadable answer
        """
        operation = "sendSummary" if summary else "sendBill"
        zip_name, zip_content = zip_document(filename, content)
        envelope = self.build_envelope(operation, zip_name, zip_content)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    server_url,
                    content=envelope.encode("utf-8"),
                    headers={
                        "Content-Type": "text/xml; charset=utf-8",
                        "SOAPAction": f'"urn:{operation}"',
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("sunat_unreachable", url=server_url, filename=filename, error=str(e))
            raise SunatTransportError(str(e)) from e

        # SOAP faults come back as HTTP 500 with a Fault body
        if response.status_code >= 400 and b"Fault" not in response.content:
            raise SunatTransportError(f"HTTP {response.status_code} from {server_url}")

        result = parse_response(response.content)
        logger.info(
            "sunat_answered",
            filename=filename,
            operation=operation,
            success=result.success,
            fault_code=result.fault_code,
        )
        return result
