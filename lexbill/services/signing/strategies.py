"""Document signing strategies.

Two variants, chosen once per configuration snapshot:

- ``VisualAnnotationSigner`` (default) stamps a bordered text box on the
  last page saying the document was signed, with the signing time. It is
  a visual marker, not a cryptographic signature.
- ``DelegatedCryptographicSigner`` (when a credential is configured)
  checks the credential and hands the PDF to an external signer.

Neither falls back to the other. Deciding what to do when signing fails
is the workflow engine's job.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PyPdfError
from reportlab.lib.colors import Color
from reportlab.pdfgen import canvas

from lexbill.core.exceptions import (
    CredentialExpiredError,
    CredentialInvalidError,
    MalformedDocumentError,
)
from lexbill.models.domain import SignatureInfo, SignatureKind

if TYPE_CHECKING:
    from lexbill.models.domain import BillingConfig, SigningCredential
    from lexbill.services.signing.backend import SignerBackend

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

ANNOTATION_X = 50
ANNOTATION_Y = 35
ANNOTATION_WIDTH = 250
ANNOTATION_HEIGHT = 35
ANNOTATION_TITLE = "Documento firmado digitalmente"

_TEXT_COLOR = Color(0.3, 0.3, 0.3)
_BORDER_COLOR = Color(0.5, 0.5, 0.5)


def _make_annotation_page(width: float, height: float, signed_at: datetime) -> BytesIO:
    buffer = BytesIO()
    can = canvas.Canvas(buffer, pagesize=(width, height))
    can.setStrokeColor(_BORDER_COLOR)
    can.setLineWidth(0.5)
    can.rect(ANNOTATION_X, ANNOTATION_Y, ANNOTATION_WIDTH, ANNOTATION_HEIGHT, stroke=1, fill=0)
    can.setFillColor(_TEXT_COLOR)
    can.setFont("Helvetica", 8)
    can.drawString(ANNOTATION_X + 5, ANNOTATION_Y + 20, ANNOTATION_TITLE)
    can.drawString(
        ANNOTATION_X + 5,
        ANNOTATION_Y + 8,
        f"Fecha de firma: {signed_at.strftime('%d/%m/%Y %H:%M')}",
    )
    can.save()
    buffer.seek(0)
    return buffer


def stamp_annotation(data: bytes, signed_at: datetime) -> bytes:
    """Return ``data`` with the signature box merged onto its last page."""
    try:
        reader = PdfReader(BytesIO(data))
        pages = list(reader.pages)
    except (PyPdfError, ValueError, OSError) as exc:
        raise MalformedDocumentError(
            "Document is not a readable PDF",
            details={"error": str(exc)},
        ) from exc
    if not pages:
        raise MalformedDocumentError("Document has no pages")

    writer = PdfWriter()
    last = pages[-1]
    width = float(last.mediabox.width)
    height = float(last.mediabox.height)
    overlay = PdfReader(_make_annotation_page(width, height, signed_at)).pages[0]
    for page in pages[:-1]:
        writer.add_page(page)
    last.merge_page(overlay)
    writer.add_page(last)

    out = BytesIO()
    writer.write(out)
    return out.getvalue()


class VisualAnnotationSigner:
    """Stamps a fixed-position signature box on the last page."""

    kind = SignatureKind.VISUAL

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock

    async def sign(self, data: bytes) -> bytes:
        return await asyncio.to_thread(stamp_annotation, data, self._clock())

    def get_active_info(self) -> SignatureInfo:
        return SignatureInfo(
            kind=self.kind,
            detail="Visual signature (text marker, not cryptographic)",
        )


class DelegatedCryptographicSigner:
    """Validates the credential, then asks the external signer to sign."""

    kind = SignatureKind.CRYPTOGRAPHIC

    def __init__(
        self,
        credential: SigningCredential,
        backend: SignerBackend,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._credential = credential
        self._backend = backend
        self._clock = clock

    async def validate_credential(self) -> None:
        """Raise CredentialInvalidError or CredentialExpiredError if unusable."""
        path = Path(self._credential.path)
        if not path.is_file():
            raise CredentialInvalidError(
                "Signing credential file not found",
                details={"path": str(path)},
            )

        info = await self._backend.inspect_credential(self._credential)
        now = self._clock()
        not_before = _as_aware(info.not_before)
        not_after = _as_aware(info.not_after)
        if now > not_after:
            raise CredentialExpiredError(
                "Signing credential has expired",
                details={"not_after": not_after.isoformat(), "subject": info.subject},
            )
        if now < not_before:
            raise CredentialInvalidError(
                "Signing credential is not valid yet",
                details={"not_before": not_before.isoformat(), "subject": info.subject},
            )

    async def sign(self, data: bytes) -> bytes:
        if not data.startswith(b"%PDF"):
            raise MalformedDocumentError("Document is not a PDF")
        await self.validate_credential()
        signed = await self._backend.sign(data, self._credential)
        logger.info("document_signed_delegated", size_bytes=len(signed))
        return signed

    def get_active_info(self) -> SignatureInfo:
        return SignatureInfo(
            kind=self.kind,
            detail=f"Cryptographic signature with credential {Path(self._credential.path).name}",
        )


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


SignatureStrategy = VisualAnnotationSigner | DelegatedCryptographicSigner


def select_signature_strategy(
    config: BillingConfig,
    backend: SignerBackend | None,
) -> SignatureStrategy:
    """Pick the variant for a configuration snapshot."""
    if config.signing_credential is not None and backend is not None:
        return DelegatedCryptographicSigner(config.signing_credential, backend)
    return VisualAnnotationSigner()
