"""PDF rendering of billing documents with reportlab.

One drawing routine per document kind. The renderer only turns a field
map into bytes; it never touches the filesystem or the database.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from io import BytesIO
from typing import Any

import structlog
from reportlab.lib.colors import HexColor, white
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from lexbill.core.exceptions import RenderError
from lexbill.models.domain import DocumentKind

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_MARGIN = 60
_HEADER_COLOR = HexColor("#2c3e50")
_MUTED_COLOR = HexColor("#666666")
_RULE_COLOR = HexColor("#e0e0e0")


def format_currency(amount: Decimal) -> str:
    """Spanish-style amount: ``1.234,56 €``."""
    integer, _, cents = f"{amount:.2f}".partition(".")
    sign = "-" if integer.startswith("-") else ""
    digits = integer.lstrip("-")
    groups = []
    while digits:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    return f"{sign}{'.'.join(groups) or '0'},{cents} €"


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


class ReportLabRenderer:
    """Renders A4 billing documents from a field map."""

    def __init__(self) -> None:
        self._templates: dict[DocumentKind, Callable[[canvas.Canvas, Mapping[str, Any]], None]] = {
            DocumentKind.FIXED_FEE_INVOICE: self._draw_invoice,
            DocumentKind.MILEAGE_CLAIM: self._draw_mileage_claim,
        }

    async def render(self, kind: DocumentKind, fields: Mapping[str, Any]) -> bytes:
        """Render off the event loop."""
        return await asyncio.to_thread(self.render_sync, kind, fields)

    def render_sync(self, kind: DocumentKind, fields: Mapping[str, Any]) -> bytes:
        template = self._templates.get(kind)
        if template is None:
            raise RenderError(
                f"No template for document kind {kind.value!r}",
                details={"kind": kind.value},
            )

        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=A4)
        pdf.setTitle(str(fields.get("title", kind.value)))
        try:
            template(pdf, fields)
        except KeyError as exc:
            raise RenderError(
                f"Missing field {exc.args[0]!r} for {kind.value}",
                details={"kind": kind.value, "field": exc.args[0]},
            ) from exc
        pdf.showPage()
        pdf.save()

        data = buffer.getvalue()
        logger.debug("document_rendered", kind=kind.value, size_bytes=len(data))
        return data

    # ------------------------------------------------------------------
    # Layout helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _draw_header(pdf: canvas.Canvas, title: str) -> float:
        width, height = A4
        top = height - 50
        pdf.setFillColor(_HEADER_COLOR)
        pdf.rect(_MARGIN, top - 50, width - 2 * _MARGIN, 50, stroke=0, fill=1)
        pdf.setFillColor(white)
        pdf.setFont("Helvetica-Bold", 20)
        pdf.drawCentredString(width / 2, top - 32, title)
        pdf.setFillColorRGB(0, 0, 0)
        return top - 80

    @staticmethod
    def _draw_case_block(pdf: canvas.Canvas, fields: Mapping[str, Any], y: float) -> float:
        width, _ = A4
        col2 = width / 2
        rows = [
            ("Cliente:", fields["client_name"], "Ref. Interna:", fields["internal_reference"]),
            (
                "Ref. Externa:",
                fields.get("external_reference") or "-",
                "Fecha:",
                format_date(fields["generated_on"]),
            ),
        ]
        for left_label, left_value, right_label, right_value in rows:
            pdf.setFont("Helvetica", 10)
            pdf.setFillColor(_MUTED_COLOR)
            pdf.drawString(_MARGIN + 10, y, left_label)
            pdf.drawString(col2, y, right_label)
            pdf.setFont("Helvetica-Bold", 10)
            pdf.setFillColorRGB(0, 0, 0)
            pdf.drawString(_MARGIN + 85, y, str(left_value))
            pdf.drawString(col2 + 80, y, str(right_value))
            y -= 18
        return y - 20

    @staticmethod
    def _draw_rows(
        pdf: canvas.Canvas,
        rows: list[tuple[str, Decimal]],
        total_label: str,
        total: Decimal,
        y: float,
    ) -> float:
        width, _ = A4
        right = width - _MARGIN
        pdf.setFont("Helvetica", 10)
        for label, amount in rows:
            pdf.setStrokeColor(_RULE_COLOR)
            pdf.rect(_MARGIN, y - 10, right - _MARGIN, 28, stroke=1, fill=0)
            pdf.drawString(_MARGIN + 10, y, label)
            pdf.drawRightString(right - 10, y, format_currency(amount))
            y -= 28

        pdf.setFillColor(_HEADER_COLOR)
        pdf.rect(_MARGIN, y - 12, right - _MARGIN, 32, stroke=0, fill=1)
        pdf.setFillColor(white)
        pdf.setFont("Helvetica-Bold", 12)
        pdf.drawString(_MARGIN + 10, y, total_label)
        pdf.drawRightString(right - 10, y, format_currency(total))
        pdf.setFillColorRGB(0, 0, 0)
        return y - 50

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _draw_invoice(self, pdf: canvas.Canvas, fields: Mapping[str, Any]) -> None:
        y = self._draw_header(pdf, "MINUTA DE HONORARIOS")
        y = self._draw_case_block(pdf, fields, y)
        y = self._draw_rows(
            pdf,
            [
                ("Honorarios profesionales por gestión de expediente", fields["base_fee"]),
                (f"IVA ({fields['vat_rate']}%)", fields["vat_amount"]),
            ],
            "TOTAL A PERCIBIR",
            fields["total"],
            y,
        )
        pdf.setFont("Helvetica", 8)
        pdf.setFillColor(_MUTED_COLOR)
        pdf.drawCentredString(
            A4[0] / 2,
            y,
            "Documento generado electrónicamente. Honorarios según tarifa fija convenida.",
        )

    def _draw_mileage_claim(self, pdf: canvas.Canvas, fields: Mapping[str, Any]) -> None:
        y = self._draw_header(pdf, "SUPLIDO POR DESPLAZAMIENTO")
        y = self._draw_case_block(pdf, fields, y)
        district = fields["district"]
        y = self._draw_rows(
            pdf,
            [(f"Desplazamiento al partido judicial de {district}", fields["amount"])],
            "TOTAL SUPLIDO",
            fields["amount"],
            y,
        )
        pdf.setFont("Helvetica", 8)
        pdf.setFillColor(_MUTED_COLOR)
        pdf.drawCentredString(
            A4[0] / 2,
            y,
            "Gastos de desplazamiento no sujetos a IVA.",
        )
