"""Tests for PDF rendering and document file storage."""

from datetime import UTC, date, datetime
from decimal import Decimal
from io import BytesIO
from pathlib import Path

import pytest
from PyPDF2 import PdfReader

from lexbill.core.exceptions import RenderError
from lexbill.models.domain import DocumentKind
from lexbill.services.documents.renderer import ReportLabRenderer, format_currency, format_date
from lexbill.services.documents.storage import DocumentStorage


def _invoice_fields(**overrides: object) -> dict[str, object]:
    fields: dict[str, object] = {
        "client_name": "Carmen Torres",
        "internal_reference": "IY004921",
        "external_reference": "DJ00123456",
        "generated_on": date(2026, 3, 14),
        "base_fee": Decimal("203.00"),
        "vat_rate": Decimal("21"),
        "vat_amount": Decimal("42.63"),
        "total": Decimal("245.63"),
    }
    fields.update(overrides)
    return fields


def _page_text(data: bytes) -> str:
    reader = PdfReader(BytesIO(data))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


class TestFormatting:
    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            (Decimal("245.63"), "245,63 €"),
            (Decimal("1234.5"), "1.234,50 €"),
            (Decimal("1000000"), "1.000.000,00 €"),
            (Decimal("0"), "0,00 €"),
        ],
    )
    def test_format_currency(self, amount: Decimal, expected: str) -> None:
        assert format_currency(amount) == expected

    def test_format_date(self) -> None:
        assert format_date(date(2026, 3, 4)) == "04/03/2026"


class TestReportLabRenderer:
    async def test_invoice_is_a_pdf_with_total(self) -> None:
        data = await ReportLabRenderer().render(DocumentKind.FIXED_FEE_INVOICE, _invoice_fields())
        assert data.startswith(b"%PDF")
        text = _page_text(data)
        assert "MINUTA DE HONORARIOS" in text
        assert "245,63" in text
        assert "DJ00123456" in text

    async def test_mileage_claim_names_district(self) -> None:
        fields = {
            "client_name": "Carmen Torres",
            "internal_reference": "IY004921",
            "external_reference": "DJ00123456",
            "generated_on": date(2026, 3, 14),
            "district": "Marbella",
            "amount": Decimal("25.50"),
        }
        data = await ReportLabRenderer().render(DocumentKind.MILEAGE_CLAIM, fields)
        text = _page_text(data)
        assert "SUPLIDO" in text
        assert "Marbella" in text

    async def test_missing_template(self) -> None:
        with pytest.raises(RenderError) as exc_info:
            await ReportLabRenderer().render(DocumentKind.OTHER, _invoice_fields())
        assert exc_info.value.retryable is True

    async def test_missing_field(self) -> None:
        fields = _invoice_fields()
        del fields["total"]
        with pytest.raises(RenderError) as exc_info:
            await ReportLabRenderer().render(DocumentKind.FIXED_FEE_INVOICE, fields)
        assert exc_info.value.details["field"] == "total"


class TestDocumentStorage:
    def test_path_layout(self, tmp_path: Path) -> None:
        storage = DocumentStorage(tmp_path)
        now = datetime(2026, 3, 14, 10, 0, 0, tzinfo=UTC)
        path = storage.build_path(DocumentKind.FIXED_FEE_INVOICE, "IY004921", now=now)

        assert path.parent == tmp_path / "2026" / "IY004921"
        assert path.name.startswith("fixed_fee_invoice_20260314T100000")
        assert path.suffix == ".pdf"

    def test_paths_never_collide(self, tmp_path: Path) -> None:
        storage = DocumentStorage(tmp_path)
        now = datetime(2026, 3, 14, tzinfo=UTC)
        paths = {
            storage.build_path(DocumentKind.MILEAGE_CLAIM, "IY000001", now=now) for _ in range(50)
        }
        assert len(paths) == 50

    def test_unsafe_reference_characters_are_replaced(self, tmp_path: Path) -> None:
        storage = DocumentStorage(tmp_path)
        path = storage.build_path(DocumentKind.OTHER, "../TO-2026/0042")
        assert path.parent.name == "TO-2026_0042"
        assert tmp_path in path.parents

    async def test_write_then_read(self, tmp_path: Path) -> None:
        storage = DocumentStorage(tmp_path)
        path = await storage.write(DocumentKind.FIXED_FEE_INVOICE, "IY000001", b"%PDF-1.4 body")

        assert storage.exists(path)
        assert await storage.read(path) == b"%PDF-1.4 body"
        assert not list(path.parent.glob("*.part"))

    async def test_failed_write_leaves_no_partial_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_replace(src: object, dst: object) -> None:
            raise OSError("No space left on device")

        monkeypatch.setattr("lexbill.services.documents.storage.os.replace", broken_replace)
        storage = DocumentStorage(tmp_path)

        with pytest.raises(OSError, match="No space left"):
            await storage.write(DocumentKind.FIXED_FEE_INVOICE, "IY000001", b"%PDF-1.4 body")

        assert [p for p in tmp_path.rglob("*") if p.is_file()] == []

    def test_exists_false_for_missing(self, tmp_path: Path) -> None:
        assert DocumentStorage(tmp_path).exists(tmp_path / "nope.pdf") is False
