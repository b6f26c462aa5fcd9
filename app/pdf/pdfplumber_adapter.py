from pathlib import Path

import pdfplumber

from app.pdf.base import BasePdfInspector
from app.pdf.exceptions import PdfInspectionError


class PdfPlumberAdapter(BasePdfInspector):
    """Inspects PDF files using pdfplumber."""

    def page_count(self, path: Path) -> int:
        try:
            with pdfplumber.open(path) as pdf:
                return len(pdf.pages)
        except Exception as exc:
            raise PdfInspectionError(f"pdfplumber could not open {path.name}: {exc}") from exc
