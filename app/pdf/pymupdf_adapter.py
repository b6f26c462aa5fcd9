from pathlib import Path

import pymupdf

from app.pdf.base import BasePdfInspector
from app.pdf.exceptions import PdfInspectionError


class PyMuPdfAdapter(BasePdfInspector):
    """Inspects PDF files using PyMuPDF."""

    def page_count(self, path: Path) -> int:
        try:
            with pymupdf.open(path, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                return int(doc.page_count)
        except Exception as exc:
            raise PdfInspectionError(f"pymupdf could not open {path.name}: {exc}") from exc
