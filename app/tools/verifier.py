import asyncio
from pathlib import Path

from app.config.settings import Settings
from app.conversion.exceptions import OutputNotProducedError
from app.logging.logger import Log
from app.pdf.base import BasePdfInspector
from app.pdf.exceptions import PdfInspectionError
from app.pdf.pdfplumber_adapter import PdfPlumberAdapter
from app.pdf.pymupdf_adapter import PyMuPdfAdapter

PDF_ENGINES: dict[str, type[BasePdfInspector]] = {
    "pdfplumber": PdfPlumberAdapter,
    "pymupdf": PyMuPdfAdapter,
}


class OutputVerifier:
    """Checks that a tool actually produced a usable file."""

    def __init__(self, pdf_inspector: BasePdfInspector | None = None) -> None:
        self._pdf_inspector = pdf_inspector

    @property
    def pdf_inspector(self) -> BasePdfInspector | None:
        return self._pdf_inspector

    @classmethod
    def from_settings(cls, settings: Settings) -> "OutputVerifier":
        """Build a verifier that opens PDF output with the configured engine.

        With ``verify_pdf_output`` off, only presence and size are checked.
        """
        if not settings.verify_pdf_output:
            return cls()
        engine = settings.pdf_engine.lower()
        inspector_cls = PDF_ENGINES.get(engine)
        if inspector_cls is None:
            raise ValueError(f"Unknown PDF engine '{engine}'. Choose from: {list(PDF_ENGINES)}")
        return cls(inspector_cls())

    async def verify(self, path: Path, target_format: str) -> None:
        """Raise OutputNotProducedError unless ``path`` holds a non-empty, readable artifact.

        PDF output is additionally opened with the configured inspector when
        one is set, since tools can exit 0 after writing a truncated file.
        """
        if not path.is_file():
            raise OutputNotProducedError(f"Output file was not created: {path.name}")
        if path.stat().st_size == 0:
            raise OutputNotProducedError(f"Output file is empty: {path.name}")
        if target_format != "pdf" or self._pdf_inspector is None:
            return

        try:
            pages = await asyncio.to_thread(self._pdf_inspector.page_count, path)
        except PdfInspectionError as exc:
            raise OutputNotProducedError(f"Output is not a readable PDF: {exc}") from exc
        if pages == 0:
            raise OutputNotProducedError(f"Output PDF has no pages: {path.name}")
        Log.debug(f"Verified PDF output {path.name}: {pages} pages")
