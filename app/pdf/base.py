from abc import ABC, abstractmethod
from pathlib import Path


class BasePdfInspector(ABC):
    """Contract for all PDF inspection adapters."""

    @abstractmethod
    def page_count(self, path: Path) -> int:
        """Open a PDF file and count its pages.

        Args:
            path: Location of the PDF on disk.

        Returns:
            Number of pages; 0 for a structurally valid but empty document.

        Raises:
            PdfInspectionError: if the file cannot be opened as a PDF.
        """
