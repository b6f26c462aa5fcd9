import io
import sys
from collections.abc import Callable
from pathlib import Path

import pytest
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from app.conversion.models import ConversionKind, FormatPair
from app.tools.registry import ToolSpec

COPY_SCRIPT = (
    "import pathlib, shutil, sys; "
    "shutil.copyfile(sys.argv[1], pathlib.Path(sys.argv[2]) / 'output.txt')"
)
SLEEP_SCRIPT = "import time; time.sleep(30)"
FAIL_SCRIPT = "import sys; sys.stderr.write('boom: bad input'); sys.exit(3)"
NOOP_SCRIPT = "pass"

ToolFactory = Callable[..., ToolSpec]


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Generate a minimal single-page PDF with known text content."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, "Hello PDF World")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def multi_page_pdf_bytes() -> bytes:
    """Generate a two-page PDF with known text on each page."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, "Page one content")
    c.showPage()
    c.drawString(72, 720, "Page two content")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def python_tool() -> ToolFactory:
    """Build a ToolSpec that runs an inline Python script instead of a real converter.

    The script receives the source path as argv[1] and the work directory as argv[2].
    """

    def factory(
        script: str = COPY_SCRIPT,
        source: str = "txt",
        target: str = "pdf",
        output_name: str = "output.txt",
        kind: ConversionKind = ConversionKind.DOCUMENT,
    ) -> ToolSpec:
        return ToolSpec(
            pair=FormatPair(source, target),
            kind=kind,
            command=sys.executable,
            build_args=lambda src, workdir: ["-c", script, str(src), str(workdir)],
            output_name=lambda _src: output_name,
        )

    return factory


@pytest.fixture()
def text_file(tmp_path: Path) -> Path:
    path = tmp_path / "a.txt"
    path.write_bytes(b"0123456789")
    return path
