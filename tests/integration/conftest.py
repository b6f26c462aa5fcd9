import shutil
import struct
import zlib
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from app.config.settings import Settings
from app.conversion.service import ConversionService, build_service


def require_binary(name: str) -> None:
    if shutil.which(name) is None:
        pytest.skip(f"{name} is not installed")


def _png_chunk(tag: bytes, data: bytes) -> bytes:
    body = tag + data
    return struct.pack(">I", len(data)) + body + struct.pack(">I", zlib.crc32(body))


def solid_png(
    width: int = 32, height: int = 32, rgb: tuple[int, int, int] = (200, 30, 30)
) -> bytes:
    """Build an uncompressed-filter RGB PNG of a single colour."""
    row = b"\x00" + bytes(rgb) * width
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(row * height))
        + _png_chunk(b"IEND", b"")
    )


@pytest.fixture()
def integration_settings(tmp_path: Path) -> Settings:
    return Settings(
        cache_directory=tmp_path / "cache",
        output_directory=tmp_path / "output",
        tool_timeout_ms=120_000,
        max_concurrent_tasks=2,
    )


@pytest_asyncio.fixture()
async def service(integration_settings: Settings) -> AsyncIterator[ConversionService]:
    svc = build_service(integration_settings)
    await svc.initialize()
    try:
        yield svc
    finally:
        await svc.shutdown()


@pytest.fixture()
def png_file(tmp_path: Path) -> Path:
    path = tmp_path / "input" / "swatch.png"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(solid_png())
    return path


@pytest.fixture()
def pdf_file(tmp_path: Path, sample_pdf_bytes: bytes) -> Path:
    path = tmp_path / "input" / "hello.pdf"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(sample_pdf_bytes)
    return path


@pytest.fixture()
def document_file(tmp_path: Path) -> Path:
    path = tmp_path / "input" / "notes.txt"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("Quarterly notes\nLine two\n", encoding="utf-8")
    return path
