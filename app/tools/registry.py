import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from app.config.settings import Settings
from app.conversion.exceptions import UnsupportedConversionError
from app.conversion.models import ConversionKind, FormatPair

DOCUMENT_FORMATS = ("doc", "docx", "odt", "rtf", "txt", "html")
IMAGE_FORMATS = ("jpg", "jpeg", "png", "gif", "bmp", "tiff", "webp")
POSTSCRIPT_FORMATS = ("pdf", "ps", "eps")
GHOSTSCRIPT_RASTER_DEVICES = {
    "png": "png16m",
    "jpg": "jpeg",
    "jpeg": "jpeg",
    "tiff": "tiff24nc",
}
RASTER_RESOLUTION_DPI = 150
OUTPUT_STEM = "output"

ArgumentBuilder = Callable[[Path, Path], list[str]]
OutputNamer = Callable[[Path], str]


@dataclass(frozen=True)
class ToolSpec:
    """How to run one external tool for one format pair.

    ``build_args(source, workdir)`` returns the argument vector (without the
    command) and ``output_name(source)`` the file name the tool writes inside
    ``workdir``.
    """

    pair: FormatPair
    kind: ConversionKind
    command: str
    build_args: ArgumentBuilder
    output_name: OutputNamer


def _fixed_output_name(target: str, _source: Path) -> str:
    return f"{OUTPUT_STEM}.{target}"


def _libreoffice_args(target: str, source: Path, workdir: Path) -> list[str]:
    profile = (workdir / "profile").resolve().as_uri()
    return [
        "--headless",
        "--norestore",
        f"-env:UserInstallation={profile}",
        "--convert-to",
        target,
        "--outdir",
        str(workdir.resolve()),
        str(source.resolve()),
    ]


def _libreoffice_output_name(target: str, source: Path) -> str:
    return f"{source.stem}.{target}"


def _imagemagick_args(target: str, source: Path, workdir: Path) -> list[str]:
    return [str(source.resolve()), str((workdir / f"{OUTPUT_STEM}.{target}").resolve())]


def _ghostscript_pdfwrite_args(source: Path, workdir: Path) -> list[str]:
    return [
        "-dNOPAUSE",
        "-dBATCH",
        "-dSAFER",
        "-sDEVICE=pdfwrite",
        f"-sOutputFile={(workdir / f'{OUTPUT_STEM}.pdf').resolve()}",
        "-f",
        str(source.resolve()),
    ]


def _ghostscript_raster_args(target: str, source: Path, workdir: Path) -> list[str]:
    return [
        "-dNOPAUSE",
        "-dBATCH",
        "-dSAFER",
        f"-sDEVICE={GHOSTSCRIPT_RASTER_DEVICES[target]}",
        f"-r{RASTER_RESOLUTION_DPI}",
        "-dFirstPage=1",
        "-dLastPage=1",
        f"-sOutputFile={(workdir / f'{OUTPUT_STEM}.{target}').resolve()}",
        "-f",
        str(source.resolve()),
    ]


def _tesseract_args(language: str, source: Path, workdir: Path) -> list[str]:
    # tesseract appends ".txt" to the output base it is given
    return [str(source.resolve()), str((workdir / OUTPUT_STEM).resolve()), "-l", language]


class ToolRegistry:
    """Closed mapping from a format pair to the tool that converts it."""

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        self._specs: dict[FormatPair, ToolSpec] = {}
        for spec in specs:
            if not spec.command:
                raise ValueError(
                    f"No binary configured for {spec.kind.value} conversion {spec.pair}"
                )
            if spec.pair.source == spec.pair.target:
                raise ValueError(f"Conversion {spec.pair} does not change the format")
            if spec.pair in self._specs:
                raise ValueError(f"Duplicate tool mapping for {spec.pair}")
            self._specs[spec.pair] = spec

    def resolve(self, pair: FormatPair) -> ToolSpec:
        """Return the tool for a pair.

        Raises:
            UnsupportedConversionError: if the pair has no mapping.
        """
        spec = self._specs.get(pair)
        if spec is None:
            raise UnsupportedConversionError(
                f"No conversion tool available for {pair.source} to {pair.target}"
            )
        return spec

    def supports(self, pair: FormatPair) -> bool:
        return pair in self._specs

    def pairs(self) -> list[FormatPair]:
        return sorted(self._specs, key=lambda p: (p.source, p.target))

    def availability(self) -> dict[str, bool]:
        """Report whether each configured binary can be found on PATH."""
        commands = sorted({spec.command for spec in self._specs.values()})
        return {command: shutil.which(command) is not None for command in commands}

    def __len__(self) -> int:
        return len(self._specs)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolRegistry":
        return cls(default_tool_specs(settings))


def default_tool_specs(settings: Settings) -> list[ToolSpec]:
    """Build the full set of supported conversions from configured binaries."""
    specs: list[ToolSpec] = []

    for source in DOCUMENT_FORMATS:
        for target in (*DOCUMENT_FORMATS, "pdf"):
            if source == target:
                continue
            specs.append(
                ToolSpec(
                    pair=FormatPair(source, target),
                    kind=ConversionKind.DOCUMENT,
                    command=settings.libreoffice_binary,
                    build_args=partial(_libreoffice_args, target),
                    output_name=partial(_libreoffice_output_name, target),
                )
            )

    for source in IMAGE_FORMATS:
        for target in (*IMAGE_FORMATS, "pdf"):
            if source == target:
                continue
            specs.append(
                ToolSpec(
                    pair=FormatPair(source, target),
                    kind=ConversionKind.IMAGE,
                    command=settings.imagemagick_binary,
                    build_args=partial(_imagemagick_args, target),
                    output_name=partial(_fixed_output_name, target),
                )
            )
        specs.append(
            ToolSpec(
                pair=FormatPair(source, "txt"),
                kind=ConversionKind.OCR,
                command=settings.tesseract_binary,
                build_args=partial(_tesseract_args, settings.ocr_language),
                output_name=partial(_fixed_output_name, "txt"),
            )
        )

    for source in POSTSCRIPT_FORMATS:
        if source == "pdf":
            continue
        specs.append(
            ToolSpec(
                pair=FormatPair(source, "pdf"),
                kind=ConversionKind.PDF,
                command=settings.ghostscript_binary,
                build_args=_ghostscript_pdfwrite_args,
                output_name=partial(_fixed_output_name, "pdf"),
            )
        )
    for target in GHOSTSCRIPT_RASTER_DEVICES:
        specs.append(
            ToolSpec(
                pair=FormatPair("pdf", target),
                kind=ConversionKind.PDF,
                command=settings.ghostscript_binary,
                build_args=partial(_ghostscript_raster_args, target),
                output_name=partial(_fixed_output_name, target),
            )
        )

    return specs
