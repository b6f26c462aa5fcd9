import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from app.config.settings import Settings
from app.conversion.exceptions import SourceUnreadableError
from app.conversion.service import ConversionService, build_service
from app.conversion.source_file import infer_format
from app.logging.logger import Log


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fileconvert",
        description="Convert files with LibreOffice, ImageMagick, Ghostscript and Tesseract.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="convert one or more files")
    convert.add_argument("sources", nargs="+", type=Path, help="files to convert")
    convert.add_argument("--to", dest="target_format", required=True, help="target format")
    convert.add_argument(
        "--from",
        dest="source_format",
        default=None,
        help="source format (default: taken from each file's extension)",
    )

    commands.add_parser("cache-stats", help="show cache usage")
    commands.add_parser("cache-clear", help="remove every cached artifact")
    commands.add_parser("cache-sweep", help="drop expired entries and orphaned files")
    commands.add_parser("tools", help="list configured tools and whether they are installed")
    return parser


async def _convert(service: ConversionService, args: argparse.Namespace) -> int:
    jobs = []
    for source in args.sources:
        try:
            source_format = args.source_format or infer_format(source)
        except SourceUnreadableError as exc:
            print(f"{source}: {exc}", file=sys.stderr)
            return 1
        jobs.append(service.convert(source, source_format, args.target_format))

    exit_code = 0
    for source, result in zip(args.sources, await asyncio.gather(*jobs)):
        if result.success:
            origin = " (cached)" if result.cached else ""
            print(f"{source} -> {result.output_path}{origin} [{result.duration_ms:.0f}ms]")
        else:
            print(f"{source}: {result.error_kind}: {result.error}", file=sys.stderr)
            exit_code = 1
    return exit_code


async def _run(settings: Settings, args: argparse.Namespace) -> int:
    service = build_service(settings)
    await service.initialize()
    try:
        if args.command == "convert":
            return await _convert(service, args)
        if args.command == "cache-stats":
            stats = service.get_cache_stats()
            print(
                f"entries={stats.entries} total_bytes={stats.total_bytes} "
                f"max_bytes={stats.max_bytes} utilization={stats.utilization}%"
            )
            return 0
        if args.command == "cache-clear":
            await service.clear_cache()
            print("cache cleared")
            return 0
        if args.command == "cache-sweep":
            report = await service.reconcile_cache()
            print(
                f"orphans_removed={len(report.orphans_removed)} "
                f"stale_entries_removed={len(report.stale_entries_removed)} "
                f"bytes_reclaimed={report.bytes_reclaimed}"
            )
            return 0
        for command, installed in service.registry.availability().items():
            print(f"{command}: {'available' if installed else 'missing'}")
        return 0
    finally:
        await service.shutdown()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point: parse args -> load settings -> build service -> run one command."""
    args = _build_parser().parse_args(argv)
    settings = Settings()
    Log.configure(settings.log_level, settings.log_directory, settings.log_retention_days)
    try:
        return asyncio.run(_run(settings, args))
    except KeyboardInterrupt:
        Log.info("Interrupted, shutting down")
        return 130


if __name__ == "__main__":
    sys.exit(main())
