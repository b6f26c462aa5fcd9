from collections.abc import Iterator
from pathlib import Path

import pytest

from app.cache.store import ConversionCache
from app.conversion.service import ConversionService
from app.logging.logger import Log
from app.main import main
from app.tools.invoker import ToolInvoker
from app.tools.registry import ToolRegistry
from app.tools.verifier import OutputVerifier
from tests.conftest import ToolFactory


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CACHE_DIRECTORY", str(tmp_path / "cache"))
    monkeypatch.setenv("OUTPUT_DIRECTORY", str(tmp_path / "output"))
    monkeypatch.delenv("LOG_DIRECTORY", raising=False)
    yield
    Log.reset()


@pytest.fixture()
def python_service(
    tmp_path: Path, python_tool: ToolFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Route the CLI to a service whose only tool is an inline Python copy script."""

    def build(_settings: object) -> ConversionService:
        return ConversionService(
            cache=ConversionCache(tmp_path / "cache", max_size_bytes=10_000, max_age_seconds=60),
            registry=ToolRegistry([python_tool()]),
            invoker=ToolInvoker(OutputVerifier(), work_root=tmp_path / "work"),
            output_dir=tmp_path / "output",
            tool_timeout_ms=10_000,
        )

    monkeypatch.setattr("app.main.build_service", build)


class TestConvertCommand:
    def test_converts_and_reports_cache_hit(
        self,
        python_service: None,
        text_file: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        assert main(["convert", str(text_file), "--to", "pdf"]) == 0
        assert main(["convert", str(text_file), "--to", "pdf"]) == 0

        lines = capsys.readouterr().out.splitlines()
        results = [line for line in lines if line.startswith(str(text_file))]
        assert len(results) == 2
        assert "(cached)" not in results[0]
        assert "(cached)" in results[1]

    def test_explicit_source_format(
        self, python_service: None, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        source = tmp_path / "notes"
        source.write_bytes(b"plain text")

        assert main(["convert", str(source), "--from", "txt", "--to", "pdf"]) == 0

    def test_file_without_extension_needs_from(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        source = tmp_path / "notes"
        source.write_bytes(b"plain text")

        assert main(["convert", str(source), "--to", "pdf"]) == 1
        assert "no file extension" in capsys.readouterr().err

    def test_unsupported_pair_exits_nonzero(
        self, text_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["convert", str(text_file), "--to", "mp3"]) == 1
        assert "unsupported_conversion" in capsys.readouterr().err

    def test_target_is_required(self) -> None:
        with pytest.raises(SystemExit):
            main(["convert", "a.txt"])


class TestCacheCommands:
    def test_cache_stats_on_empty_cache(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["cache-stats"]) == 0
        assert "entries=0 total_bytes=0" in capsys.readouterr().out

    def test_cache_clear(
        self, python_service: None, text_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["convert", str(text_file), "--to", "pdf"])

        assert main(["cache-clear"]) == 0
        main(["cache-stats"])

        assert "entries=0" in capsys.readouterr().out

    def test_cache_sweep(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        orphan = tmp_path / "cache" / "artifacts" / "orphan.pdf"
        orphan.parent.mkdir(parents=True)
        orphan.write_bytes(b"abc")

        assert main(["cache-sweep"]) == 0

        assert "orphans_removed=1" in capsys.readouterr().out
        assert not orphan.exists()


class TestToolsCommand:
    def test_lists_configured_binaries(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("GHOSTSCRIPT_BINARY", "definitely-not-installed-gs")

        assert main(["tools"]) == 0

        out = capsys.readouterr().out
        assert "definitely-not-installed-gs: missing" in out
        assert "soffice:" in out
