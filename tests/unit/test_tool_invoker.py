import asyncio
from pathlib import Path

import pytest

from app.conversion.exceptions import (
    ConversionTimeoutError,
    OutputNotProducedError,
    ToolExecutionError,
)
from app.tools.invoker import ToolInvoker, _StreamTail
from app.tools.registry import ToolSpec
from app.tools.verifier import OutputVerifier
from tests.conftest import FAIL_SCRIPT, NOOP_SCRIPT, SLEEP_SCRIPT, ToolFactory


def _make_invoker(tmp_path: Path, kill_grace_ms: int = 1_000) -> ToolInvoker:
    return ToolInvoker(OutputVerifier(), work_root=tmp_path / "work", kill_grace_ms=kill_grace_ms)


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_moves_output_to_requested_path(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)
        output = tmp_path / "out" / "a.pdf"

        result = await invoker.execute(python_tool(), text_file, output, timeout_ms=10_000)

        assert result == output
        assert output.read_bytes() == b"0123456789"

    @pytest.mark.asyncio
    async def test_does_not_touch_source(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)

        await invoker.execute(python_tool(), text_file, tmp_path / "a.pdf", timeout_ms=10_000)

        assert text_file.read_bytes() == b"0123456789"

    @pytest.mark.asyncio
    async def test_removes_work_directory(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)

        await invoker.execute(python_tool(), text_file, tmp_path / "a.pdf", timeout_ms=10_000)

        assert list((tmp_path / "work").iterdir()) == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_diagnostics(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)

        with pytest.raises(ToolExecutionError, match="code 3") as exc_info:
            await invoker.execute(
                python_tool(FAIL_SCRIPT), text_file, tmp_path / "a.pdf", timeout_ms=10_000
            )

        assert exc_info.value.exit_code == 3
        assert "boom: bad input" in exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_missing_output_raises(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)

        with pytest.raises(OutputNotProducedError):
            await invoker.execute(
                python_tool(NOOP_SCRIPT), text_file, tmp_path / "a.pdf", timeout_ms=10_000
            )

    @pytest.mark.asyncio
    async def test_timeout_terminates_process(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(ConversionTimeoutError, match="200ms"):
            await invoker.execute(
                python_tool(SLEEP_SCRIPT), text_file, tmp_path / "a.pdf", timeout_ms=200
            )

        assert loop.time() - started < 10

    @pytest.mark.asyncio
    async def test_missing_binary_raises_tool_execution_error(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)
        spec = python_tool()
        missing = ToolSpec(
            pair=spec.pair,
            kind=spec.kind,
            command=str(tmp_path / "no-such-binary"),
            build_args=spec.build_args,
            output_name=spec.output_name,
        )

        with pytest.raises(ToolExecutionError, match="Could not start"):
            await invoker.execute(missing, text_file, tmp_path / "a.pdf", timeout_ms=10_000)

    @pytest.mark.asyncio
    async def test_cancellation_terminates_process(
        self, tmp_path: Path, text_file: Path, python_tool: ToolFactory
    ) -> None:
        invoker = _make_invoker(tmp_path)
        running = asyncio.ensure_future(
            invoker.execute(
                python_tool(SLEEP_SCRIPT), text_file, tmp_path / "a.pdf", timeout_ms=60_000
            )
        )
        await asyncio.sleep(0.3)

        running.cancel()

        with pytest.raises(asyncio.CancelledError):
            await running
        assert list((tmp_path / "work").iterdir()) == []


class TestStreamTail:
    def test_keeps_only_the_last_bytes(self) -> None:
        tail = _StreamTail(limit=4)
        tail.feed(b"abc")
        tail.feed(b"defg")
        assert tail.text() == "defg"

    def test_decodes_invalid_utf8(self) -> None:
        tail = _StreamTail()
        tail.feed(b"\xffok")
        assert tail.text().endswith("ok")
