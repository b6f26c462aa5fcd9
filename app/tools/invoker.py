import asyncio
import shutil
import tempfile
import time
from pathlib import Path

from app.conversion.exceptions import ConversionTimeoutError, ToolExecutionError
from app.logging.logger import Log
from app.tools.registry import ToolSpec
from app.tools.verifier import OutputVerifier

READ_CHUNK_BYTES = 64 * 1024
DIAGNOSTIC_TAIL_BYTES = 64 * 1024
MESSAGE_DIAGNOSTIC_CHARS = 2000


class _StreamTail:
    """Keeps the last ``limit`` bytes written to it."""

    def __init__(self, limit: int = DIAGNOSTIC_TAIL_BYTES) -> None:
        self._limit = limit
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)
        overflow = len(self._buffer) - self._limit
        if overflow > 0:
            del self._buffer[:overflow]

    def text(self) -> str:
        return self._buffer.decode("utf-8", errors="replace")


class ToolInvoker:
    """Runs one external conversion tool in an isolated work directory."""

    def __init__(
        self,
        verifier: OutputVerifier,
        work_root: Path | None = None,
        kill_grace_ms: int = 5_000,
    ) -> None:
        self._verifier = verifier
        self._work_root = work_root
        self._kill_grace_seconds = kill_grace_ms / 1000

    async def execute(
        self,
        tool: ToolSpec,
        source_path: Path,
        output_path: Path,
        timeout_ms: int,
    ) -> Path:
        """Convert ``source_path`` with ``tool`` and place the result at ``output_path``.

        Raises:
            ConversionTimeoutError: the process outlived ``timeout_ms`` and was terminated.
            ToolExecutionError: the process could not start or exited nonzero.
            OutputNotProducedError: the process exited 0 without a usable file.
        """
        if self._work_root is not None:
            self._work_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="convert-", dir=self._work_root))
        started = time.monotonic()
        try:
            args = tool.build_args(source_path, workdir)
            Log.info(
                f"Running {tool.kind.value} conversion {tool.pair} with {tool.command} "
                f"for {source_path.name}"
            )
            await self._run(tool, args, workdir, timeout_ms)

            produced = workdir / tool.output_name(source_path)
            await self._verifier.verify(produced, tool.pair.target)

            output_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.move, str(produced), str(output_path))
            elapsed_ms = (time.monotonic() - started) * 1000
            Log.info(f"{tool.command} produced {output_path.name} in {elapsed_ms:.0f}ms")
            return output_path
        finally:
            self._remove_workdir(workdir)

    async def _run(
        self,
        tool: ToolSpec,
        args: list[str],
        workdir: Path,
        timeout_ms: int,
    ) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                tool.command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
            )
        except OSError as exc:
            raise ToolExecutionError(f"Could not start {tool.command}: {exc}") from exc

        stdout = _StreamTail()
        stderr = _StreamTail()

        async def communicate() -> int:
            assert process.stdout is not None and process.stderr is not None
            await asyncio.gather(
                self._drain(process.stdout, stdout),
                self._drain(process.stderr, stderr),
            )
            return await process.wait()

        try:
            exit_code = await asyncio.wait_for(communicate(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            await self._terminate(process)
            raise ConversionTimeoutError(
                f"Conversion timeout after {timeout_ms}ms ({tool.command})"
            ) from None
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        if exit_code != 0:
            diagnostic = stderr.text().strip() or stdout.text().strip()
            raise ToolExecutionError(
                f"{tool.command} failed with code {exit_code}: "
                f"{diagnostic[-MESSAGE_DIAGNOSTIC_CHARS:]}",
                exit_code=exit_code,
                stdout=stdout.text(),
                stderr=stderr.text(),
            )
        if stderr.text().strip():
            Log.debug(f"{tool.command} stderr: {stderr.text().strip()[-MESSAGE_DIAGNOSTIC_CHARS:]}")

    @staticmethod
    async def _drain(stream: asyncio.StreamReader, sink: _StreamTail) -> None:
        while chunk := await stream.read(READ_CHUNK_BYTES):
            sink.feed(chunk)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL once the grace period runs out."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace_seconds)
        except asyncio.TimeoutError:
            Log.warning(f"Process {process.pid} ignored SIGTERM, killing")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    @staticmethod
    def _remove_workdir(workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
        except OSError as exc:
            Log.warning(f"Failed to remove work directory {workdir}: {exc}")
