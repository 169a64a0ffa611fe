"""
Async subprocess runner for the external assistant CLI.

Spawns the assistant with a prompt, streams its stdout line by line as
soon as each newline arrives, and reports how the process ended.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

from yolorelay.errors import SpawnFailure

logger = logging.getLogger(__name__)

# Max bytes buffered for a single output line
STREAM_LIMIT = 10 * 1024 * 1024


@dataclass(frozen=True)
class ExitOutcome:
    """How an assistant run ended."""

    exit_code: Optional[int]
    stderr: str = ""
    timed_out: bool = False
    reported_errors: tuple = ()

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.reported_errors


def decode_output_line(line: str):
    """
    Interpret one line of assistant output.

    Line-delimited JSON records with a string ``content`` field yield that
    content; records with a string ``error`` field are reported as errors.
    Every other line is plain text and passes through unchanged.

    Returns:
        (text, error) where at most one is not None
    """
    stripped = line.strip()
    if not stripped.startswith("{"):
        return line, None
    try:
        record = json.loads(stripped)
    except json.JSONDecodeError:
        return line, None
    if not isinstance(record, dict):
        return line, None

    content = record.get("content")
    if isinstance(content, str):
        return content, None
    error = record.get("error")
    if isinstance(error, str):
        return None, error
    return line, None


class ProcessHandle:
    """Owns one running assistant process until its exit status is collected."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        timeout: Optional[float] = None,
        limit: int = STREAM_LIMIT,
    ):
        self._process = process
        self._limit = limit
        self._loop = asyncio.get_running_loop()
        self._deadline = self._loop.time() + timeout if timeout else None
        self._timed_out = False
        self._errors: list[str] = []
        self._stderr_task = asyncio.create_task(process.stderr.read())

    @property
    def pid(self) -> int:
        return self._process.pid

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - self._loop.time(), 0.0)

    def kill(self) -> None:
        """Kill the process if it is still running. Safe to call more than once."""
        if self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass

    def _expire(self) -> None:
        self._timed_out = True
        logger.warning("Assistant (pid %s) exceeded its deadline, killing it", self.pid)
        self.kill()

    async def lines(self) -> AsyncIterator[str]:
        """Yield decoded output lines until stdout closes or the run is stopped."""
        while True:
            try:
                raw = await asyncio.wait_for(self._process.stdout.readline(), timeout=self._remaining())
            except asyncio.TimeoutError:
                self._expire()
                return
            except ValueError:
                # readline raises once a line outgrows the stream buffer
                error = f"output line longer than {self._limit} bytes, assistant stopped"
                logger.error("Assistant (pid %s): %s", self.pid, error)
                self._errors.append(error)
                self.kill()
                return
            if not raw:
                return

            text, error = decode_output_line(raw.decode("utf-8", errors="replace"))
            if error is not None:
                logger.warning("Assistant reported an error: %s", error)
                self._errors.append(error)
                continue
            if text:
                yield text

    async def wait(self) -> ExitOutcome:
        """Wait for the process to exit and collect its stderr."""
        if not self._timed_out:
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self._remaining())
            except asyncio.TimeoutError:
                self._expire()
        exit_code = await self._process.wait()
        stderr = (await self._stderr_task).decode("utf-8", errors="replace")

        if self._errors:
            stderr = "\n".join(self._errors + ([stderr] if stderr.strip() else []))
        outcome = ExitOutcome(
            exit_code=exit_code,
            stderr=stderr,
            timed_out=self._timed_out,
            reported_errors=tuple(self._errors),
        )
        logger.info("Assistant (pid %s) finished: exit=%s timed_out=%s", self.pid, exit_code, self._timed_out)
        return outcome


class AssistantRunner:
    """
    Launches the assistant CLI for a prompt.

    The prompt is always the last argument, after any configured flags.
    """

    def __init__(
        self,
        command: str = "claude",
        args: Sequence[str] = ("--dangerously-skip-permissions",),
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        limit: int = STREAM_LIMIT,
    ):
        self.command = command
        self.args = tuple(args)
        self.timeout = timeout
        self.cwd = cwd
        self.limit = limit

    def argv(self, prompt: str) -> list[str]:
        return [self.command, *self.args, prompt]

    async def start(self, prompt: str) -> ProcessHandle:
        """
        Spawn the assistant.

        Raises:
            SpawnFailure: the binary is missing or cannot be executed
        """
        argv = self.argv(prompt)
        logger.info("Executing %s with prompt: %s", self.command, prompt[:80])
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                limit=self.limit,
            )
        except OSError as e:
            raise SpawnFailure(self.command, e) from e
        return ProcessHandle(process, timeout=self.timeout, limit=self.limit)
