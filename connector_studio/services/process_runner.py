"""
Process runner.

Launches external programs (the `pac` CLI, stdio MCP servers under test)
with `asyncio` subprocesses and enforces the rules every caller relies on:

    - stdout and stderr are read incrementally and capped at
      `max_output_bytes` per stream;
    - every program runs in its own process group (a new session on POSIX),
      and killing it kills the whole group, so servers started through a
      shell or a launcher such as `npx` do not outlive the run;
    - a timer is armed at launch; on expiry the process group is killed and
      `ProcessTimeout` is raised with the output captured so far;
    - a non-zero exit raises `CommandFailed` with the exit code and stderr;
    - a program that cannot be started raises `LaunchError`;
    - `ProcessRun.cancel()` kills the process and makes `wait()` raise
      `ProcessCancelled`;
    - if the coroutine awaiting the run is itself cancelled, the process is
      killed before the `asyncio.CancelledError` propagates.
"""

import asyncio
import logging
import os
import shlex
import signal
import subprocess
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from connector_studio.core.errors import CommandFailed, LaunchError, ProcessCancelled, ProcessTimeout

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
KILL_GRACE = 2.0
TRUNCATED_MARKER = "\n[output truncated]"

if os.name == "nt":
    GROUP_OPTIONS = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
else:
    GROUP_OPTIONS = {"start_new_session": True}


@dataclass
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str


class _CappedBuffer:
    """Keeps the first `limit` bytes of a stream and counts the rest."""

    def __init__(self, limit: int):
        self.limit = limit
        self._chunks = []
        self._size = 0
        self.dropped = 0

    def write(self, chunk: bytes) -> None:
        room = self.limit - self._size
        if room > 0:
            kept = chunk[:room]
            self._chunks.append(kept)
            self._size += len(kept)
        self.dropped += max(0, len(chunk) - max(room, 0))

    def text(self) -> str:
        text = b"".join(self._chunks).decode("utf-8", errors="replace")
        return text + TRUNCATED_MARKER if self.dropped else text


class ProcessRun:
    """
    Handle on a launched process.

    Created by `ProcessRunner.start`; `wait()` must be awaited exactly once.
    """

    def __init__(self, process: asyncio.subprocess.Process, display: str, timeout: float,
                 input: Optional[bytes], max_output_bytes: int):
        self.process = process
        self.display = display
        self.timeout = timeout
        self._input = input
        self._stdout = _CappedBuffer(max_output_bytes)
        self._stderr = _CappedBuffer(max_output_bytes)
        self._cancel_requested = asyncio.Event()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdout(self) -> str:
        return self._stdout.text()

    @property
    def stderr(self) -> str:
        return self._stderr.text()

    def cancel(self) -> None:
        """Kill the process; the pending `wait()` raises `ProcessCancelled`."""

        self._cancel_requested.set()
        self._kill()

    async def wait(self) -> ProcessResult:
        """
        Wait for the process to exit, enforcing the timeout.

        Returns:
            ProcessResult: Exit code 0, trimmed stdout, and stderr.

        Raises:
            ProcessTimeout: The process outlived its timeout and was killed.
            ProcessCancelled: `cancel()` was called.
            CommandFailed: The process exited with a non-zero code.
        """

        completion = asyncio.ensure_future(self._communicate())
        cancelled = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {completion, cancelled},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            logger.info("Run of %s abandoned by caller, killing pid %s", self.display, self.pid)
            await self._terminate(completion)
            raise
        finally:
            cancelled.cancel()

        if self._cancel_requested.is_set():
            await self._terminate(completion)
            logger.info("Run of %s cancelled (pid %s)", self.display, self.pid)
            raise ProcessCancelled(self.display, self.stdout, self.stderr)
        elif completion in done:
            exit_code = completion.result()
        else:
            await self._terminate(completion)
            logger.warning("Run of %s timed out after %ss (pid %s)", self.display, self.timeout, self.pid)
            raise ProcessTimeout(self.display, self.timeout, self.stdout, self.stderr)

        if exit_code != 0:
            logger.info("%s exited with code %s", self.display, exit_code)
            raise CommandFailed(self.display, exit_code, self.stdout, self.stderr)

        logger.debug("%s exited with code 0", self.display)
        return ProcessResult(exit_code=0, stdout=self.stdout.strip(), stderr=self.stderr)

    async def _communicate(self) -> int:
        readers = [
            self._pump(self.process.stdout, self._stdout),
            self._pump(self.process.stderr, self._stderr),
        ]
        if self._input is not None:
            readers.append(self._feed(self._input))
        await asyncio.gather(*readers)
        return await self.process.wait()

    async def _feed(self, data: bytes) -> None:
        stdin = self.process.stdin
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("%s closed stdin before reading all input", self.display)
        finally:
            stdin.close()

    @staticmethod
    async def _pump(stream: asyncio.StreamReader, buffer: _CappedBuffer) -> None:
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                break
            buffer.write(chunk)

    def _kill(self) -> None:
        # The group outlives the direct child while a descendant still runs.
        if os.name == "nt":
            subprocess.run(["taskkill", "/F", "/T", "/PID", str(self.pid)],
                           stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False)
        else:
            try:
                os.killpg(self.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass

    async def _terminate(self, completion: "asyncio.Future[int]") -> None:
        self._kill()
        try:
            await asyncio.wait_for(asyncio.shield(completion), KILL_GRACE)
        except asyncio.TimeoutError:
            # A descendant that left the group may still hold the pipes open.
            completion.cancel()
            logger.warning("Output of %s still open %ss after kill", self.display, KILL_GRACE)
        except Exception:
            logger.debug("Error while draining %s after kill", self.display, exc_info=True)


class ProcessRunner:
    """
    Starts external commands with a bounded lifetime.

    Example:
        >>> runner = ProcessRunner(default_timeout=30)
        >>> result = await runner.run("pac", ["connector", "list"])
        >>> print(result.stdout)
    """

    def __init__(self, default_timeout: float = 30.0, max_output_bytes: int = 1024 * 1024):
        self.default_timeout = default_timeout
        self.max_output_bytes = max_output_bytes

    async def start(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        input: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessRun:
        """
        Launch `command` with `args`.

        Args:
            command (str): Executable name or path.
            args (Sequence[str]): Arguments, passed without a shell.
            timeout (float): Seconds before the process is killed (default: runner default).
            input (bytes): Data written to stdin, which is then closed.
            env (dict): Extra environment variables, merged over the current environment.
            cwd (str): Working directory.

        Raises:
            LaunchError: The program could not be started.
        """

        display = shlex.join([command, *args])
        full_env = {**os.environ, **env} if env else None

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=full_env,
                cwd=cwd,
                **GROUP_OPTIONS,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise LaunchError(f"Cannot launch {command}: {e.strerror or e}")
        except OSError as e:
            raise LaunchError(f"Cannot launch {command}: {e}")

        logger.debug("Started %s (pid %s)", display, process.pid)
        return ProcessRun(
            process,
            display,
            timeout if timeout is not None else self.default_timeout,
            input,
            self.max_output_bytes,
        )

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        input: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessResult:
        """Launch a command and wait for it; see `ProcessRun.wait` for the errors raised."""

        run = await self.start(command, args, timeout=timeout, input=input, env=env, cwd=cwd)
        return await run.wait()
