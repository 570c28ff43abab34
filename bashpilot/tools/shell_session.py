"""Persistent bash session shared by every bash tool call.

Commands run one at a time in a single long-lived shell, so the working
directory, exported variables and shell functions survive between calls.
The shell's stdout and stderr are plain byte streams, so each command is
followed by echo statements that print a per-session sentinel (and, on
stdout, the command's exit status). Output is read line by line up to the
sentinel on each stream.
"""

import asyncio
import secrets
import shlex
from enum import Enum

from bashpilot.exceptions import ShellSessionError, ShellSpawnError
from bashpilot.logging import get_logger
from bashpilot.tools.shell import CommandExecutor, CommandOutput, decode_output

log = get_logger(__name__)

# First attempt plus one respawn-and-retry.
MAX_ATTEMPTS = 2

_STREAM_LIMIT = 16 * 1024 * 1024
_EXIT_REAP_SECONDS = 5.0


class SessionState(str, Enum):
    """Lifecycle of the shared shell process."""

    NO_SESSION = "no_session"
    READY = "ready"
    EXECUTING = "executing"
    TERMINATED = "terminated"


class _SessionLost(Exception):
    """The shell stopped answering (EOF, broken pipe)."""


def parse_exit_request(command: str) -> int | None:
    """Return the status requested by a leading ``exit`` builtin.

    ``exit`` with no argument reports 1. Returns None when the command does
    not start with ``exit``. Shell operators end the word, so ``exit;`` and
    ``exit&&true`` count as well.
    """
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        parts = list(lexer)
    except ValueError:
        # Unbalanced quotes: bash reports a syntax error and keeps running.
        return None
    if not parts or parts[0] != "exit":
        return None
    if len(parts) == 1:
        return 1
    try:
        return int(parts[1])
    except ValueError:
        return 1


class StatefulShellExecutor(CommandExecutor):
    """Run commands in one persistent shell process."""

    def __init__(self, executable: str = "bash", timeout: float | None = None):
        self.executable = executable
        self.timeout = timeout
        self._process: asyncio.subprocess.Process | None = None
        self._marker = ""
        self._lock = asyncio.Lock()
        self._state = SessionState.NO_SESSION
        self._closed = False

    @property
    def pid(self) -> int | None:
        """PID of the current shell, if one is running."""
        if self._process is None or self._process.returncode is not None:
            return None
        return self._process.pid

    @property
    def state(self) -> SessionState:
        return self._state

    def _is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def _spawn(self) -> None:
        """Replace the current shell (if any) with a fresh one."""
        await self._discard()
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.executable,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            self._state = SessionState.NO_SESSION
            raise ShellSpawnError(self.executable, str(e))

        self._marker = f"__BASHPILOT_END_{self._process.pid}_{secrets.token_hex(4)}__"
        self._state = SessionState.READY
        log.debug("Shell session started", pid=self._process.pid)

    async def _discard(self) -> None:
        """Kill and forget the current shell."""
        process = self._process
        self._process = None
        if process is None:
            return
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        if process.stdin is not None:
            process.stdin.close()
        await process.wait()
        log.debug("Shell session discarded", pid=process.pid, returncode=process.returncode)

    async def _write(self, data: str) -> None:
        assert self._process is not None and self._process.stdin is not None
        try:
            self._process.stdin.write(data.encode("utf-8"))
            await self._process.stdin.drain()
        except OSError as e:
            raise _SessionLost(f"write failed: {e}")

    async def _read_until_marker(self, stream: asyncio.StreamReader) -> tuple[str, str]:
        """Read ``stream`` up to the sentinel line.

        Returns:
            (output before the sentinel, text after it on the same line)
        """
        chunks: list[str] = []
        while True:
            try:
                line = await stream.readline()
            except ValueError as e:
                raise _SessionLost(f"read failed: {e}")
            if not line:
                raise _SessionLost("shell closed its output")
            text = decode_output(line)
            position = text.find(self._marker)
            if position >= 0:
                # Output without a trailing newline shares the sentinel's line.
                chunks.append(text[:position])
                return "".join(chunks), text[position + len(self._marker):].strip()
            chunks.append(text)

    async def _collect(self) -> tuple[str, str, str]:
        """Drain stdout and stderr concurrently up to their sentinels."""
        assert self._process is not None
        stdout_task = asyncio.ensure_future(self._read_until_marker(self._process.stdout))
        stderr_task = asyncio.ensure_future(self._read_until_marker(self._process.stderr))
        tasks = {stdout_task, stderr_task}
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                error = task.exception()
                if error is not None:
                    raise error
            stdout, status = stdout_task.result()
            stderr, _ = stderr_task.result()
            return stdout, stderr, status
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, command: str) -> CommandOutput:
        """Submit one framed command and wait for both sentinels."""
        exit_request = parse_exit_request(command)
        framed = (
            f"eval {shlex.quote(command)} < /dev/null\n"
            f'echo "{self._marker}$?"\n'
            f'echo "{self._marker}" >&2\n'
        )

        self._state = SessionState.EXECUTING
        try:
            await self._write(framed)
            if self.timeout:
                stdout, stderr, status = await asyncio.wait_for(self._collect(), timeout=self.timeout)
            else:
                stdout, stderr, status = await self._collect()
        except _SessionLost:
            if exit_request is None:
                raise
            # The shell ran the exit builtin; the sentinels never come.
            await self._reap()
            self._state = SessionState.TERMINATED
            log.info("Shell session exited", status=exit_request)
            return CommandOutput(exit_code=exit_request, error=f"exit status {exit_request}")
        except asyncio.TimeoutError:
            await self._discard()
            self._state = SessionState.NO_SESSION
            raise ShellSessionError(
                command,
                f"Command timed out after {self.timeout}s; the bash session was reset",
            )

        self._state = SessionState.READY
        try:
            exit_code: int | None = int(status)
        except ValueError:
            exit_code = None
        error = None
        if exit_code is not None and exit_code != 0:
            error = f"exit status {exit_code}"
        return CommandOutput(stdout=stdout, stderr=stderr, exit_code=exit_code, error=error)

    async def _reap(self) -> None:
        """Wait for a shell that is expected to exit on its own."""
        process = self._process
        if process is None:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=_EXIT_REAP_SECONDS)
        except asyncio.TimeoutError:
            await self._discard()

    async def execute(self, command: str) -> CommandOutput:
        """Run ``command`` in the persistent shell.

        A dead shell is respawned once per call; the command is retried once
        if the shell dies while running it.

        Raises:
            ShellSpawnError: the shell binary could not be started
            ShellSessionError: the retry was exhausted or the command timed out
        """
        async with self._lock:
            if self._closed:
                raise ShellSessionError(command, "Bash session is closed")

            last_error: _SessionLost | None = None
            for attempt in range(1, MAX_ATTEMPTS + 1):
                if not self._is_alive():
                    if self._process is not None:
                        log.info("Shell session found dead; respawning", attempt=attempt)
                    await self._spawn()
                try:
                    return await self._run(command)
                except _SessionLost as e:
                    last_error = e
                    log.warning("Shell session lost", command=command, attempt=attempt, error=str(e))
                    await self._discard()
                    self._state = SessionState.NO_SESSION
                    if self._closed:
                        break

            raise ShellSessionError(
                command,
                f"Bash session failed after {MAX_ATTEMPTS} attempts: {last_error}",
            )

    async def restart(self) -> str:
        """Kill the current shell and start a fresh one.

        Waits for any in-flight command to finish first.
        """
        async with self._lock:
            self._closed = False
            await self._spawn()
        log.info("Shell session restarted", pid=self.pid)
        return "Stateful bash session restarted"

    async def close(self) -> None:
        """Terminate the shell."""
        self._closed = True
        await self._discard()
        self._state = SessionState.NO_SESSION
