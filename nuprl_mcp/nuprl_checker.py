"""Run the external `nuprl` checker as a one-shot subprocess."""

import asyncio
import logging
import os
import shlex
import signal
import time
from pathlib import Path

from .library import (
    CheckOutput, MalformedOutputError, NuprlError, ReduceOutput,
    parse_check_output, parse_reduce_output,
)

logger = logging.getLogger(__name__)

NUPRL_COMMAND = shlex.split(os.environ.get("NUPRL", "nuprl"))
DEFAULT_TIMEOUT = float(os.environ.get("NUPRL_TIMEOUT", "60"))

__all__ = [
    "NuprlChecker", "ProcessError", "MalformedOutputError", "NuprlError",
    "NUPRL_COMMAND", "DEFAULT_TIMEOUT",
]


class ProcessError(NuprlError):
    """Checker could not be launched, timed out, or exited abnormally."""
    pass


async def _kill_process_group(proc: asyncio.subprocess.Process):
    """SIGTERM the checker's process group, SIGKILL if it lingers."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except OSError:
        return  # Process group doesn't exist
    try:
        await asyncio.wait_for(proc.wait(), timeout=1.0)
        return
    except asyncio.TimeoutError:
        pass
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except OSError:
        pass  # Already gone
    await proc.wait()


class NuprlChecker:
    """Invokes `nuprl check` and `nuprl reduce`.

    Each call starts a fresh process, writes the input to stdin and decodes
    the single JSON document the checker prints on stdout.
    """

    def __init__(self, command: list[str] | None = None, timeout: float | None = None,
                 env: dict | None = None):
        self.command = list(command) if command else None
        self.timeout = timeout
        self.env = env  # Extra env vars to merge with os.environ

    def _argv(self, *args: str) -> list[str]:
        # Module default is looked up per call so it can be reconfigured
        return [*(self.command or NUPRL_COMMAND), *args]

    async def _run(self, args: list[str], stdin_text: str) -> str:
        """Run the checker and return its stdout.

        Raises ProcessError on launch failure, timeout, death by signal, or a
        non-zero exit with nothing on stdout.
        """
        argv = self._argv(*args)
        timeout = self.timeout if self.timeout is not None else DEFAULT_TIMEOUT

        proc_env = os.environ.copy()
        if self.env:
            proc_env.update(self.env)

        logger.debug("running %s", shlex.join(argv))
        t0 = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=proc_env,
                start_new_session=True,  # New process group for clean kill
            )
        except OSError as e:
            raise ProcessError(f"Failed to launch {argv[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin_text.encode()), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise ProcessError(f"{argv[0]} {args[0]} timed out after {timeout}s")
        finally:
            # Timed out or cancelled
            if proc.returncode is None:
                await _kill_process_group(proc)

        elapsed = time.perf_counter() - t0
        logger.debug("%s %s exited %s in %.0fms", argv[0], args[0], proc.returncode, elapsed * 1000)

        out = stdout.decode(errors="replace")
        if proc.returncode is not None and proc.returncode < 0:
            raise ProcessError(f"{argv[0]} {args[0]} killed by signal {-proc.returncode}")
        if proc.returncode != 0 and not out.strip():
            err = stderr.decode(errors="replace").strip()
            raise ProcessError(f"{argv[0]} {args[0]} exited with status {proc.returncode}: {err[:300]}")
        return out

    async def check(self, text: str, workdir: str | Path) -> CheckOutput:
        """Check document text against the library rooted at workdir.

        Raises ProcessError or MalformedOutputError.
        """
        workdir = Path(workdir)
        out = await self._run(["check", str(workdir)], text)
        return parse_check_output(out)

    async def reduce(self, expr: str, max_steps: int | None = None,
                     library_dir: str | Path | None = None,
                     file: str | Path | None = None) -> ReduceOutput:
        """Reduce expr, to normal form when max_steps is None.

        ``file`` is only passed along with ``library_dir``.
        Raises ProcessError or MalformedOutputError.
        """
        args = ["reduce"]
        if max_steps is not None:
            args += ["-s", str(max_steps)]
        if library_dir is not None:
            args += ["-l", str(library_dir)]
            if file is not None:
                args += ["-f", str(file)]
        out = await self._run(args, expr)
        return parse_reduce_output(out)
