"""Run an external tool with a hard wall-clock deadline."""
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from flask import current_app


DEFAULT_TIMEOUT_SEC = 300


@dataclass
class ProcessResult:
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.error is None and self.returncode == 0

    def describe(self) -> str:
        if self.timed_out:
            return "process timed out"
        if self.error:
            return self.error
        tail = (self.stderr or "").strip().splitlines()[-3:]
        return f"exit code {self.returncode}: {' | '.join(tail)}"


def run_process(command: str, args: Sequence[str], timeout: float = DEFAULT_TIMEOUT_SEC) -> ProcessResult:
    """Start ``command`` and wait at most ``timeout`` seconds.

    On expiry the process is killed (SIGKILL, not terminate) and reaped, and
    the result is marked ``timed_out``. Spawn failures come back as a result
    with ``error`` set; this function does not raise for them.
    """
    argv = [command, *[str(a) for a in args]]
    try:
        proc = subprocess.Popen(  # noqa: S603 - argv built from configuration
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
    except OSError as e:
        current_app.logger.error("Could not start %s: %s", command, e)
        return ProcessResult(error=f"could not start {command}: {e}")

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        stdout, stderr = proc.communicate()
        current_app.logger.warning("%s exceeded %ss and was killed (pid %s)", command, timeout, proc.pid)
        return ProcessResult(returncode=proc.returncode, stdout=stdout or "", stderr=stderr or "", timed_out=True)

    return ProcessResult(returncode=proc.returncode, stdout=stdout or "", stderr=stderr or "")
