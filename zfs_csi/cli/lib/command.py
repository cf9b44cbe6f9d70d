"""
Child process execution with combined output capture and cancellation.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

LOG = logging.getLogger(__name__)

# How often a running child is checked for cancellation.
POLL_INTERVAL = 0.1


class CommandError(RuntimeError):
    """A child process failed.

    Attributes:
        cmd: Argument vector that was executed
        returncode: Exit status (None if the process was killed by us)
        output: Combined stdout and stderr, verbatim
    """

    def __init__(self, message: str, cmd: Sequence[str], returncode: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output


class CommandTimeout(CommandError):
    """Child process exceeded its deadline and was killed."""

    pass


class CommandCancelled(CommandError):
    """Caller cancelled the request; the child process was killed."""

    pass


@dataclass
class CommandResult:
    cmd: List[str]
    returncode: int
    output: str


def _kill(proc: subprocess.Popen) -> str:
    proc.kill()
    out, _ = proc.communicate()
    return out or ""


def run_command(
    cmd: Sequence[str],
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> CommandResult:
    """
    Run a command and capture its combined stdout and stderr.

    A non-zero exit status is returned, not raised. The child is killed when
    `cancel` is set or `timeout` seconds elapse.

    Args:
        cmd: Argument vector; cmd[0] is the program
        timeout: Deadline in seconds (None or 0 disables)
        cancel: Event signalling that the caller has gone away

    Returns:
        CommandResult with the exit status and output

    Raises:
        CommandError: If the program cannot be started
        CommandTimeout: If the deadline expires
        CommandCancelled: If `cancel` is set while the child is running
    """
    cmd = list(cmd)
    LOG.debug("Running command: %s", " ".join(cmd))

    if cancel is not None and cancel.is_set():
        raise CommandCancelled(f"Command cancelled before start: {cmd[0]}", cmd)

    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except OSError as e:
        raise CommandError(f"Failed to execute {cmd[0]}: {e}", cmd, output=str(e))

    deadline = time.monotonic() + timeout if timeout else None
    while True:
        wait = POLL_INTERVAL if cancel is not None else None
        if deadline is not None:
            remaining = max(deadline - time.monotonic(), 0)
            wait = remaining if wait is None else min(wait, remaining)
        try:
            out, _ = proc.communicate(timeout=wait)
            return CommandResult(cmd=cmd, returncode=proc.returncode, output=out or "")
        except subprocess.TimeoutExpired:
            pass

        if cancel is not None and cancel.is_set():
            out = _kill(proc)
            LOG.warning("Killed cancelled command: %s", " ".join(cmd))
            raise CommandCancelled(f"Command cancelled: {cmd[0]}", cmd, output=out)
        if deadline is not None and time.monotonic() >= deadline:
            out = _kill(proc)
            LOG.warning("Killed command after %ss timeout: %s", timeout, " ".join(cmd))
            raise CommandTimeout(f"Command timed out after {timeout}s: {cmd[0]}", cmd, output=out)
