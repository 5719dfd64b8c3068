"""Command execution with timeouts and uniform failure reporting."""

from __future__ import annotations

import subprocess
from typing import Sequence

from luks_header_backup.config import settings
from luks_header_backup.logging import get_logger

from .exceptions import CommandError

log = get_logger(source=__name__, tags=["command"])
output_log = get_logger(source=__name__, tags=["command", "command-output"])


def default_timeout() -> int:
    return settings.get_int("command_timeout_seconds", settings.DEFAULT_COMMAND_TIMEOUT_SECONDS)


def run_command(
    command: Sequence[str],
    *,
    timeout: float | None = None,
    ok_returncodes: Sequence[int] = (0,),
) -> subprocess.CompletedProcess:
    """Run a command and raise CommandError unless it exits cleanly.

    Args:
        command: Program and arguments, never passed through a shell
        timeout: Seconds before the process is killed; defaults to the
            command_timeout_seconds setting
        ok_returncodes: Exit codes treated as success

    Raises:
        CommandError: Non-zero exit, timeout, missing binary or undecodable output
    """
    command = list(command)
    if timeout is None:
        timeout = default_timeout()
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as error:
        log.debug(f"Command timed out after {timeout}s: {' '.join(command)}")
        raise CommandError(command, None, f"timed out after {timeout}s") from error
    except (OSError, UnicodeDecodeError) as error:
        log.debug(f"Command could not run: {' '.join(command)}: {error}")
        raise CommandError(command, None, str(error)) from error

    stderr = result.stderr.strip() if result.stderr else ""
    if result.returncode not in ok_returncodes:
        if result.stdout:
            output_log.trace(f"stdout: {result.stdout.strip()}")
        if stderr:
            output_log.trace(f"stderr: {stderr}")
        raise CommandError(command, result.returncode, stderr)
    log.debug(f"Command completed with return code {result.returncode}")
    return result
