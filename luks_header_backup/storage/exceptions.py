"""Custom exceptions for header backup operations.

This module defines a hierarchy of exceptions so callers can tell a fatal
discovery problem apart from a per-device extraction failure or a single
unreachable destination.

Exception Hierarchy:
    BackupError (base)
        ├── ConfigurationError
        ├── CommandError
        ├── DiscoveryError
        ├── ExtractionError
        └── ReplicationFailure

Usage:
    from luks_header_backup.storage.exceptions import ExtractionError

    raise ExtractionError(device, "backup", error)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from luks_header_backup.domain.models import Destination, LuksDevice


class BackupError(Exception):
    """Base exception for all header backup operations."""


class ConfigurationError(BackupError):
    """The run was configured in a way that makes any work pointless."""


class CommandError(BackupError):
    """An external program exited non-zero, timed out, or could not start."""

    def __init__(self, command: Sequence[str], returncode: int | None, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            status = "did not complete"
        else:
            status = f"failed with exit code {returncode}"
        msg = f"Command {' '.join(self.command)} {status}"
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class DiscoveryError(BackupError):
    """Block device enumeration failed or returned unusable output."""


class ExtractionError(BackupError):
    """Creating the header bundle for one device failed."""

    def __init__(self, device: LuksDevice, stage: str, cause: object):
        self.device = device
        self.stage = stage
        self.cause = cause
        super().__init__(f"Header {stage} failed for {device.path} ({device.uuid}): {cause}")


class ReplicationFailure(BackupError):
    """Copying an artifact to one destination failed."""

    def __init__(self, target: Destination, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Copy to {target.describe()} failed: {reason}")
