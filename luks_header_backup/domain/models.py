"""Domain model for LUKS header backups.

Every object here lives for one run at most: devices are discovered fresh,
bundles are discarded after replication, and the run result is terminal once
the last device has been recorded.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

from luks_header_backup.storage.exceptions import ConfigurationError

EXIT_OK = 0
EXIT_FAILURE = 1


# ==============================================================================
# Device Domain
# ==============================================================================


@dataclass(frozen=True)
class LuksDevice:
    """A block device carrying a LUKS header."""

    path: str  # e.g., "/dev/sda2"
    uuid: str  # LUKS header UUID as reported by the probe

    @property
    def name(self) -> str:
        """Kernel name (e.g., sda2)."""
        return os.path.basename(self.path)

    def format_label(self) -> str:
        return f"{self.path} ({self.uuid})"


@dataclass(frozen=True)
class HeaderBundle:
    """Binary header backup and text dump of one device.

    Owned by the pipeline iteration that created it; call release() once
    replication is over.
    """

    device: LuksDevice
    binary_path: Path
    text_path: Path
    sha256: bytes

    @property
    def sha256_hex(self) -> str:
        return self.sha256.hex()

    @property
    def files(self) -> tuple[Path, Path]:
        return (self.binary_path, self.text_path)

    def release(self) -> None:
        """Remove both files; missing files are fine."""
        for path in self.files:
            path.unlink(missing_ok=True)


@dataclass(frozen=True)
class ArtifactName:
    """File names for the binary bundle and its text dump."""

    binary: str
    text: str
    short_hash: str


# ==============================================================================
# Destination Domain
# ==============================================================================

# [user@]host:path, no whitespace anywhere
_REMOTE_SPEC_RE = re.compile(r"^(?:(?P<user>[^@\s:/]+)@)?(?P<host>\[[0-9A-Fa-f:.]+\]|[^@\s:/\[\]]+):(?P<path>\S*)$")


@dataclass(frozen=True)
class RemoteTarget:
    """An scp destination such as root@backup:/srv/luks/."""

    host: str
    path: str
    user: str | None = None

    @classmethod
    def parse(cls, spec: str) -> RemoteTarget:
        """Parse a [user@]host:path destination.

        Raises:
            ConfigurationError: If the value does not look like a remote spec
        """
        match = _REMOTE_SPEC_RE.match(spec.strip()) if spec else None
        if not match:
            raise ConfigurationError(
                f"Invalid remote destination {spec!r}; expected [user@]host:path"
            )
        return cls(host=match["host"], path=match["path"], user=match["user"])

    @property
    def spec(self) -> str:
        prefix = f"{self.user}@" if self.user else ""
        return f"{prefix}{self.host}:{self.path}"

    def destination_for(self, filename: str) -> str:
        """scp destination for one file placed inside this target."""
        if not self.path or self.path.endswith("/"):
            return f"{self.spec}{filename}"
        return f"{self.spec}/{filename}"

    def describe(self) -> str:
        return self.spec


@dataclass(frozen=True)
class LocalTarget:
    """A directory on this host that receives copies of every bundle."""

    path: Path

    def describe(self) -> str:
        return str(self.path)


Destination = Union[RemoteTarget, LocalTarget]


# ==============================================================================
# Outcome Domain
# ==============================================================================


class OutcomeKind(Enum):
    """Result of processing one device."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    EXTRACTION_FAILURE = "extraction_failure"


@dataclass(frozen=True)
class TargetFailure:
    """One destination that did not receive the full artifact pair."""

    target: Destination
    reason: str


@dataclass(frozen=True)
class DeviceOutcome:
    kind: OutcomeKind
    failed_targets: tuple[TargetFailure, ...] = ()
    reason: str | None = None
    artifacts: ArtifactName | None = None

    @classmethod
    def success(cls, artifacts: ArtifactName | None = None) -> DeviceOutcome:
        return cls(OutcomeKind.SUCCESS, artifacts=artifacts)

    @classmethod
    def partial_failure(
        cls, failures: tuple[TargetFailure, ...], artifacts: ArtifactName | None = None
    ) -> DeviceOutcome:
        return cls(OutcomeKind.PARTIAL_FAILURE, failed_targets=tuple(failures), artifacts=artifacts)

    @classmethod
    def extraction_failure(cls, reason: str) -> DeviceOutcome:
        return cls(OutcomeKind.EXTRACTION_FAILURE, reason=reason)

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"outcome": self.kind.value}
        if self.artifacts is not None:
            data["artifacts"] = [self.artifacts.binary, self.artifacts.text]
        if self.failed_targets:
            data["failed_targets"] = [
                {"target": failure.target.describe(), "reason": failure.reason}
                for failure in self.failed_targets
            ]
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class RunResult:
    """Per-device outcomes of one run, in processing order."""

    per_device_results: list[tuple[LuksDevice, DeviceOutcome]] = field(default_factory=list)

    def record(self, device: LuksDevice, outcome: DeviceOutcome) -> None:
        self.per_device_results.append((device, outcome))

    @property
    def succeeded(self) -> bool:
        """True when every device succeeded; an empty run counts as success."""
        return all(outcome.succeeded for _, outcome in self.per_device_results)

    @property
    def failed_devices(self) -> list[tuple[LuksDevice, DeviceOutcome]]:
        return [(device, outcome) for device, outcome in self.per_device_results if not outcome.succeeded]

    @property
    def exit_code(self) -> int:
        return EXIT_OK if self.succeeded else EXIT_FAILURE

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "exit_code": self.exit_code,
            "devices": [
                {"path": device.path, "uuid": device.uuid, **outcome.to_dict()}
                for device, outcome in self.per_device_results
            ],
        }
