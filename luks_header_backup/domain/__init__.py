"""Domain models for LUKS header backups.

This package contains the type-safe objects passed between discovery,
extraction, naming and replication.
"""

from __future__ import annotations

from .models import (
    ArtifactName,
    Destination,
    DeviceOutcome,
    HeaderBundle,
    LocalTarget,
    LuksDevice,
    OutcomeKind,
    RemoteTarget,
    RunResult,
    TargetFailure,
)


__all__ = [
    "ArtifactName",
    "Destination",
    "DeviceOutcome",
    "HeaderBundle",
    "LocalTarget",
    "LuksDevice",
    "OutcomeKind",
    "RemoteTarget",
    "RunResult",
    "TargetFailure",
]
