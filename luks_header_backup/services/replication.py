"""Replication of header bundles to every configured destination.

A device only counts as backed up when every destination holds both the
binary image and the text dump. The replicator therefore attempts every
destination even after one fails, and returns the full list of failures
so a single run reports every unreachable target.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, Sequence

from luks_header_backup.domain.models import (
    ArtifactName,
    Destination,
    DeviceOutcome,
    HeaderBundle,
    LocalTarget,
    TargetFailure,
)
from luks_header_backup.logging import LoggerFactory
from luks_header_backup.storage.exceptions import (
    CommandError,
    ConfigurationError,
    ReplicationFailure,
)
from luks_header_backup.storage.tools import LocalCopyTransport, ScpTransport

log = LoggerFactory.for_replication(job_id="-")


class Transport(Protocol):
    def copy(self, local_path: Path, target) -> None: ...


class Replicator:
    def __init__(
        self,
        transport: Transport | None = None,
        local_transport: Transport | None = None,
    ):
        self.transport = transport or ScpTransport()
        self.local_transport = local_transport or LocalCopyTransport()

    def _transport_for(self, target: Destination) -> Transport:
        if isinstance(target, LocalTarget):
            return self.local_transport
        return self.transport

    def replicate(
        self,
        bundle: HeaderBundle,
        names: ArtifactName,
        targets: Sequence[Destination],
    ) -> tuple[TargetFailure, ...]:
        """Copy the artifact pair to each target in order.

        Returns:
            One TargetFailure per target that did not receive both files;
            empty when every target succeeded.

        Raises:
            ConfigurationError: If no targets were given
        """
        if not targets:
            raise ConfigurationError("No backup destinations configured")

        failures: list[TargetFailure] = []
        for target in targets:
            failure = self._replicate_to(bundle, names, target)
            if failure is not None:
                failures.append(failure)
        return tuple(failures)

    def _replicate_to(
        self, bundle: HeaderBundle, names: ArtifactName, target: Destination
    ) -> TargetFailure | None:
        transport = self._transport_for(target)
        log.info(f"Pushing {names.binary} to {target.describe()}")
        try:
            # text is only sent once the image is there
            transport.copy(bundle.binary_path, target)
            transport.copy(bundle.text_path, target)
        except ReplicationFailure as error:
            reason = error.reason
        except (CommandError, OSError) as error:
            reason = str(error)
        else:
            log.info(f"Copy successful to {target.describe()}")
            return None
        log.error(f"Copy of {bundle.device.path} to {target.describe()} failed: {reason}")
        return TargetFailure(target=target, reason=reason)


def outcome_for(failures: Sequence[TargetFailure], names: ArtifactName | None = None) -> DeviceOutcome:
    if failures:
        return DeviceOutcome.partial_failure(tuple(failures), artifacts=names)
    return DeviceOutcome.success(artifacts=names)
