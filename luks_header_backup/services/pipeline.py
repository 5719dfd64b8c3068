"""Run orchestration: discover, then extract, name and replicate per device.

Flow for one run:
    discover LUKS devices (fatal on DiscoveryError)
    for each device, inside its own 0700 temporary directory:
        extract header -> name artifacts -> stage files -> replicate -> record
    summarise the RunResult

One device failing extraction or replication never stops the others; the
RunResult carries every outcome and decides the exit code.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from luks_header_backup.domain.models import (
    Destination,
    DeviceOutcome,
    LuksDevice,
    RunResult,
)
from luks_header_backup.logging import LoggerFactory, operation_context
from luks_header_backup.storage.devices import DeviceProbe, list_luks_devices
from luks_header_backup.storage.exceptions import ConfigurationError, ExtractionError
from luks_header_backup.storage.headers import (
    STAGE_WORK_DIR,
    HeaderExtractor,
    HeaderManager,
    stage_bundle,
)
from luks_header_backup.storage.naming import artifact_name
from luks_header_backup.storage.tools import BlkidProbe

from .replication import Replicator, Transport, outcome_for

if TYPE_CHECKING:
    from loguru import Logger

WORK_DIR_MODE = 0o700
WORK_DIR_PREFIX = "luks-header-backup-"


def prepare_work_root(path: Path) -> Path:
    """Create the parent directory for per-device work dirs.

    Raises:
        ConfigurationError: If the path cannot be used as a directory
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise ConfigurationError(f"Unusable work directory {path}: {error}") from error
    return path


class BackupPipeline:
    def __init__(
        self,
        targets: Sequence[Destination],
        hostname: str,
        *,
        probe: DeviceProbe | None = None,
        header_manager: HeaderManager | None = None,
        transport: Transport | None = None,
        local_transport: Transport | None = None,
        work_root: Path | None = None,
        log: Logger | None = None,
    ):
        self.targets = list(targets)
        self.hostname = hostname
        self.probe = probe or BlkidProbe()
        self.extractor = HeaderExtractor(header_manager)
        self.replicator = Replicator(transport, local_transport)
        self.work_root = work_root
        self.log = log or LoggerFactory.for_system()

    def run(self) -> RunResult:
        """Back up every LUKS device to every target.

        Raises:
            ConfigurationError: If there are no targets (before any work) or
                the work root is unusable
            DiscoveryError: If devices cannot be enumerated
        """
        if not self.targets:
            raise ConfigurationError(
                "At least one remote or local backup destination must be provided"
            )

        result = RunResult()
        devices = list_luks_devices(self.probe)
        if not devices:
            self.log.warning("No LUKS devices found; nothing to back up")
            return result

        if self.work_root is not None:
            prepare_work_root(self.work_root)

        for device in devices:
            outcome = self.process_device(device)
            result.record(device, outcome)

        self.report(result)
        return result

    def process_device(self, device: LuksDevice) -> DeviceOutcome:
        """Extract, name and replicate one device inside a private work dir."""
        with operation_context("backup", log=self.log, device=device.path, uuid=device.uuid) as log:
            try:
                workspace = tempfile.TemporaryDirectory(
                    prefix=f"{WORK_DIR_PREFIX}{device.name}-", dir=self.work_root
                )
            except OSError as error:
                return self._work_dir_failure(log, device, error)
            with workspace as tmp:
                work_dir = Path(tmp)
                try:
                    os.chmod(work_dir, WORK_DIR_MODE)
                except OSError as error:
                    return self._work_dir_failure(log, device, error)
                return self._process_in(log, device, work_dir)

    @staticmethod
    def _work_dir_failure(log: Logger, device: LuksDevice, error: OSError) -> DeviceOutcome:
        failure = ExtractionError(device, STAGE_WORK_DIR, error)
        log.error(f"Could not prepare work directory for {device.path}: {error}")
        return DeviceOutcome.extraction_failure(str(failure))

    def _process_in(self, log: Logger, device: LuksDevice, work_dir: Path) -> DeviceOutcome:
        try:
            bundle = self.extractor.extract(device, work_dir)
        except ExtractionError as error:
            log.error(f"Extraction failed for {device.path} at stage {error.stage}: {error.cause}")
            return DeviceOutcome.extraction_failure(str(error))

        try:
            names = artifact_name(self.hostname, device, bundle.sha256)
            log.debug(f"Artifact names for {device.path}: {names.binary}, {names.text}")
            try:
                bundle = stage_bundle(bundle, names)
            except ExtractionError as error:
                log.error(f"Could not stage artifacts for {device.path}: {error.cause}")
                return DeviceOutcome.extraction_failure(str(error))

            failures = self.replicator.replicate(bundle, names, self.targets)
            return outcome_for(failures, names)
        finally:
            bundle.release()

    def report(self, result: RunResult) -> None:
        total = len(result.per_device_results)
        if result.succeeded:
            self.log.success(
                f"Backed up {total} LUKS header(s) to {len(self.targets)} destination(s)"
            )
            return
        for device, outcome in result.failed_devices:
            if outcome.failed_targets:
                targets = ", ".join(failure.target.describe() for failure in outcome.failed_targets)
                self.log.error(f"{device.path} ({device.uuid}) missing from: {targets}")
            else:
                self.log.error(f"{device.path} ({device.uuid}) not backed up: {outcome.reason}")
        self.log.error(f"{len(result.failed_devices)} of {total} device(s) failed")


def run_backup(
    targets: Sequence[Destination],
    hostname: str,
    **kwargs,
) -> RunResult:
    return BackupPipeline(targets, hostname, **kwargs).run()
