"""Thin wrappers around the system tools the backup depends on.

Each class exposes one method per external operation so the discovery,
extraction and replication code can be exercised with fakes:

    BlkidProbe.export()                         -> blkid -o export
    CryptsetupHeaderManager.backup(dev, out)    -> cryptsetup luksHeaderBackup
    CryptsetupHeaderManager.dump(dev)           -> cryptsetup luksDump
    ScpTransport.copy(path, target)             -> scp
    LocalCopyTransport.copy(path, target)       -> copy + atomic rename
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Sequence

from luks_header_backup.config import settings
from luks_header_backup.domain.models import LocalTarget, RemoteTarget
from luks_header_backup.logging import get_logger

from .command_runners import run_command
from .exceptions import CommandError, ReplicationFailure

log = get_logger(source=__name__, tags=["tools"])

# blkid exits 2 when it cannot identify any device
BLKID_NOTHING_FOUND = 2
ARTIFACT_MODE = 0o600


class BlkidProbe:
    """Enumerates block devices with `blkid -o export`."""

    def __init__(self, blkid: str = "blkid", timeout: float | None = None):
        self.blkid = blkid
        self.timeout = timeout

    def export(self) -> str:
        result = run_command(
            [self.blkid, "-o", "export"],
            timeout=self.timeout,
            ok_returncodes=(0, BLKID_NOTHING_FOUND),
        )
        if result.returncode == BLKID_NOTHING_FOUND:
            log.debug("blkid found no block devices")
            return ""
        return result.stdout


class CryptsetupHeaderManager:
    """Backs up and dumps LUKS headers with cryptsetup."""

    def __init__(self, cryptsetup: str = "cryptsetup", timeout: float | None = None):
        self.cryptsetup = cryptsetup
        self.timeout = timeout

    def backup(self, device_path: str, output_path: Path) -> None:
        run_command(
            [
                self.cryptsetup,
                "luksHeaderBackup",
                device_path,
                "--header-backup-file",
                str(output_path),
            ],
            timeout=self.timeout,
        )

    def dump(self, device_path: str) -> str:
        return run_command(
            [self.cryptsetup, "luksDump", device_path],
            timeout=self.timeout,
        ).stdout


class ScpTransport:
    """Copies files to remote targets with scp in batch mode."""

    def __init__(
        self,
        scp: str = "scp",
        options: Sequence[str] | None = None,
        timeout: float | None = None,
    ):
        self.scp = scp
        if options is None:
            options = settings.get_list("scp_options") or settings.DEFAULT_SCP_OPTIONS
        self.options = list(options)
        self.timeout = timeout

    def copy(self, local_path: Path, target: RemoteTarget) -> None:
        """Copy one file into the target directory.

        Raises:
            ReplicationFailure: If scp exits non-zero or times out
        """
        destination = target.destination_for(local_path.name)
        try:
            run_command(
                [self.scp, *self.options, str(local_path), destination],
                timeout=self.timeout,
            )
        except CommandError as error:
            raise ReplicationFailure(target, error.stderr or str(error)) from error


class LocalCopyTransport:
    """Copies files into a local directory via a hidden temporary name."""

    def copy(self, local_path: Path, target: LocalTarget) -> None:
        """Copy one file into the target directory and rename it into place.

        Raises:
            ReplicationFailure: If the directory or file cannot be written
        """
        dest_path = target.path / local_path.name
        tmp_path = target.path / f".{local_path.name}.tmp"
        try:
            target.path.mkdir(parents=True, exist_ok=True)
            if dest_path.exists():
                log.debug(f"Destination file exists, will be replaced: {dest_path}")
            shutil.copyfile(local_path, tmp_path)
            os.chmod(tmp_path, ARTIFACT_MODE)
            os.replace(tmp_path, dest_path)
        except OSError as error:
            if tmp_path.exists():
                tmp_path.unlink()
            raise ReplicationFailure(target, str(error)) from error
