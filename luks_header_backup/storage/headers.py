"""LUKS header extraction into a per-device working directory.

For one device the extractor produces:
    - a binary header image (cryptsetup luksHeaderBackup)
    - a text dump of the header metadata (cryptsetup luksDump)
    - the SHA256 digest of the binary image

The files are created under a working directory owned by the current
pipeline iteration. If any stage fails both files are removed before the
ExtractionError propagates, so a failed device never leaves header copies
behind.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Protocol

from luks_header_backup.domain.models import ArtifactName, HeaderBundle, LuksDevice
from luks_header_backup.logging import LoggerFactory

from .exceptions import CommandError, ExtractionError
from .naming import sanitize_component
from .tools import ARTIFACT_MODE, CryptsetupHeaderManager

log = LoggerFactory.for_extraction()

HASH_CHUNK_SIZE = 1024 * 1024

STAGE_BACKUP = "backup"
STAGE_DUMP = "dump"
STAGE_HASH = "hash"
STAGE_STAGE = "stage"
STAGE_WORK_DIR = "work-dir"


class HeaderManager(Protocol):
    def backup(self, device_path: str, output_path: Path) -> None: ...

    def dump(self, device_path: str) -> str: ...


def compute_sha256(path: Path) -> bytes:
    """SHA256 over the full file content."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.digest()


def _reserve_file(work_dir: Path, prefix: str, suffix: str) -> Path:
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=work_dir)
    os.close(fd)
    return Path(name)


class HeaderExtractor:
    def __init__(self, header_manager: HeaderManager | None = None):
        self.header_manager = header_manager or CryptsetupHeaderManager()

    def extract(self, device: LuksDevice, work_dir: Path) -> HeaderBundle:
        """Back up and dump the header of one device.

        Raises:
            ExtractionError: With stage "backup", "dump" or "hash"
        """
        prefix = f"{sanitize_component(device.uuid)}."
        binary_path = _reserve_file(work_dir, prefix, ".img.tmp")
        text_path = _reserve_file(work_dir, prefix, ".txt.tmp")
        try:
            return self._extract_into(device, binary_path, text_path)
        except BaseException:
            binary_path.unlink(missing_ok=True)
            text_path.unlink(missing_ok=True)
            raise

    def _extract_into(self, device: LuksDevice, binary_path: Path, text_path: Path) -> HeaderBundle:
        log.info(f"Backing up LUKS header of {device.format_label()}")

        # cryptsetup refuses to overwrite an existing backup file
        binary_path.unlink()
        try:
            self.header_manager.backup(device.path, binary_path)
        except CommandError as error:
            raise ExtractionError(device, STAGE_BACKUP, error) from error
        _require_content(device, STAGE_BACKUP, binary_path)
        os.chmod(binary_path, ARTIFACT_MODE)

        try:
            dump = self.header_manager.dump(device.path)
        except CommandError as error:
            raise ExtractionError(device, STAGE_DUMP, error) from error
        try:
            text_path.write_text(dump, encoding="utf-8")
            os.chmod(text_path, ARTIFACT_MODE)
        except OSError as error:
            raise ExtractionError(device, STAGE_DUMP, error) from error
        _require_content(device, STAGE_DUMP, text_path)

        try:
            sha256 = compute_sha256(binary_path)
        except OSError as error:
            raise ExtractionError(device, STAGE_HASH, error) from error

        bundle = HeaderBundle(device=device, binary_path=binary_path, text_path=text_path, sha256=sha256)
        log.debug(f"Computed SHA256 for {device.path}: {bundle.sha256_hex}")
        return bundle


def _require_content(device: LuksDevice, stage: str, path: Path) -> None:
    try:
        size = path.stat().st_size
    except OSError as error:
        raise ExtractionError(device, stage, f"{path.name} is unreadable: {error}") from error
    if size == 0:
        raise ExtractionError(device, stage, f"{path.name} is empty")


def stage_bundle(bundle: HeaderBundle, names: ArtifactName) -> HeaderBundle:
    """Rename the bundle files to their artifact names inside the work dir.

    Transports copy files under their local basename, so this has to happen
    before replication.

    Raises:
        ExtractionError: With stage "stage" if a rename fails
    """
    binary_path = bundle.binary_path.with_name(names.binary)
    text_path = bundle.text_path.with_name(names.text)
    try:
        os.replace(bundle.binary_path, binary_path)
        os.replace(bundle.text_path, text_path)
    except OSError as error:
        raise ExtractionError(bundle.device, STAGE_STAGE, error) from error
    log.info(f"Saved header to {binary_path}")
    log.info(f"Saved header dump to {text_path}")
    return HeaderBundle(
        device=bundle.device,
        binary_path=binary_path,
        text_path=text_path,
        sha256=bundle.sha256,
    )
