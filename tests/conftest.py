"""
Pytest configuration and shared fixtures for luks-header-backup tests.

This module provides canned blkid output and fake collaborators so no test
ever invokes blkid, cryptsetup or scp.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple
from unittest.mock import Mock

import pytest

from luks_header_backup.domain.models import LocalTarget, LuksDevice, RemoteTarget
from luks_header_backup.logging import logger
from luks_header_backup.storage.exceptions import CommandError, ReplicationFailure


# ==============================================================================
# blkid Output Fixtures
# ==============================================================================


BLKID_EXPORT = """DEVNAME=/dev/sda1
UUID=12345678-1234-1234-1234-123456789abc
TYPE=crypto_LUKS

DEVNAME=/dev/sda2
UUID=abcdef12-3456-7890-abcd-ef1234567890
BLOCK_SIZE=4096
TYPE=ext4

DEVNAME=/dev/sdb1
UUID=87654321-4321-4321-4321-876543210fed
TYPE=crypto_LUKS
PARTUUID=0e1f2a3b-01
"""


@pytest.fixture
def blkid_export() -> str:
    """Fixture providing blkid -o export output with two LUKS devices."""
    return BLKID_EXPORT


@pytest.fixture
def luks_device() -> LuksDevice:
    return LuksDevice(path="/dev/sda1", uuid="abc123")


@pytest.fixture
def second_device() -> LuksDevice:
    return LuksDevice(path="/dev/sdb1", uuid="def456")


@pytest.fixture
def remote_targets() -> List[RemoteTarget]:
    return [
        RemoteTarget.parse("root@backup1:/srv/luks/"),
        RemoteTarget.parse("root@backup2:/srv/luks/"),
    ]


@pytest.fixture
def local_target(tmp_path) -> LocalTarget:
    return LocalTarget(tmp_path / "local-backups")


# ==============================================================================
# Fake Collaborators
# ==============================================================================


class FakeProbe:
    def __init__(self, output: str = "", error: Optional[Exception] = None):
        self.output = output
        self.error = error
        self.calls = 0

    def export(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.output


class FakeHeaderManager:
    """Writes canned header bytes; devices listed in fail_backup/fail_dump fail."""

    def __init__(
        self,
        headers: Optional[Dict[str, bytes]] = None,
        fail_backup: Tuple[str, ...] = (),
        fail_dump: Tuple[str, ...] = (),
    ):
        self.headers = headers or {}
        self.fail_backup = set(fail_backup)
        self.fail_dump = set(fail_dump)
        self.backup_calls: List[Tuple[str, Path]] = []
        self.dump_calls: List[str] = []

    def backup(self, device_path: str, output_path: Path) -> None:
        self.backup_calls.append((device_path, output_path))
        if device_path in self.fail_backup:
            raise CommandError(["cryptsetup", "luksHeaderBackup", device_path], 1, "Device is busy")
        output_path.write_bytes(self.headers.get(device_path, b"\xde\xad\xbe\xef" * 1024))

    def dump(self, device_path: str) -> str:
        self.dump_calls.append(device_path)
        if device_path in self.fail_dump:
            raise CommandError(["cryptsetup", "luksDump", device_path], 1, "not a LUKS device")
        return f"LUKS header information\nVersion:\t2\nDevice:\t{device_path}\n"


class FakeTransport:
    """Records copies and fails for targets whose description is in failing."""

    def __init__(self, failing: Tuple[str, ...] = (), fail_text_only: Tuple[str, ...] = ()):
        self.failing = set(failing)
        self.fail_text_only = set(fail_text_only)
        self.copies: List[Tuple[str, str, bytes]] = []

    def copy(self, local_path: Path, target) -> None:
        name = target.describe()
        if name in self.failing:
            raise ReplicationFailure(target, "Connection refused")
        if name in self.fail_text_only and local_path.suffix == ".txt":
            raise ReplicationFailure(target, "No space left on device")
        self.copies.append((name, local_path.name, local_path.read_bytes()))

    def names_for(self, target_name: str) -> List[str]:
        return [file_name for name, file_name, _ in self.copies if name == target_name]


@pytest.fixture
def fake_header_manager() -> FakeHeaderManager:
    return FakeHeaderManager()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


# ==============================================================================
# Subprocess / Logging Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


@pytest.fixture
def completed():
    """Factory for CompletedProcess-like mocks."""

    def _make(returncode: int = 0, stdout: str = "", stderr: str = "") -> Mock:
        return Mock(returncode=returncode, stdout=stdout, stderr=stderr)

    return _make


@pytest.fixture
def log_records():
    """Capture loguru records emitted during a test."""
    records: List[dict] = []
    logger.remove()
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)
