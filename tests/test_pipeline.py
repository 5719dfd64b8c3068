"""
Tests for the backup pipeline.

Tests cover:
- Zero devices, one device, several devices with mixed outcomes
- Extraction failures do not block other devices
- Replication failures are recorded per device and per target
- Temporary files never outlive their device iteration
"""

from __future__ import annotations

import hashlib
import tempfile

import pytest

from luks_header_backup.domain.models import OutcomeKind
from luks_header_backup.services.pipeline import BackupPipeline, run_backup
from luks_header_backup.storage.exceptions import (
    CommandError,
    ConfigurationError,
    DiscoveryError,
)

from conftest import FakeHeaderManager, FakeProbe, FakeTransport

TWO_DEVICES = (
    "DEVNAME=/dev/sda1\nUUID=uuid-one\nTYPE=crypto_LUKS\n\n"
    "DEVNAME=/dev/sdb1\nUUID=uuid-two\nTYPE=crypto_LUKS\n"
)


def make_pipeline(tmp_path, targets, *, probe_output=TWO_DEVICES, **kwargs):
    work_root = tmp_path / "work"
    kwargs.setdefault("probe", FakeProbe(probe_output))
    kwargs.setdefault("header_manager", FakeHeaderManager())
    kwargs.setdefault("transport", FakeTransport())
    return BackupPipeline(targets, "hostA", work_root=work_root, **kwargs)


class TestConfiguration:
    def test_no_targets_rejected_before_discovery(self, tmp_path):
        probe = FakeProbe(TWO_DEVICES)
        manager = FakeHeaderManager()

        with pytest.raises(ConfigurationError):
            make_pipeline(tmp_path, [], probe=probe, header_manager=manager).run()

        assert probe.calls == 0
        assert manager.backup_calls == []


class TestDiscovery:
    def test_no_devices_is_success(self, tmp_path, remote_targets):
        manager = FakeHeaderManager()
        transport = FakeTransport()

        result = make_pipeline(
            tmp_path, remote_targets, probe_output="", header_manager=manager, transport=transport
        ).run()

        assert result.per_device_results == []
        assert result.exit_code == 0
        assert manager.backup_calls == []
        assert transport.copies == []

    def test_discovery_error_is_fatal(self, tmp_path, remote_targets):
        probe = FakeProbe(error=CommandError(["blkid"], 4, "boom"))
        manager = FakeHeaderManager()

        with pytest.raises(DiscoveryError):
            make_pipeline(tmp_path, remote_targets, probe=probe, header_manager=manager).run()

        assert manager.backup_calls == []


class TestPerDevice:
    def test_one_device_two_remotes_success(self, tmp_path, remote_targets):
        transport = FakeTransport()
        single = "DEVNAME=/dev/sda1\nUUID=abc123\nTYPE=crypto_LUKS\n"
        header = b"\xde\xad" * 512
        manager = FakeHeaderManager(headers={"/dev/sda1": header})

        result = make_pipeline(
            tmp_path, remote_targets, probe_output=single, header_manager=manager, transport=transport
        ).run()

        [(device, outcome)] = result.per_device_results
        short = hashlib.sha256(header).hexdigest()[:8]
        assert device.uuid == "abc123"
        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.artifacts.binary == f"luks_header_backup.hostA.abc123.{short}.img"
        assert result.exit_code == 0
        for target in remote_targets:
            assert transport.names_for(target.describe()) == [
                outcome.artifacts.binary,
                outcome.artifacts.text,
            ]
        assert list((tmp_path / "work").iterdir()) == []

    def test_extraction_failure_does_not_block_next_device(self, tmp_path, remote_targets):
        manager = FakeHeaderManager(fail_backup=("/dev/sda1",))
        transport = FakeTransport()

        result = make_pipeline(
            tmp_path, remote_targets, header_manager=manager, transport=transport
        ).run()

        outcomes = [(d.path, o.kind) for d, o in result.per_device_results]
        assert outcomes == [
            ("/dev/sda1", OutcomeKind.EXTRACTION_FAILURE),
            ("/dev/sdb1", OutcomeKind.SUCCESS),
        ]
        assert result.exit_code != 0
        assert "backup" in result.per_device_results[0][1].reason
        copied = [name for _, name, _ in transport.copies]
        assert all("uuid-two" in name for name in copied)
        assert len(copied) == 4

    def test_replication_failure_continues_to_next_device(self, tmp_path, remote_targets):
        transport = FakeTransport(failing=("root@backup2:/srv/luks/",))

        result = make_pipeline(tmp_path, remote_targets, transport=transport).run()

        assert [o.kind for _, o in result.per_device_results] == [
            OutcomeKind.PARTIAL_FAILURE,
            OutcomeKind.PARTIAL_FAILURE,
        ]
        for _, outcome in result.per_device_results:
            assert [f.target for f in outcome.failed_targets] == [remote_targets[1]]
        assert len(transport.names_for("root@backup1:/srv/luks/")) == 4
        assert result.exit_code == 1

    def test_mixed_outcomes(self, tmp_path, remote_targets):
        manager = FakeHeaderManager(fail_dump=("/dev/sdb1",))
        transport = FakeTransport(failing=("root@backup1:/srv/luks/",))

        result = make_pipeline(
            tmp_path, remote_targets, header_manager=manager, transport=transport
        ).run()

        kinds = [o.kind for _, o in result.per_device_results]
        assert kinds == [OutcomeKind.PARTIAL_FAILURE, OutcomeKind.EXTRACTION_FAILURE]
        assert len(result.failed_devices) == 2

    def test_work_dirs_removed_on_every_path(self, tmp_path, remote_targets):
        manager = FakeHeaderManager(fail_dump=("/dev/sda1",))

        make_pipeline(tmp_path, remote_targets, header_manager=manager).run()

        assert list((tmp_path / "work").iterdir()) == []

    def test_unexpected_error_still_cleans_up(self, tmp_path, remote_targets, mocker):
        mocker.patch(
            "luks_header_backup.services.pipeline.Replicator.replicate",
            side_effect=KeyboardInterrupt,
        )

        with pytest.raises(KeyboardInterrupt):
            make_pipeline(tmp_path, remote_targets).run()

        assert list((tmp_path / "work").iterdir()) == []

    def test_previous_device_files_gone_before_next_device(self, tmp_path, remote_targets):
        work_root = tmp_path / "work"
        snapshots = []

        class SnapshotManager(FakeHeaderManager):
            def backup(self, device_path, output_path):
                snapshots.append(sorted(p.name for p in work_root.rglob("*") if p.is_file()))
                super().backup(device_path, output_path)

        make_pipeline(tmp_path, remote_targets, header_manager=SnapshotManager()).run()

        # only the reserved dump file of the current device exists
        assert [len(files) for files in snapshots] == [1, 1]

    def test_local_and_remote_targets(self, tmp_path, remote_targets, local_target):
        result = make_pipeline(tmp_path, [*remote_targets, local_target]).run()

        assert result.succeeded
        for _, outcome in result.per_device_results:
            assert (local_target.path / outcome.artifacts.binary).exists()
            assert (local_target.path / outcome.artifacts.text).exists()

    def test_work_dir_failure_does_not_block_next_device(self, tmp_path, remote_targets, mocker):
        real_temporary_directory = tempfile.TemporaryDirectory
        prefixes = []

        def flaky_temporary_directory(*args, **kwargs):
            prefixes.append(kwargs["prefix"])
            if len(prefixes) == 1:
                raise OSError(28, "No space left on device")
            return real_temporary_directory(*args, **kwargs)

        mocker.patch(
            "luks_header_backup.services.pipeline.tempfile.TemporaryDirectory",
            side_effect=flaky_temporary_directory,
        )
        manager = FakeHeaderManager()

        result = make_pipeline(tmp_path, remote_targets, header_manager=manager).run()

        outcomes = [(d.path, o.kind) for d, o in result.per_device_results]
        assert outcomes == [
            ("/dev/sda1", OutcomeKind.EXTRACTION_FAILURE),
            ("/dev/sdb1", OutcomeKind.SUCCESS),
        ]
        assert "work-dir" in result.per_device_results[0][1].reason
        assert "No space left on device" in result.per_device_results[0][1].reason
        assert [path for path, _ in manager.backup_calls] == ["/dev/sdb1"]
        assert prefixes == ["luks-header-backup-sda1-", "luks-header-backup-sdb1-"]
        assert result.exit_code == 1

    def test_unusable_work_root_is_configuration_error(self, tmp_path, remote_targets):
        blocker = tmp_path / "work"
        blocker.write_text("not a directory")
        manager = FakeHeaderManager()

        with pytest.raises(ConfigurationError, match="Unusable work directory"):
            make_pipeline(tmp_path, remote_targets, header_manager=manager).run()

        assert manager.backup_calls == []


class TestRunResult:
    def test_to_dict(self, tmp_path, remote_targets):
        transport = FakeTransport(failing=("root@backup1:/srv/luks/",))
        manager = FakeHeaderManager(fail_backup=("/dev/sdb1",))

        data = run_backup(
            remote_targets,
            "hostA",
            probe=FakeProbe(TWO_DEVICES),
            header_manager=manager,
            transport=transport,
            work_root=tmp_path / "work",
        ).to_dict()

        assert data["succeeded"] is False
        assert data["exit_code"] == 1
        first, second = data["devices"]
        assert first["outcome"] == "partial_failure"
        assert first["failed_targets"][0]["target"] == "root@backup1:/srv/luks/"
        assert second["outcome"] == "extraction_failure"
        assert second["uuid"] == "uuid-two"

    def test_summary_logged(self, tmp_path, remote_targets, log_records):
        transport = FakeTransport(failing=("root@backup1:/srv/luks/",))

        make_pipeline(tmp_path, remote_targets, transport=transport).run()

        errors = [r["message"] for r in log_records if r["level"].name == "ERROR"]
        assert any("missing from: root@backup1:/srv/luks/" in message for message in errors)
        assert any("2 of 2 device(s) failed" in message for message in errors)
