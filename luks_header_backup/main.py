import argparse
import json
import os
import socket
import sys
from pathlib import Path

from luks_header_backup.__version__ import __version__
from luks_header_backup.config import settings
from luks_header_backup.domain.models import EXIT_FAILURE, LocalTarget, RemoteTarget
from luks_header_backup.logging import LoggerFactory, setup_logging
from luks_header_backup.services.pipeline import BackupPipeline, prepare_work_root
from luks_header_backup.storage.exceptions import ConfigurationError, DiscoveryError
from luks_header_backup.storage.tools import BlkidProbe, CryptsetupHeaderManager, ScpTransport

EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


def build_parser():
    parser = argparse.ArgumentParser(
        prog="luks-header-backup",
        description="Back up LUKS headers of all local devices to remote and local destinations.",
    )
    parser.add_argument(
        "--remote-path",
        dest="remote_paths",
        action="append",
        default=[],
        metavar="SPEC",
        help="scp destination such as root@host:/backup/dir/ (repeatable)",
    )
    parser.add_argument(
        "--backup-path",
        dest="backup_paths",
        action="append",
        default=[],
        metavar="DIR",
        help="local directory to copy headers to (repeatable)",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output, including command output")
    parser.add_argument("--log-dir", type=Path, default=None, help="write operations.log and structured.jsonl here")
    parser.add_argument("--work-dir", type=Path, default=None, help="parent directory for temporary header files")
    parser.add_argument("--timeout", type=int, default=None, help="seconds allowed per external command")
    parser.add_argument("--summary-json", type=Path, default=None, help="write the run result as JSON")
    parser.add_argument("--settings", type=Path, default=None, help="path to settings.json")
    parser.add_argument("--skip-root-check", action="store_true", help=argparse.SUPPRESS)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def resolve_targets(remote_paths, backup_paths):
    """Turn CLI and settings values into destinations, remotes first.

    Raises:
        ConfigurationError: If nothing was given or a remote spec is invalid
    """
    targets = [RemoteTarget.parse(spec) for spec in remote_paths]
    targets.extend(LocalTarget(Path(path)) for path in backup_paths)
    if not targets:
        raise ConfigurationError("At least one of --remote-path or --backup-path must be provided.")
    return targets


def write_summary(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    settings.load_settings(args.settings)
    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=args.log_dir or settings.get_path("log_dir"),
    )
    log = LoggerFactory.for_system()

    try:
        targets = resolve_targets(
            args.remote_paths or settings.get_list("remote_paths"),
            args.backup_paths or settings.get_list("backup_paths"),
        )
        if not args.skip_root_check and os.geteuid() != 0:
            raise ConfigurationError("This program must be run as root")

        hostname = socket.gethostname()
        log.info(f"Hostname: {hostname}")

        work_root = args.work_dir or settings.get_path("work_dir")
        if work_root is not None:
            prepare_work_root(work_root)

        timeout = args.timeout or settings.get_int(
            "command_timeout_seconds", settings.DEFAULT_COMMAND_TIMEOUT_SECONDS
        )
        pipeline = BackupPipeline(
            targets,
            hostname,
            probe=BlkidProbe(timeout=timeout),
            header_manager=CryptsetupHeaderManager(timeout=timeout),
            transport=ScpTransport(timeout=timeout),
            work_root=work_root,
            log=log,
        )
        result = pipeline.run()
    except ConfigurationError as error:
        log.error(str(error))
        return EXIT_FATAL
    except DiscoveryError as error:
        log.error(f"Device discovery failed: {error}")
        return EXIT_FATAL
    except KeyboardInterrupt:
        log.warning("Interrupted; temporary header files were removed")
        return EXIT_INTERRUPTED

    if args.summary_json:
        try:
            write_summary(args.summary_json, result.to_dict())
        except OSError as error:
            log.error(f"Could not write run summary to {args.summary_json}: {error}")
            return EXIT_FAILURE
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
