"""Deterministic artifact names for header backups.

The name only changes when the header bytes change, so re-running the backup
on an unchanged header rewrites the same destination files instead of piling
up new ones.
"""

from __future__ import annotations

import re

from luks_header_backup.domain.models import ArtifactName, LuksDevice

ARTIFACT_PREFIX = "luks_header_backup"
SHORT_HASH_LENGTH = 8

_UNSAFE_RE = re.compile(r"[\s/\\\x00-\x1f\x7f]+")


def short_hash(digest: bytes) -> str:
    """First 8 hex characters of a SHA256 digest."""
    return digest.hex()[:SHORT_HASH_LENGTH]


def sanitize_component(value: str) -> str:
    """Replace path separators, whitespace and control characters with '_'."""
    cleaned = _UNSAFE_RE.sub("_", value.strip())
    if cleaned in ("", ".", ".."):
        return "unknown"
    return cleaned


def artifact_name(hostname: str, device: LuksDevice, sha256: bytes) -> ArtifactName:
    short = short_hash(sha256)
    stem = f"{ARTIFACT_PREFIX}.{sanitize_component(hostname)}.{sanitize_component(device.uuid)}.{short}"
    return ArtifactName(binary=f"{stem}.img", text=f"{stem}.txt", short_hash=short)
