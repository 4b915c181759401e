"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Artifact Store

Manages the backup and dump artifacts inside the Meilisearch data volume:
- data.ms_{timestamp}_{version}.backup  (live data renamed aside)
- dumps/{timestamp}_{version}.dump      (engine dump renamed after export)

The file names are the only metadata. Timestamps use %Y%m%d_%H%M, so names
sort by creation time and every artifact states which engine version
produced it. Nothing here deletes a backup or dump; the single destructive
consumer is restore_backup_as_live_data, which renames the backup into place.

All file operations run in a disposable helper container with the volume
mounted, so the host never needs access to docker's volume directory.
"""

import posixpath
import re
import shlex
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from meili_updates.utils.docker_runtime import DockerRuntime
from meili_updates.utils.errors import UpgradeError, VolumeNotFoundError
from meili_updates.utils.index import log_message

LIVE_DATA_DIR = "data.ms"
DUMPS_DIR = "dumps"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M"

BACKUP_PATTERN = re.compile(r"^data\.ms_(?P<timestamp>[0-9_]+)_(?P<version>v[0-9]+\.[0-9]+\.[0-9]+)\.backup$")
DUMP_PATTERN = re.compile(r"^(?P<timestamp>[0-9_]+)_(?P<version>v[0-9]+\.[0-9]+\.[0-9]+)\.dump$")
VERSION_PATTERN = re.compile(r"v[0-9]+\.[0-9]+\.[0-9]+")


class ArtifactStoreError(UpgradeError):
    """Raised when an artifact operation would clobber or cannot find its target."""
    pass


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return None


def backup_name(timestamp: str, version: str) -> str:
    return f"{LIVE_DATA_DIR}_{timestamp}_{version}.backup"


def dump_name(timestamp: str, version: str) -> str:
    return f"{timestamp}_{version}.dump"


def version_from_filename(filename: str) -> Optional[str]:
    """First vX.Y.Z found in a file name, if any."""
    match = VERSION_PATTERN.search(filename)
    return match.group(0) if match else None


@dataclass
class VolumeHandle:
    name: str
    mount_point: str = "/meili_data"


@dataclass
class DataBackup:
    """The live data directory renamed aside before an upgrade."""
    canonical_name: str
    timestamp: str
    source_version: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_name(cls, name: str) -> Optional["DataBackup"]:
        match = BACKUP_PATTERN.match(name)
        if not match:
            return None
        return cls(
            canonical_name=name,
            timestamp=match.group("timestamp"),
            source_version=match.group("version"),
            created_at=parse_timestamp(match.group("timestamp")),
        )


@dataclass
class DumpArtifact:
    """An engine dump under its canonical name."""
    canonical_name: str
    timestamp: str
    source_version: str
    created_at: Optional[datetime] = None
    raw_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_name(cls, name: str, raw_id: Optional[str] = None) -> Optional["DumpArtifact"]:
        match = DUMP_PATTERN.match(name)
        if not match:
            return None
        return cls(
            canonical_name=name,
            timestamp=match.group("timestamp"),
            source_version=match.group("version"),
            created_at=parse_timestamp(match.group("timestamp")),
            raw_id=raw_id,
        )


class ArtifactStore:
    """Backup and dump artifacts of one Meilisearch data volume."""

    def __init__(self, runtime: DockerRuntime, mount_point: str = "/meili_data"):
        self.runtime = runtime
        self.mount_point = mount_point

    # --- Paths ---
    def live_data_path(self, volume: VolumeHandle) -> str:
        return posixpath.join(volume.mount_point, LIVE_DATA_DIR)

    def backup_path(self, volume: VolumeHandle, name: str) -> str:
        return posixpath.join(volume.mount_point, name)

    def dump_path(self, volume: VolumeHandle, filename: str) -> str:
        return posixpath.join(volume.mount_point, DUMPS_DIR, posixpath.basename(filename))

    def _sh(self, volume: VolumeHandle, script: str) -> str:
        return self.runtime.run_in_volume(volume.name, script, volume.mount_point)

    def _exists(self, volume: VolumeHandle, path: str, test: str = "-e") -> bool:
        output = self._sh(volume, f"[ {test} {shlex.quote(path)} ] && echo exists || echo not_found")
        return output.strip() == "exists"

    def _list_dir(self, volume: VolumeHandle, path: str) -> List[str]:
        output = self._sh(volume, f"ls -1 {shlex.quote(path)} 2>/dev/null || true")
        return [line.strip() for line in output.splitlines() if line.strip()]

    # --- Volume discovery ---
    def find_volume(self, candidates: Sequence[str]) -> VolumeHandle:
        """
        Locate the data volume.

        Each candidate is inspected by exact name, in order. If none exists,
        the volume list is searched for a name containing the first candidate.
        """
        if not candidates:
            raise VolumeNotFoundError("No volume names to try")

        for name in candidates:
            if self.runtime.volume_exists(name):
                log_message(f"Using volume: {name}")
                return VolumeHandle(name=name, mount_point=self.mount_point)

        available = self.runtime.list_volumes()
        for name in available:
            if candidates[0] in name:
                log_message(f"Found volume: {name}")
                return VolumeHandle(name=name, mount_point=self.mount_point)

        raise VolumeNotFoundError(
            f"Could not find volume. Tried: {', '.join(candidates)}. "
            f"Available volumes: {', '.join(available) or 'none'}"
        )

    # --- Live data ---
    def has_live_data(self, volume: VolumeHandle) -> bool:
        return self._exists(volume, self.live_data_path(volume), "-d")

    def rename_live_data_to_backup(self, volume: VolumeHandle, timestamp: str, version: str) -> Optional[DataBackup]:
        """
        Rename data.ms aside as data.ms_{timestamp}_{version}.backup.
        Returns:
            DataBackup, or None when there is no live data (first-time setup)
        """
        if not self.has_live_data(volume):
            log_message("No existing database found (this is normal for first-time setup)")
            return None

        name = backup_name(timestamp, version)
        target = self.backup_path(volume, name)
        if self._exists(volume, target):
            raise ArtifactStoreError(f"Backup {name} already exists; refusing to overwrite it")

        self._sh(volume, f"mv {shlex.quote(self.live_data_path(volume))} {shlex.quote(target)}")
        log_message(f"Database backed up to: {name}")
        return DataBackup.from_name(name) or DataBackup(
            canonical_name=name, timestamp=timestamp, source_version=version,
            created_at=parse_timestamp(timestamp),
        )

    def remove_live_data(self, volume: VolumeHandle) -> None:
        """Delete data.ms. Only used by dump recovery, where the data is presumed unusable."""
        self._sh(volume, f"rm -rf {shlex.quote(self.live_data_path(volume))}")
        log_message("Removed current database")

    def restore_backup_as_live_data(self, volume: VolumeHandle, backup: DataBackup) -> None:
        """Replace data.ms with the given backup, by rename."""
        source = self.backup_path(volume, backup.canonical_name)
        if not self._exists(volume, source):
            raise ArtifactStoreError(f"Backup {backup.canonical_name} not found in volume {volume.name}")

        live = shlex.quote(self.live_data_path(volume))
        self._sh(volume, f"rm -rf {live} && mv {shlex.quote(source)} {live}")
        log_message(f"Database restored from {backup.canonical_name}")

    # --- Dumps ---
    def rename_dump_to_canonical(self, volume: VolumeHandle, raw_id: str, timestamp: str,
                                 version: str) -> Optional[DumpArtifact]:
        """
        Rename dumps/{raw_id}.dump to dumps/{timestamp}_{version}.dump.
        Returns:
            DumpArtifact, or None when the raw dump is not where it should be
        """
        name = dump_name(timestamp, version)
        raw_path = self.dump_path(volume, f"{raw_id}.dump")
        if not self._exists(volume, raw_path, "-f"):
            log_message(f"Could not find dump file at {raw_path}", "WARNING")
            return None

        target = self.dump_path(volume, name)
        if self._exists(volume, target):
            raise ArtifactStoreError(f"Dump {name} already exists; refusing to overwrite it")

        self._sh(volume, f"mv {shlex.quote(raw_path)} {shlex.quote(target)}")
        log_message(f"Renamed dump file to: {name}")
        return DumpArtifact.from_name(name, raw_id=raw_id) or DumpArtifact(
            canonical_name=name, timestamp=timestamp, source_version=version,
            created_at=parse_timestamp(timestamp), raw_id=raw_id,
        )

    def dump_exists(self, volume: VolumeHandle, filename: str) -> bool:
        return self._exists(volume, self.dump_path(volume, filename), "-f")

    # --- Discovery ---
    def list_backups(self, volume: VolumeHandle) -> List[DataBackup]:
        """Canonical data backups, newest first. Foreign names are ignored."""
        backups = [DataBackup.from_name(name) for name in self._list_dir(volume, volume.mount_point)]
        found = [b for b in backups if b is not None]
        return sorted(found, key=lambda b: (b.timestamp, b.canonical_name), reverse=True)

    def list_dumps(self, volume: VolumeHandle) -> List[DumpArtifact]:
        """Canonical dumps, newest first. Raw or foreign names are ignored."""
        dumps_dir = posixpath.join(volume.mount_point, DUMPS_DIR)
        dumps = [DumpArtifact.from_name(name) for name in self._list_dir(volume, dumps_dir)]
        found = [d for d in dumps if d is not None]
        return sorted(found, key=lambda d: (d.timestamp, d.canonical_name), reverse=True)
