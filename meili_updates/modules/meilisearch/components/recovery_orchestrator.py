"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Recovery Orchestrator

Operator-invoked rollback after an upgrade left the engine unable to open
its data:

    CONFIRM_PENDING -> LOCATE_VOLUME -> FIND_BACKUP -> BACKUP_FOUND | NO_BACKUP
    -> SELECT_SOURCE -> REVERT_VERSION -> RESTORE_DATA -> RESTART -> COMPLETE

with ABORTED on errors or cancellation.

Preferred path: the newest data.ms_*.backup is renamed back into place and
the compose file reverted to the version in its name. Without a backup the
operator may import a dump on an older version, or revert only the image tag
and keep the current data. Without dumps, a surviving data directory can
still be kept under an older tag; with no data either there is nothing to
restore from.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from meili_updates.utils.compose_file import ComposeFile
from meili_updates.utils.docker_runtime import DockerRuntime, RuntimeCommandError
from meili_updates.utils.errors import (
    RecoveryCancelled,
    RestoreSourceAbsentError,
    UpgradeError,
    VersionNotFoundError,
)
from meili_updates.utils.index import log_message
from meili_updates.utils.prompt import Prompter
from .artifact_store import ArtifactStore, DataBackup, DumpArtifact, VolumeHandle, version_from_filename
from .settings import UpgradeSettings, import_dump


class RecoveryState(str, Enum):
    CONFIRM_PENDING = "CONFIRM_PENDING"
    LOCATE_VOLUME = "LOCATE_VOLUME"
    FIND_BACKUP = "FIND_BACKUP"
    BACKUP_FOUND = "BACKUP_FOUND"
    NO_BACKUP = "NO_BACKUP"
    SELECT_SOURCE = "SELECT_SOURCE"
    REVERT_VERSION = "REVERT_VERSION"
    RESTORE_DATA = "RESTORE_DATA"
    RESTART = "RESTART"
    COMPLETE = "COMPLETE"
    ABORTED = "ABORTED"


class RecoverySource(str, Enum):
    BACKUP = "backup"
    DUMP = "dump"
    VERSION_ONLY = "version_only"


@dataclass
class RecoveryResult:
    state: RecoveryState = RecoveryState.CONFIRM_PENDING
    success: bool = False
    cancelled: bool = False
    source: Optional[RecoverySource] = None
    restored_version: Optional[str] = None
    backup: Optional[DataBackup] = None
    dump_filename: Optional[str] = None
    data_replaced: bool = False
    warnings: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "success": self.success,
            "cancelled": self.cancelled,
            "source": self.source.value if self.source else None,
            "restored_version": self.restored_version,
            "backup": self.backup.to_dict() if self.backup else None,
            "dump": self.dump_filename,
            "data_replaced": self.data_replaced,
            "warnings": list(self.warnings),
            "failed_step": self.failed_step,
            "error": self.error,
        }


def normalize_version(value: str) -> str:
    """Add the 'v' prefix release tags carry when the operator omits it."""
    value = value.strip()
    return value if value.startswith("v") else f"v{value}"


class RecoveryOrchestrator:
    """Restores a previous engine version and a consistent data directory."""

    def __init__(self, store: ArtifactStore, compose_file: ComposeFile, runtime: DockerRuntime,
                 prompter: Prompter, settings: UpgradeSettings):
        self.store = store
        self.compose_file = compose_file
        self.runtime = runtime
        self.prompter = prompter
        self.settings = settings
        self.state = RecoveryState.CONFIRM_PENDING
        self.history: List[RecoveryState] = []

    def _transition(self, state: RecoveryState) -> None:
        self.state = state
        self.history.append(state)
        log_message(f"[RECOVERY] {state.value}", "DEBUG")

    def run(self) -> RecoveryResult:
        result = RecoveryResult()
        try:
            self._run(result)
        except RecoveryCancelled as e:
            log_message(f"Recovery cancelled. {e}".strip())
            result.cancelled = True
            self._abort(result, e, log=False)
        except UpgradeError as e:
            self._abort(result, e)
        return result

    def _run(self, result: RecoveryResult) -> None:
        self._transition(RecoveryState.CONFIRM_PENDING)
        log_message("=== RECOVERY MODE ===")
        log_message("This will restore the previous version and database backup")
        if not self.prompter.confirm("Continue with recovery?"):
            # nothing chosen yet, so declining here is not a failure
            log_message("Recovery cancelled.")
            result.cancelled = True
            self._complete(result)
            return

        # the image reference must resolve before any data is touched
        configured = self.compose_file.image_reference()
        log_message(f"Compose file references {configured}")

        self._transition(RecoveryState.LOCATE_VOLUME)
        volume = self.store.find_volume(self.settings.volume_candidates)

        self._transition(RecoveryState.FIND_BACKUP)
        log_message("Looking for database backup...")
        backups = self.store.list_backups(volume)
        if backups:
            self._transition(RecoveryState.BACKUP_FOUND)
            self._restore_from_backup(result, volume, backups[0])
            return

        self._transition(RecoveryState.NO_BACKUP)
        log_message("No automatic database backup found.")
        dumps = self.store.list_dumps(volume)
        has_live_data = self.store.has_live_data(volume)
        if not dumps and not has_live_data:
            raise RestoreSourceAbsentError(
                "No database backups or dump files found in volume "
                f"{volume.name}; manual intervention is required."
            )

        self._transition(RecoveryState.SELECT_SOURCE)
        if not dumps:
            log_message("No dump files found. The existing database can be kept under an older version.")
            self._revert_version_only(result)
            return

        log_message("Available dump files:")
        for dump in dumps:
            log_message(f"  {dump.canonical_name}")

        options = [("1", "Restore from a dump file")]
        if has_live_data:
            options.append(("2", "Enter a specific version to revert to (keep existing database)"))
        options.append(("3", "Cancel recovery"))
        choice = self.prompter.choose("Found dump files. Would you like to:", options)

        if choice == "1":
            self._restore_from_dump(result, volume, dumps)
        elif choice == "2" and has_live_data:
            self._revert_version_only(result)
        else:
            raise RecoveryCancelled()

    # --- Backup path ---
    def _restore_from_backup(self, result: RecoveryResult, volume: VolumeHandle, backup: DataBackup) -> None:
        log_message(f"Found backup: {backup.canonical_name}")
        log_message(f"Previous version: {backup.source_version}")
        result.source = RecoverySource.BACKUP
        result.backup = backup

        self._stop_service(result)

        self._transition(RecoveryState.RESTORE_DATA)
        log_message("Restoring database backup...")
        self.store.restore_backup_as_live_data(volume, backup)
        result.data_replaced = True

        self._transition(RecoveryState.REVERT_VERSION)
        log_message(f"Restoring previous version in {self.compose_file.path.name}...")
        self.compose_file.write_version(backup.source_version)
        result.restored_version = backup.source_version

        self._transition(RecoveryState.RESTART)
        log_message("Starting meilisearch with previous version...")
        self.runtime.stop_all()
        self.runtime.start_all()

        self._complete(result)
        log_message("Recovery completed!")
        log_message(f"- Restored version: {backup.source_version}")
        log_message("- Database restored from backup")
        log_message("- You can now run the upgrade script normally")

    # --- Dump path ---
    def _select_dump(self, volume: VolumeHandle, dumps: List[DumpArtifact]) -> str:
        choice = self.prompter.choose("Please choose a dump file:", [
            ("1", "Use most recent dump (may be from newer version)"),
            ("2", "Use dump with matching version (if available)"),
            ("3", "Enter specific dump filename"),
            ("4", "Cancel"),
        ])

        if choice == "1":
            return dumps[0].canonical_name

        if choice == "2":
            try:
                current = self.compose_file.read_version()
            except VersionNotFoundError:
                current = None
            matching = [d for d in dumps if d.source_version == current]
            if matching:
                log_message(f"Found matching dump: {matching[0].canonical_name}")
                return matching[0].canonical_name
            log_message(f"No dump found for version {current}, using most recent...", "WARNING")
            return dumps[0].canonical_name

        if choice == "3":
            filename = self.prompter.ask("Enter dump filename")
            if not filename:
                raise RecoveryCancelled("No dump filename entered.")
            if not self.store.dump_exists(volume, filename):
                raise RestoreSourceAbsentError(f"Dump file {filename} not found in volume {volume.name}")
            return filename.rsplit("/", 1)[-1]

        raise RecoveryCancelled()

    def _restore_from_dump(self, result: RecoveryResult, volume: VolumeHandle, dumps: List[DumpArtifact]) -> None:
        filename = self._select_dump(volume, dumps)
        log_message(f"Using dump file: {filename}")
        result.source = RecoverySource.DUMP
        result.dump_filename = filename

        version = version_from_filename(filename)
        if version:
            log_message(f"Detected version from dump: {version}")
        else:
            log_message("Could not detect version from dump filename.")
            answer = self.prompter.ask("Enter version to use (e.g., v1.15.0)")
            if not answer or answer == "cancel":
                raise RecoveryCancelled("No version entered.")
            version = normalize_version(answer)

        self._transition(RecoveryState.REVERT_VERSION)
        log_message(f"Reverting to {version} and importing dump...")
        self.compose_file.write_version(version)
        result.restored_version = version

        self._stop_service(result)

        self._transition(RecoveryState.RESTORE_DATA)
        self.store.remove_live_data(volume)
        result.data_replaced = True
        warning = import_dump(self.runtime, self.settings, self.store.dump_path(volume, filename))
        if warning:
            result.warnings.append(warning)

        self._transition(RecoveryState.RESTART)
        log_message(f"Starting {self.settings.service} service...")
        self.runtime.start_service(self.settings.service)

        self._complete(result)
        log_message("Recovery completed!")
        log_message(f"- Reverted to: {version}")
        log_message(f"- Imported from dump: {filename}")
        log_message("- You can now run the upgrade script normally")

    # --- Version only ---
    def _revert_version_only(self, result: RecoveryResult) -> None:
        answer = self.prompter.ask("Enter version to revert to (e.g., v1.15.0)")
        if not answer or answer == "cancel":
            raise RecoveryCancelled("No version entered.")
        version = normalize_version(answer)
        result.source = RecoverySource.VERSION_ONLY

        self._transition(RecoveryState.REVERT_VERSION)
        log_message(f"Reverting to {version}...")
        self.compose_file.write_version(version)
        result.restored_version = version

        self._transition(RecoveryState.RESTART)
        log_message(f"Starting {self.settings.service} with {version}...")
        self.runtime.start_service(self.settings.service)

        self._complete(result)
        log_message("Recovery completed!")
        log_message(f"- Reverted to: {version}")
        log_message("- Kept existing database")
        log_message("- You can now run the upgrade script normally")

    # --- Helpers ---
    def _stop_service(self, result: RecoveryResult) -> None:
        log_message(f"Stopping {self.settings.service}...")
        try:
            self.runtime.stop_service(self.settings.service)
        except RuntimeCommandError as e:
            log_message(f"Could not stop {self.settings.service} (continuing): {e}", "WARNING")
            result.warnings.append(f"Stop failed: {e}")

    def _complete(self, result: RecoveryResult) -> None:
        self._transition(RecoveryState.COMPLETE)
        result.state = RecoveryState.COMPLETE
        result.success = True

    def _abort(self, result: RecoveryResult, error: UpgradeError, log: bool = True) -> None:
        failed_step = self.state
        self._transition(RecoveryState.ABORTED)
        result.state = RecoveryState.ABORTED
        result.success = False
        result.failed_step = failed_step.value
        result.error = str(error) or type(error).__name__
        if log:
            log_message(f"Recovery failed during {failed_step.value}: {error}", "ERROR")
            if result.data_replaced and result.backup:
                log_message(f"Backup {result.backup.canonical_name} was already restored as the live database", "ERROR")
            elif result.data_replaced:
                log_message("The live database was already removed for the dump import", "ERROR")
            if result.restored_version:
                log_message(f"Compose file already references {result.restored_version}", "ERROR")
