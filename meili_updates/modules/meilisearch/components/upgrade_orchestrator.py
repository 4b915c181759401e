"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Upgrade Orchestrator

Drives a Meilisearch version upgrade:

    CHECKING -> CONFIRM_PENDING -> EXPORTING -> EXPORT_DONE -> STOPPING
    -> BACKING_UP -> RENAMING_DUMP -> VERSION_SWAPPED -> IMPORTING
    -> RESTARTING -> HEALTH_CHECKING -> COMPLETE

Any hard error moves to ABORTED. Everything before STOPPING leaves the system
untouched. From BACKING_UP on, the old data directory has been renamed aside
before anything else touches the volume, so recovery always has a restore
point. Failures are reported with the artifacts already created; rolling back
is a separate operator action (--recover), never automatic.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from meili_updates.utils.compose_file import ComposeFile
from meili_updates.utils.docker_runtime import DockerRuntime, RuntimeCommandError
from meili_updates.utils.errors import ServiceUnreachableError, UpgradeError
from meili_updates.utils.index import log_message
from meili_updates.utils.prompt import Prompter
from .artifact_store import ArtifactStore, DataBackup, DumpArtifact, dump_name, format_timestamp
from .engine_client import MeilisearchClient
from .export_coordinator import ExportCoordinator
from .settings import UpgradeSettings, import_dump
from .version_resolver import VersionResolver


class UpgradeState(str, Enum):
    CHECKING = "CHECKING"
    CONFIRM_PENDING = "CONFIRM_PENDING"
    EXPORTING = "EXPORTING"
    EXPORT_DONE = "EXPORT_DONE"
    STOPPING = "STOPPING"
    BACKING_UP = "BACKING_UP"
    RENAMING_DUMP = "RENAMING_DUMP"
    VERSION_SWAPPED = "VERSION_SWAPPED"
    IMPORTING = "IMPORTING"
    RESTARTING = "RESTARTING"
    HEALTH_CHECKING = "HEALTH_CHECKING"
    COMPLETE = "COMPLETE"
    ABORTED = "ABORTED"


@dataclass
class UpgradeResult:
    state: UpgradeState = UpgradeState.CHECKING
    success: bool = False
    updated: bool = False
    cancelled: bool = False
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    backup: Optional[DataBackup] = None
    dump: Optional[DumpArtifact] = None
    version_swapped: bool = False
    healthy: Optional[bool] = None
    warnings: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def artifacts(self) -> List[str]:
        created = []
        if self.backup:
            created.append(self.backup.canonical_name)
        if self.dump:
            created.append(f"dumps/{self.dump.canonical_name}")
        return created

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "success": self.success,
            "updated": self.updated,
            "cancelled": self.cancelled,
            "old_version": self.from_version,
            "new_version": self.to_version,
            "backup": self.backup.to_dict() if self.backup else None,
            "dump": self.dump.to_dict() if self.dump else None,
            "version_swapped": self.version_swapped,
            "healthy": self.healthy,
            "warnings": list(self.warnings),
            "failed_step": self.failed_step,
            "error": self.error,
            "artifacts": self.artifacts,
        }


class UpgradeOrchestrator:
    """Runs one interactive upgrade from the configured version to the latest release."""

    def __init__(self, resolver: VersionResolver, exporter: ExportCoordinator,
                 store: ArtifactStore, compose_file: ComposeFile, runtime: DockerRuntime,
                 client: MeilisearchClient, prompter: Prompter, settings: UpgradeSettings,
                 sleep: Callable[[float], None] = time.sleep,
                 now: Callable[[], datetime] = datetime.now):
        self.resolver = resolver
        self.exporter = exporter
        self.store = store
        self.compose_file = compose_file
        self.runtime = runtime
        self.client = client
        self.prompter = prompter
        self.settings = settings
        self._sleep = sleep
        self._now = now
        self.state = UpgradeState.CHECKING
        self.history: List[UpgradeState] = []

    def _transition(self, state: UpgradeState) -> None:
        self.state = state
        self.history.append(state)
        log_message(f"[UPGRADE] {state.value}", "DEBUG")

    def wait_for_health(self) -> bool:
        """Poll /health up to health_attempts times, health_interval apart."""
        attempts = self.settings.health_attempts
        for attempt in range(1, attempts + 1):
            if self.client.is_healthy():
                log_message("Meilisearch is ready and accessible!")
                return True
            log_message(f"Waiting... ({attempt}/{attempts})")
            if attempt < attempts:
                self._sleep(self.settings.health_interval)
        return False

    def run(self) -> UpgradeResult:
        result = UpgradeResult()
        try:
            self._run(result)
        except UpgradeError as e:
            self._abort(result, e)
        return result

    def _run(self, result: UpgradeResult) -> None:
        self._transition(UpgradeState.CHECKING)
        check = self.resolver.check()
        result.from_version = check.current
        result.to_version = check.latest
        log_message(f"Current version: {check.current}")
        log_message(f"Latest version: {check.latest}")

        if not check.upgrade_available:
            log_message("Already on latest version. Nothing to do.")
            self._complete(result)
            return

        self._transition(UpgradeState.CONFIRM_PENDING)
        log_message(f"Upgrade available: {check.current} -> {check.latest}")
        if not self.prompter.confirm("Do you want to upgrade?"):
            log_message("Upgrade cancelled.")
            result.cancelled = True
            self._complete(result)
            return

        log_message("Starting upgrade process...")
        log_message("Checking if meilisearch is running...")
        if not self.client.is_healthy():
            raise ServiceUnreachableError(
                f"Meilisearch is not running or not accessible at {self.client.base_url}. "
                f"Please start it first: docker compose up -d {self.settings.service}"
            )

        self._transition(UpgradeState.EXPORTING)
        timestamp = format_timestamp(self._now())
        log_message("Creating dump...")
        task = self.exporter.export()

        self._transition(UpgradeState.EXPORT_DONE)
        volume = self.store.find_volume(self.settings.volume_candidates)

        self._transition(UpgradeState.STOPPING)
        log_message(f"Stopping {self.settings.service} container...")
        try:
            self.runtime.stop_service(self.settings.service)
        except RuntimeCommandError as e:
            log_message(f"Could not stop {self.settings.service} (continuing): {e}", "WARNING")
            result.warnings.append(f"Stop failed: {e}")

        self._transition(UpgradeState.BACKING_UP)
        log_message("Backing up database...")
        result.backup = self.store.rename_live_data_to_backup(volume, timestamp, check.current)

        self._transition(UpgradeState.RENAMING_DUMP)
        canonical_dump = dump_name(timestamp, check.current)
        if task.artifact_id:
            log_message(f"Dump file: {task.artifact_id}.dump -> {canonical_dump}")
            result.dump = self.store.rename_dump_to_canonical(volume, task.artifact_id, timestamp, check.current)
            if result.dump is None:
                result.warnings.append(f"Dump {task.artifact_id}.dump not found; import will likely fail")
        else:
            log_message("Dump task did not report a dump id; cannot rename the dump", "WARNING")
            result.warnings.append("Dump id unknown; import will likely fail")

        self._transition(UpgradeState.VERSION_SWAPPED)
        log_message(f"Updating {self.compose_file.path.name}...")
        self.compose_file.write_version(check.latest)
        result.version_swapped = True

        self._transition(UpgradeState.IMPORTING)
        warning = import_dump(self.runtime, self.settings, self.store.dump_path(volume, canonical_dump))
        if warning:
            result.warnings.append(warning)

        # a single-service restart leaves tunnel networking broken; restart the whole stack
        self._transition(UpgradeState.RESTARTING)
        log_message("Restarting full stack to ensure proper networking...")
        log_message("Stopping all services...")
        self.runtime.stop_all()
        log_message("Starting all services...")
        self.runtime.start_all()

        self._transition(UpgradeState.HEALTH_CHECKING)
        log_message(f"Waiting for {self.settings.service} to be ready...")
        result.healthy = self.wait_for_health()
        if not result.healthy:
            log_message("Meilisearch may not be accessible externally yet.", "WARNING")
            log_message("Try checking: docker compose ps", "WARNING")
            log_message(f"And: docker compose logs {self.settings.service}", "WARNING")
            result.warnings.append("Health check did not pass")

        result.updated = True
        self._complete(result)
        log_message("Upgrade completed successfully!")
        log_message(f"- From: {check.current}")
        log_message(f"- To: {check.latest}")
        if result.backup:
            log_message(f"- Database backup: {result.backup.canonical_name}")
        if result.dump:
            log_message(f"- Dump file kept: {result.dump.canonical_name}")

    def _complete(self, result: UpgradeResult) -> None:
        self._transition(UpgradeState.COMPLETE)
        result.state = UpgradeState.COMPLETE
        result.success = True

    def _abort(self, result: UpgradeResult, error: UpgradeError) -> None:
        failed_step = self.state
        self._transition(UpgradeState.ABORTED)
        result.state = UpgradeState.ABORTED
        result.success = False
        result.failed_step = failed_step.value
        result.error = str(error)

        log_message(f"Upgrade failed during {failed_step.value}: {error}", "ERROR")
        if result.artifacts:
            log_message(f"Artifacts already created: {', '.join(result.artifacts)}", "ERROR")
        if result.version_swapped:
            log_message(f"Compose file already references {result.to_version}", "ERROR")
        if failed_step in (UpgradeState.CHECKING, UpgradeState.CONFIRM_PENDING,
                           UpgradeState.EXPORTING, UpgradeState.EXPORT_DONE):
            log_message("No changes were made.", "ERROR")
        else:
            log_message("Run with --recover to restore the previous version and database.", "ERROR")
