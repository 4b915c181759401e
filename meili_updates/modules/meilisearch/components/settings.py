"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Runtime settings shared by the upgrade and recovery orchestrators, plus the
dump import step they both run.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from meili_updates.utils.docker_runtime import DockerRuntime
from meili_updates.utils.errors import ImportTimeoutError
from meili_updates.utils.index import log_message


@dataclass
class UpgradeSettings:
    service: str = "meilisearch"
    volume_candidates: List[str] = field(default_factory=lambda: ["docker_meili_data"])
    master_key: Optional[str] = None
    mount_point: str = "/meili_data"
    import_timeout: float = 600
    fail_on_import_timeout: bool = False
    health_attempts: int = 30
    health_interval: float = 2

    @classmethod
    def from_config(cls, config: Dict[str, Any], volume_candidates: List[str],
                    master_key: Optional[str] = None) -> "UpgradeSettings":
        """Build settings from the module's "config" section."""
        service = config.get("service", {})
        volume = config.get("volume", {})
        import_cfg = config.get("import", {})
        health = config.get("health_check", {})
        return cls(
            service=service.get("name", "meilisearch"),
            volume_candidates=volume_candidates,
            master_key=master_key,
            mount_point=volume.get("mount_point", "/meili_data"),
            import_timeout=import_cfg.get("timeout_seconds", 600),
            fail_on_import_timeout=import_cfg.get("fail_on_timeout", False),
            health_attempts=health.get("attempts", 30),
            health_interval=health.get("interval_seconds", 2),
        )


def import_dump(runtime: DockerRuntime, settings: UpgradeSettings, dump_path: str) -> Optional[str]:
    """
    Run a one-shot engine instance importing a dump.

    A timeout or non-zero exit is inconclusive: large dumps keep importing
    after the compose client gives up, so the caller relies on the following
    health check. Returns a warning message in that case, None on a clean exit.

    Raises:
        ImportTimeoutError: timed out and fail_on_import_timeout is set
    """
    command = ["meilisearch", "--import-dump", dump_path]
    if settings.master_key:
        command.append(f"--master-key={settings.master_key}")

    log_message(f"Importing dump {dump_path}...")
    log_message("Note: This may take several minutes depending on dump size...")
    outcome = runtime.run_once(settings.service, command, timeout=settings.import_timeout)

    if outcome.succeeded:
        log_message("Import process completed.")
        return None

    if outcome.timed_out:
        message = f"Import did not finish within {settings.import_timeout:g} seconds"
        if settings.fail_on_import_timeout:
            raise ImportTimeoutError(message)
    else:
        message = f"Import process exited with code {outcome.returncode}"

    log_message(f"{message}; checking service health to confirm the import", "WARNING")
    return message
