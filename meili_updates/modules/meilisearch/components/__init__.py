"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Component-based upgrade system: version resolution, dump export, artifact
management and the upgrade/recovery state machines.
"""

from .version_resolver import VersionResolver, VersionCheck, ReleaseInfo
from .engine_client import MeilisearchClient
from .export_coordinator import ExportCoordinator, ExportTask, TaskStatus
from .artifact_store import ArtifactStore, ArtifactStoreError, DataBackup, DumpArtifact, VolumeHandle
from .settings import UpgradeSettings, import_dump
from .upgrade_orchestrator import UpgradeOrchestrator, UpgradeResult, UpgradeState
from .recovery_orchestrator import RecoveryOrchestrator, RecoveryResult, RecoveryState, RecoverySource

__all__ = [
    'VersionResolver',
    'VersionCheck',
    'ReleaseInfo',
    'MeilisearchClient',
    'ExportCoordinator',
    'ExportTask',
    'TaskStatus',
    'ArtifactStore',
    'ArtifactStoreError',
    'DataBackup',
    'DumpArtifact',
    'VolumeHandle',
    'UpgradeSettings',
    'import_dump',
    'UpgradeOrchestrator',
    'UpgradeResult',
    'UpgradeState',
    'RecoveryOrchestrator',
    'RecoveryResult',
    'RecoveryState',
    'RecoverySource'
]
