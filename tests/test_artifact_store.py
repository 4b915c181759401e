"""Tests for backup/dump naming, discovery and renames inside the data volume."""

from datetime import datetime

import pytest

from meili_updates.utils.errors import VolumeNotFoundError
from meili_updates.modules.meilisearch.components.artifact_store import (
    ArtifactStore,
    ArtifactStoreError,
    DataBackup,
    DumpArtifact,
    VolumeHandle,
    backup_name,
    dump_name,
    version_from_filename,
)

from conftest import LocalVolumeRuntime

VOLUME = VolumeHandle(name="docker_meili_data")


@pytest.fixture
def store(runtime):
    return ArtifactStore(runtime)


def test_canonical_names():
    assert backup_name("20240101_0900", "v1.14.0") == "data.ms_20240101_0900_v1.14.0.backup"
    assert dump_name("20240101_0900", "v1.14.0") == "20240101_0900_v1.14.0.dump"


def test_backup_from_name():
    backup = DataBackup.from_name("data.ms_20240101_0900_v1.14.0.backup")
    assert backup.source_version == "v1.14.0"
    assert backup.timestamp == "20240101_0900"
    assert backup.created_at == datetime(2024, 1, 1, 9, 0)


@pytest.mark.parametrize("name", [
    "data.ms",
    "data.ms_20240101_0900_v1.14.backup",
    "data.ms_20240101_0900_1.14.0.backup",
    "data.ms_20240101_0900_v1.14.0.backup.old",
    "data.ms_latest_v1.14.0.backup",
    "notes.txt",
])
def test_foreign_names_are_not_backups(name):
    assert DataBackup.from_name(name) is None


def test_dump_from_name():
    dump = DumpArtifact.from_name("20240101_0900_v1.14.0.dump")
    assert dump.source_version == "v1.14.0"
    assert DumpArtifact.from_name("20240101-090000123.dump") is None


def test_version_from_filename():
    assert version_from_filename("my_v1.12.3_export.dump") == "v1.12.3"
    assert version_from_filename("20240101-090000123.dump") is None


def test_find_volume_prefers_exact_names_in_order(volume_root):
    runtime = LocalVolumeRuntime(volume_root, volumes=["docker_docker_meili_data", "docker_meili_data"])
    volume = ArtifactStore(runtime).find_volume(["docker_meili_data", "docker_docker_meili_data"])
    assert volume.name == "docker_meili_data"


def test_find_volume_prefixed_name(volume_root):
    runtime = LocalVolumeRuntime(volume_root, volumes=["docker_docker_meili_data"])
    volume = ArtifactStore(runtime).find_volume(["docker_meili_data", "docker_docker_meili_data"])
    assert volume.name == "docker_docker_meili_data"


def test_find_volume_substring_search(volume_root):
    runtime = LocalVolumeRuntime(volume_root, volumes=["other", "search_docker_meili_data_1"])
    volume = ArtifactStore(runtime).find_volume(["docker_meili_data", "project_docker_meili_data"])
    assert volume.name == "search_docker_meili_data_1"


def test_find_volume_exhausted(volume_root):
    runtime = LocalVolumeRuntime(volume_root, volumes=["postgres_data"])
    with pytest.raises(VolumeNotFoundError, match="postgres_data"):
        ArtifactStore(runtime).find_volume(["docker_meili_data"])


def test_rename_live_data_to_backup(store, volume_root):
    (volume_root / "data.ms").mkdir()
    (volume_root / "data.ms" / "data.mdb").write_text("index")

    backup = store.rename_live_data_to_backup(VOLUME, "20240101_0900", "v1.14.0")

    assert backup.canonical_name == "data.ms_20240101_0900_v1.14.0.backup"
    assert not (volume_root / "data.ms").exists()
    assert (volume_root / backup.canonical_name / "data.mdb").read_text() == "index"


def test_rename_live_data_first_run_is_skipped(store, volume_root):
    assert store.rename_live_data_to_backup(VOLUME, "20240101_0900", "v1.14.0") is None
    assert sorted(p.name for p in volume_root.iterdir()) == ["dumps"]


def test_rename_live_data_refuses_to_clobber(store, volume_root):
    (volume_root / "data.ms").mkdir()
    (volume_root / "data.ms_20240101_0900_v1.14.0.backup").mkdir()
    with pytest.raises(ArtifactStoreError):
        store.rename_live_data_to_backup(VOLUME, "20240101_0900", "v1.14.0")
    assert (volume_root / "data.ms").is_dir()


def test_rename_dump_to_canonical(store, volume_root):
    (volume_root / "dumps" / "abc123.dump").write_text("dump")

    dump = store.rename_dump_to_canonical(VOLUME, "abc123", "20240101_0900", "v1.14.0")

    assert dump.canonical_name == "20240101_0900_v1.14.0.dump"
    assert dump.raw_id == "abc123"
    assert (volume_root / "dumps" / "20240101_0900_v1.14.0.dump").read_text() == "dump"
    assert not (volume_root / "dumps" / "abc123.dump").exists()


def test_rename_dump_is_idempotent_under_retry(store, volume_root):
    (volume_root / "dumps" / "abc123.dump").write_text("dump")
    store.rename_dump_to_canonical(VOLUME, "abc123", "20240101_0900", "v1.14.0")

    again = store.rename_dump_to_canonical(VOLUME, "abc123", "20240101_0900", "v1.14.0")

    assert again is None
    assert (volume_root / "dumps" / "20240101_0900_v1.14.0.dump").read_text() == "dump"


def test_list_backups_newest_first_ignoring_foreign_files(store, volume_root):
    for name in [
        "data.ms_20240101_0900_v1.13.0.backup",
        "data.ms_20240301_1200_v1.14.0.backup",
        "data.ms_20231231_2359_v1.12.0.backup",
        "data.ms_garbage.backup",
        "data.ms",
    ]:
        (volume_root / name).mkdir()

    names = [b.canonical_name for b in store.list_backups(VOLUME)]

    assert names == [
        "data.ms_20240301_1200_v1.14.0.backup",
        "data.ms_20240101_0900_v1.13.0.backup",
        "data.ms_20231231_2359_v1.12.0.backup",
    ]


def test_list_dumps_newest_first(store, volume_root):
    for name in ["20240101_0900_v1.13.0.dump", "20240301_1200_v1.14.0.dump", "abc123.dump"]:
        (volume_root / "dumps" / name).write_text("dump")

    names = [d.canonical_name for d in store.list_dumps(VOLUME)]

    assert names == ["20240301_1200_v1.14.0.dump", "20240101_0900_v1.13.0.dump"]


def test_list_dumps_without_dumps_directory(tmp_path):
    root = tmp_path / "empty"
    root.mkdir()
    assert ArtifactStore(LocalVolumeRuntime(root)).list_dumps(VOLUME) == []


def test_restore_backup_replaces_live_data(store, volume_root):
    (volume_root / "data.ms").mkdir()
    (volume_root / "data.ms" / "data.mdb").write_text("incompatible")
    backup_dir = volume_root / "data.ms_20240101_0900_v1.14.0.backup"
    backup_dir.mkdir()
    (backup_dir / "data.mdb").write_text("good")

    store.restore_backup_as_live_data(VOLUME, DataBackup.from_name(backup_dir.name))

    assert (volume_root / "data.ms" / "data.mdb").read_text() == "good"
    assert not backup_dir.exists()


def test_restore_missing_backup_keeps_live_data(store, volume_root):
    (volume_root / "data.ms").mkdir()
    with pytest.raises(ArtifactStoreError):
        store.restore_backup_as_live_data(VOLUME, DataBackup.from_name("data.ms_20240101_0900_v1.14.0.backup"))
    assert (volume_root / "data.ms").is_dir()


def test_dump_exists_and_remove_live_data(store, volume_root):
    (volume_root / "dumps" / "manual.dump").write_text("dump")
    (volume_root / "data.ms").mkdir()

    assert store.dump_exists(VOLUME, "manual.dump") is True
    assert store.dump_exists(VOLUME, "other.dump") is False

    store.remove_live_data(VOLUME)
    assert not store.has_live_data(VOLUME)
