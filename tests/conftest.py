"""Shared fixtures and test doubles for the upgrade/recovery tests."""

import subprocess
from datetime import datetime
from unittest.mock import Mock

import pytest

from meili_updates.utils.compose_file import ComposeFile
from meili_updates.utils.docker_runtime import OneShotResult, RuntimeCommandError
from meili_updates.utils.prompt import Prompter
from meili_updates.modules.meilisearch.components.settings import UpgradeSettings

COMPOSE_TEMPLATE = """\
services:
  meilisearch:
    # search engine
    image: getmeili/meilisearch:{version}
    env_file: .env
    volumes:
      - meili_data:/meili_data
  app:
    image: example/app:1.0
volumes:
  meili_data:
"""

FIXED_NOW = datetime(2024, 1, 1, 9, 0)


class ScriptedPrompter(Prompter):
    """Answers prompts from pre-recorded lists; running out means 'no'."""

    def __init__(self, confirms=(), choices=(), answers=()):
        self.confirms = list(confirms)
        self.choices = list(choices)
        self.answers = list(answers)
        self.questions = []
        self.offered = []

    def confirm(self, question):
        self.questions.append(question)
        return self.confirms.pop(0) if self.confirms else False

    def choose(self, question, options):
        self.questions.append(question)
        self.offered.append([key for key, _ in options])
        return self.choices.pop(0) if self.choices else None

    def ask(self, question):
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else ""


class LocalVolumeRuntime:
    """
    Runtime double backed by a local directory.

    Helper-container scripts run through the local sh with the mount point
    rewritten to the directory, so artifact operations touch real files.
    Service operations are only recorded.
    """

    project_name = "docker"

    def __init__(self, root, volumes=("docker_meili_data",)):
        self.root = root
        self.volumes = list(volumes)
        self.calls = []
        self.import_result = OneShotResult(returncode=0)
        self.on_import = None
        self.stop_error = None

    def volume_exists(self, name):
        return name in self.volumes

    def list_volumes(self):
        return list(self.volumes)

    def run_in_volume(self, volume, script, mount_point="/meili_data"):
        self.calls.append(("run_in_volume", script))
        local_script = script.replace(mount_point, str(self.root))
        result = subprocess.run(["sh", "-c", local_script], capture_output=True, text=True)
        if result.returncode != 0:
            raise RuntimeCommandError(["sh", "-c", script], result.returncode, result.stderr)
        return result.stdout

    def stop_service(self, service):
        self.calls.append(("stop_service", service))
        if self.stop_error:
            raise self.stop_error

    def start_service(self, service):
        self.calls.append(("start_service", service))

    def stop_all(self):
        self.calls.append(("stop_all",))

    def start_all(self):
        self.calls.append(("start_all",))

    def run_once(self, service, command, timeout=None):
        self.calls.append(("run_once", service, tuple(command), timeout))
        if self.on_import:
            self.on_import(command)
        return self.import_result

    @property
    def actions(self):
        return [call[0] for call in self.calls if call[0] != "run_in_volume"]


class FakeClient:
    """Engine client double whose health answers come from a list."""

    base_url = "http://localhost:7700"

    def __init__(self, health=(True,)):
        self.health = list(health)
        self.probes = 0

    def is_healthy(self):
        self.probes += 1
        if len(self.health) > 1:
            return self.health.pop(0)
        return self.health[0]


def write_compose(path, version="v1.14.0"):
    path.write_text(COMPOSE_TEMPLATE.format(version=version))
    return path


def release_session(tag="v1.15.0"):
    """requests.Session double answering the release index with a tag."""
    response = Mock()
    response.json.return_value = {"tag_name": tag, "name": tag}
    response.raise_for_status.return_value = None
    session = Mock()
    session.get.return_value = response
    return session


@pytest.fixture
def compose_path(tmp_path):
    return write_compose(tmp_path / "docker-compose.yml")


@pytest.fixture
def compose_file(compose_path):
    return ComposeFile(str(compose_path))


@pytest.fixture
def volume_root(tmp_path):
    root = tmp_path / "volume"
    (root / "dumps").mkdir(parents=True)
    return root


@pytest.fixture
def runtime(volume_root):
    return LocalVolumeRuntime(volume_root)


@pytest.fixture
def settings():
    return UpgradeSettings(
        service="meilisearch",
        volume_candidates=["docker_meili_data", "docker_docker_meili_data"],
        master_key="secret",
        health_attempts=3,
        health_interval=0,
    )
