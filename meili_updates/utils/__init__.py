"""
Meilisearch Update Management System
Copyright (C) 2024 HOMESERVER LLC

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

"""
Utilities for the Meilisearch update system.

Shared pieces used by the update modules: logging, the error taxonomy,
the compose file version reference, the docker runtime and operator prompts.
"""

from .index import log_message
from .errors import (
    UpgradeError,
    ConfigMissingError,
    VersionNotFoundError,
    NetworkFailureError,
    ServiceUnreachableError,
    TriggerFailedError,
    ExportFailedError,
    VolumeNotFoundError,
    ImportTimeoutError,
    RestoreSourceAbsentError,
    RecoveryCancelled
)
from .compose_file import ComposeFile, split_image_reference
from .docker_runtime import DockerRuntime, OneShotResult, RuntimeCommandError
from .prompt import Prompter, ConsolePrompter

__all__ = [
    'log_message',
    'UpgradeError',
    'ConfigMissingError',
    'VersionNotFoundError',
    'NetworkFailureError',
    'ServiceUnreachableError',
    'TriggerFailedError',
    'ExportFailedError',
    'VolumeNotFoundError',
    'ImportTimeoutError',
    'RestoreSourceAbsentError',
    'RecoveryCancelled',
    'ComposeFile',
    'split_image_reference',
    'DockerRuntime',
    'OneShotResult',
    'RuntimeCommandError',
    'Prompter',
    'ConsolePrompter'
]
