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
Compose File Version Reference

Reads and rewrites the engine image tag in a docker-compose.yml.

The file is parsed with PyYAML to find the service's image field, so a second
service using a similar image cannot be picked by accident. Writes substitute
the exact image token in the original text, keeping comments and formatting,
and go through a temp file + rename so a crash never leaves a half-written
compose file behind.
"""

import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from .errors import ConfigMissingError, VersionNotFoundError
from .index import log_message

def split_image_reference(reference: str) -> Tuple[str, str]:
    """Split 'namespace/image:tag' into ('namespace/image', 'tag')."""
    name, sep, tag = reference.rpartition(":")
    # a colon inside a registry host (host:5000/image) is not a tag separator
    if not sep or "/" in tag:
        return reference, ""
    return name, tag

class ComposeFile:
    """The single engine VersionReference inside a compose file."""

    def __init__(self, path: str, service: str = "meilisearch", image: str = "getmeili/meilisearch"):
        self.path = Path(path)
        self.service = service
        self.image = image

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Dict[str, Any]:
        """Parse the compose file into a mapping."""
        if not self.exists():
            raise ConfigMissingError(f"Compose file not found: {self.path}")
        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigMissingError(f"Cannot read compose file {self.path}: {e}") from e
        except yaml.YAMLError as e:
            raise VersionNotFoundError(f"Compose file {self.path} is not valid YAML: {e}") from e
        if not isinstance(data, dict):
            raise VersionNotFoundError(f"Compose file {self.path} is not a mapping")
        return data

    def _matches_image(self, reference: str) -> bool:
        name, tag = split_image_reference(reference)
        if not tag:
            return False
        return name == self.image or name.endswith("/" + self.image)

    def image_reference(self) -> str:
        """
        Locate the engine image reference ('getmeili/meilisearch:v1.14.0').

        The configured service entry wins. Without it, services are scanned
        for the engine image and the first one is honored.
        """
        services = self.load().get("services") or {}
        if not isinstance(services, dict):
            raise VersionNotFoundError(f"No services section in {self.path}")

        entry = services.get(self.service)
        if isinstance(entry, dict):
            reference = str(entry.get("image") or "")
            if self._matches_image(reference):
                return reference
            log_message(f"Service '{self.service}' does not use {self.image} (image: '{reference}')", "WARNING")

        candidates: List[Tuple[str, str]] = []
        for name, definition in services.items():
            if isinstance(definition, dict):
                reference = str(definition.get("image") or "")
                if self._matches_image(reference):
                    candidates.append((name, reference))

        if not candidates:
            raise VersionNotFoundError(f"Could not find {self.image} version in {self.path}")
        if len(candidates) > 1:
            names = ", ".join(name for name, _ in candidates)
            log_message(f"Multiple services use {self.image} ({names}); using '{candidates[0][0]}'", "WARNING")
        return candidates[0][1]

    def read_version(self) -> str:
        """Return the configured engine version tag."""
        _, tag = split_image_reference(self.image_reference())
        return tag

    def write_version(self, version: str) -> bool:
        """
        Rewrite the engine image tag.
        Returns:
            bool: True if the file changed, False if it already named the version
        """
        reference = self.image_reference()
        name, current = split_image_reference(reference)
        if current == version:
            log_message(f"{self.path.name} already references {reference}")
            return False

        new_reference = f"{name}:{version}"
        try:
            with open(self.path, 'r') as f:
                text = f.read()
        except OSError as e:
            raise ConfigMissingError(f"Cannot read compose file {self.path}: {e}") from e

        # the lookahead keeps v1.1 from matching inside v1.10
        pattern = re.escape(reference) + r"(?![\w.\-])"
        new_text, count = re.subn(pattern, new_reference, text)
        if count == 0:
            raise VersionNotFoundError(f"Image reference {reference} not found verbatim in {self.path}")

        try:
            self._replace_text(new_text)
        except OSError as e:
            raise ConfigMissingError(f"Cannot write compose file {self.path}: {e}") from e

        log_message(f"Updated {self.path.name}: {reference} -> {new_reference}")

        written = self.read_version()
        if written != version:
            raise VersionNotFoundError(
                f"Compose file still references {written} after rewriting to {version}"
            )
        return True

    def _replace_text(self, text: str) -> None:
        """Write through a temp file in the same directory, then rename over the original."""
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(text)
            shutil.copymode(str(self.path), tmp_path)
            os.replace(tmp_path, str(self.path))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
