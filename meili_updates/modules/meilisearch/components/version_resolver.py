"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Version Resolver

Reads the configured engine version from the compose file and the latest
release tag from GitHub. Tags are opaque strings: an upgrade is available
whenever they differ, and no ordering is ever computed.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from meili_updates.utils.compose_file import ComposeFile
from meili_updates.utils.errors import NetworkFailureError
from meili_updates.utils.index import log_message


@dataclass
class ReleaseInfo:
    """The fields of a GitHub release payload the resolver reads."""
    tag_name: str
    name: Optional[str] = None
    html_url: Optional[str] = None
    published_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReleaseInfo":
        tag = data.get("tag_name") if isinstance(data, dict) else None
        if not tag or not isinstance(tag, str):
            raise NetworkFailureError("Release payload has no tag_name")
        return cls(
            tag_name=tag,
            name=data.get("name"),
            html_url=data.get("html_url"),
            published_at=data.get("published_at"),
        )


@dataclass
class VersionCheck:
    current: str
    latest: str

    @property
    def upgrade_available(self) -> bool:
        return VersionResolver.is_upgrade_available(self.current, self.latest)


class VersionResolver:
    """Resolves current and latest engine versions. One attempt per call, no caching."""

    def __init__(self, compose_file: ComposeFile, release_url: str,
                 timeout: float = 30, session: Optional[requests.Session] = None):
        self.compose_file = compose_file
        self.release_url = release_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def current_version(self) -> str:
        """
        Raises:
            ConfigMissingError: compose file absent
            VersionNotFoundError: no engine image reference in it
        """
        return self.compose_file.read_version()

    def latest_release(self) -> ReleaseInfo:
        try:
            response = self.session.get(
                self.release_url,
                headers={"Accept": "application/vnd.github+json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except ValueError as e:
            raise NetworkFailureError(f"Release index returned invalid JSON: {e}") from e
        except requests.RequestException as e:
            raise NetworkFailureError(f"Could not fetch latest version: {e}") from e
        return ReleaseInfo.from_dict(payload)

    def latest_version(self) -> str:
        """
        Raises:
            NetworkFailureError: unreachable index or unusable payload
        """
        return self.latest_release().tag_name

    @staticmethod
    def is_upgrade_available(current: str, latest: str) -> bool:
        return current != latest

    def check(self) -> VersionCheck:
        current = self.current_version()
        log_message(f"Current version: {current}", "DEBUG")
        latest = self.latest_version()
        log_message(f"Latest version: {latest}", "DEBUG")
        return VersionCheck(current=current, latest=latest)
