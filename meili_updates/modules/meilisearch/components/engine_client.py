"""
Meilisearch Update Components
Copyright (C) 2024 HOMESERVER LLC

Engine HTTP Client

Minimal client for the three engine endpoints the upgrade needs:
GET /health, POST /dumps and GET /tasks/{uid}.
"""

from typing import Any, Dict, Optional

import requests

from meili_updates.utils.errors import ServiceUnreachableError
from meili_updates.utils.index import log_message


class MeilisearchClient:
    """requests-based client bound to one engine URL and master key."""

    def __init__(self, base_url: str, master_key: Optional[str] = None,
                 timeout: float = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.master_key = master_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if not self.master_key:
            return {}
        return {"Authorization": f"Bearer {self.master_key}"}

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def is_healthy(self) -> bool:
        """Liveness probe: True iff /health answers with a 2xx status."""
        try:
            response = self.session.get(self._url("health"), timeout=self.timeout)
        except requests.RequestException as e:
            log_message(f"Health probe failed: {e}", "DEBUG")
            return False
        return response.ok

    def create_dump(self) -> requests.Response:
        """Request an asynchronous dump. Returns the raw response."""
        try:
            return self.session.post(self._url("dumps"), headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise ServiceUnreachableError(f"Could not reach Meilisearch at {self.base_url}: {e}") from e

    def get_task(self, task_uid: str) -> Dict[str, Any]:
        """Fetch a task payload."""
        try:
            response = self.session.get(self._url(f"tasks/{task_uid}"), headers=self._headers(),
                                        timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except ValueError as e:
            raise ServiceUnreachableError(f"Task {task_uid} returned a non-JSON payload: {e}") from e
        except requests.RequestException as e:
            raise ServiceUnreachableError(f"Could not fetch task {task_uid}: {e}") from e
