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
Docker / Docker Compose runtime wrapper.

Thin subprocess layer over the docker CLI. Everything the orchestrators need
from the container runtime goes through this class:
- Volume discovery (inspect / ls)
- Disposable helper containers with a volume mounted
- Service stop/start and full stack down/up
- One-shot service runs bounded by a timeout
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from .errors import UpgradeError
from .index import log_message

class RuntimeCommandError(UpgradeError):
    """Raised when a docker command cannot be run or exits non-zero."""

    def __init__(self, command: List[str], returncode: Optional[int] = None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = f" (exit {returncode})" if returncode is not None else ""
        message = f"Command failed{detail}: {' '.join(command)}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)

@dataclass
class OneShotResult:
    """Outcome of a bounded one-shot container run."""
    returncode: Optional[int]
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0

class DockerRuntime:
    """
    Runs docker and docker compose commands for a single compose project.
    """

    def __init__(self, compose_file: str, project_name: Optional[str] = None,
                 helper_image: str = "alpine", docker_bin: str = "docker"):
        self.compose_file = Path(compose_file)
        self._project_name = project_name
        self.helper_image = helper_image
        self.docker_bin = docker_bin

    @property
    def project_name(self) -> str:
        """Compose project name; defaults to the compose file's directory name."""
        if self._project_name:
            return self._project_name
        return self.compose_file.resolve().parent.name

    def _compose(self, *args: str) -> List[str]:
        return [self.docker_bin, "compose", "-f", str(self.compose_file), *args]

    def _run(self, command: List[str], check: bool = True) -> subprocess.CompletedProcess:
        log_message(f"Running: {' '.join(command)}", "DEBUG")
        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            raise RuntimeCommandError(command, stderr=str(e)) from e
        if check and result.returncode != 0:
            raise RuntimeCommandError(command, result.returncode, result.stderr)
        return result

    # --- Volumes ---
    def volume_exists(self, name: str) -> bool:
        """Check whether a named docker volume exists."""
        result = self._run([self.docker_bin, "volume", "inspect", name], check=False)
        return result.returncode == 0

    def list_volumes(self) -> List[str]:
        """List the names of all docker volumes."""
        result = self._run([self.docker_bin, "volume", "ls", "--format", "{{.Name}}"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def run_in_volume(self, volume: str, script: str, mount_point: str = "/meili_data") -> str:
        """
        Run a shell script in a disposable helper container with the volume mounted.
        Returns:
            str: stdout of the script
        """
        command = [
            self.docker_bin, "run", "--rm",
            "-v", f"{volume}:{mount_point}",
            self.helper_image, "sh", "-c", script,
        ]
        return self._run(command).stdout

    # --- Services ---
    def stop_service(self, service: str) -> None:
        self._run(self._compose("stop", service))

    def start_service(self, service: str) -> None:
        self._run(self._compose("up", "-d", service))

    def stop_all(self) -> None:
        """Stop and remove every service of the compose project."""
        self._run(self._compose("down"))

    def start_all(self) -> None:
        self._run(self._compose("up", "-d"))

    def run_once(self, service: str, command: List[str], timeout: Optional[float] = None) -> OneShotResult:
        """
        Run a disposable instance of a service with an explicit command.

        Output is not captured so the operator can follow long imports.
        A timeout only stops waiting on the compose client; it is reported
        back rather than raised.
        """
        full_command = self._compose("run", "--rm", service, *command)
        log_message(f"Running one-shot {service} (timeout: {timeout}s)", "DEBUG")
        try:
            result = subprocess.run(full_command, timeout=timeout)
        except subprocess.TimeoutExpired:
            return OneShotResult(returncode=None, timed_out=True)
        except OSError as e:
            # command arguments may carry the master key
            raise RuntimeCommandError(self._compose("run", "--rm", service), stderr=str(e)) from e
        return OneShotResult(returncode=result.returncode)
