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
Error taxonomy for the upgrade and recovery orchestrators.

Precondition errors (config, version, volume) are raised before anything is
mutated. Errors raised after a destructive step has started are surfaced to
the operator together with the artifacts already created; they never trigger
an automatic rollback.
"""

class UpgradeError(Exception):
    """Base class for every upgrade/recovery failure."""
    pass

class ConfigMissingError(UpgradeError):
    """The compose file (or .env file) does not exist or is not accessible."""
    pass

class VersionNotFoundError(UpgradeError):
    """No engine image reference could be located in the compose file."""
    pass

class NetworkFailureError(UpgradeError):
    """The release index was unreachable or returned an unusable payload."""
    pass

class ServiceUnreachableError(UpgradeError):
    """The engine did not answer its health endpoint or API."""
    pass

class TriggerFailedError(UpgradeError):
    """The engine did not return a task id for a dump request."""
    pass

class ExportFailedError(UpgradeError):
    """A dump task reached the failed state."""
    pass

class VolumeNotFoundError(UpgradeError):
    """No docker volume matched any of the candidate names."""
    pass

class ImportTimeoutError(UpgradeError):
    """A dump import exceeded its timeout and timeouts are configured fatal."""
    pass

class RestoreSourceAbsentError(UpgradeError):
    """Recovery found neither data backups nor dumps."""
    pass

class RecoveryCancelled(UpgradeError):
    """The operator cancelled a destructive recovery path."""
    pass
