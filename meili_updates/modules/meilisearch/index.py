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

import argparse
import copy
import json
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dotenv import dotenv_values

from meili_updates.utils.compose_file import ComposeFile
from meili_updates.utils.docker_runtime import DockerRuntime
from meili_updates.utils.errors import ConfigMissingError, UpgradeError
from meili_updates.utils.index import log_message
from meili_updates.utils.prompt import ConsolePrompter, Prompter
from .components import (
    ArtifactStore,
    ExportCoordinator,
    MeilisearchClient,
    RecoveryOrchestrator,
    UpgradeOrchestrator,
    UpgradeSettings,
    VersionResolver,
)

DEFAULT_CONFIG = {
    "metadata": {
        "schema_version": "1.0.0",
        "module_name": "meilisearch"
    },
    "config": {
        "compose_file": "../docker-compose.yml",
        "env_file": ".env",
        "service": {"name": "meilisearch", "image": "getmeili/meilisearch"},
        "volume": {"name": "docker_meili_data", "mount_point": "/meili_data", "helper_image": "alpine"},
        "installation": {
            "github_api_url": "https://api.github.com/repos/meilisearch/meilisearch/releases/latest"
        },
        "export": {"poll_interval_seconds": 5},
        "import": {"timeout_seconds": 600, "fail_on_timeout": False},
        "health_check": {"attempts": 30, "interval_seconds": 2},
        "http": {"timeout_seconds": 30}
    }
}

ENV_URL = "MEILISEARCH_URL"
ENV_MASTER_KEY = "MEILI_MASTER_KEY"

# Load module configuration from index.json
def load_module_config():
    """
    Load configuration from the module's index.json file.
    Returns:
        dict: Configuration data or default values if loading fails
    """
    try:
        config_path = os.path.join(os.path.dirname(__file__), "index.json")
        with open(config_path, 'r') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        log_message(f"Failed to load module config: {e}", "WARNING")
        return copy.deepcopy(DEFAULT_CONFIG)

# Global configuration
MODULE_CONFIG = load_module_config()

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meili-upgrade",
        description="Upgrade a docker compose Meilisearch instance, or recover from a failed upgrade"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--recover", action="store_true",
                      help="Restore the previous version and database backup")
    mode.add_argument("--silentcheck", action="store_true",
                      help="Print one line if an upgrade is available, nothing otherwise")
    mode.add_argument("--config", action="store_true",
                      help="Show the effective configuration")
    parser.add_argument("--compose-file", help="Path to docker-compose.yml")
    parser.add_argument("--env-file", help="Path to the .env file with MEILISEARCH_URL and MEILI_MASTER_KEY")
    parser.add_argument("--service", help="Compose service name of Meilisearch")
    parser.add_argument("--volume", help="Docker volume holding /meili_data")
    return parser

def apply_overrides(module_config: Dict[str, Any], options: argparse.Namespace) -> Dict[str, Any]:
    """Return a copy of the "config" section with command line overrides applied."""
    config = copy.deepcopy(module_config["config"])
    if getattr(options, "compose_file", None):
        config["compose_file"] = options.compose_file
    if getattr(options, "env_file", None):
        config["env_file"] = options.env_file
    if getattr(options, "service", None):
        config.setdefault("service", {})["name"] = options.service
    if getattr(options, "volume", None):
        config.setdefault("volume", {})["name"] = options.volume
    return config

def load_environment(env_file: str, environ: Optional[Dict[str, str]] = None) -> Dict[str, Optional[str]]:
    """
    Read MEILISEARCH_URL and MEILI_MASTER_KEY from the .env file.
    Process environment variables take precedence over the file.

    Raises:
        ConfigMissingError: no .env file and no URL in the environment, or no URL at all
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Optional[str]] = {}
    if Path(env_file).is_file():
        values.update(dotenv_values(env_file))
    elif not environ.get(ENV_URL):
        raise ConfigMissingError(
            f"{env_file} file not found. Please create it with:\n"
            f"{ENV_URL}=http://localhost:7700\n"
            f"{ENV_MASTER_KEY}=your_master_key_here"
        )

    for key in (ENV_URL, ENV_MASTER_KEY):
        if environ.get(key):
            values[key] = environ[key]

    if not values.get(ENV_URL):
        raise ConfigMissingError(f"{ENV_URL} is not set in {env_file} or the environment")
    return values

def build_compose_file(config: Dict[str, Any]) -> ComposeFile:
    service = config.get("service", {})
    return ComposeFile(
        config["compose_file"],
        service=service.get("name", "meilisearch"),
        image=service.get("image", "getmeili/meilisearch"),
    )

def build_resolver(config: Dict[str, Any]) -> VersionResolver:
    return VersionResolver(
        build_compose_file(config),
        config["installation"]["github_api_url"],
        timeout=config.get("http", {}).get("timeout_seconds", 30),
    )

def volume_candidates(config: Dict[str, Any], runtime: DockerRuntime) -> List[str]:
    """Bare volume name, then the name docker compose prefixes with the project."""
    name = config.get("volume", {}).get("name", "docker_meili_data")
    return [name, f"{runtime.project_name}_{name}"]

def build_runtime(config: Dict[str, Any]) -> DockerRuntime:
    return DockerRuntime(
        config["compose_file"],
        helper_image=config.get("volume", {}).get("helper_image", "alpine"),
    )

def build_settings(config: Dict[str, Any], runtime: DockerRuntime, env: Dict[str, Optional[str]]) -> UpgradeSettings:
    return UpgradeSettings.from_config(config, volume_candidates(config, runtime), env.get(ENV_MASTER_KEY))

def silent_check(config: Dict[str, Any], resolver: Optional[VersionResolver] = None) -> Dict[str, Any]:
    """
    Unattended check: prints a single line iff an upgrade is available.
    Failures produce no output; the caller exits non-zero.
    """
    resolver = resolver or build_resolver(config)
    try:
        check = resolver.check()
    except UpgradeError as e:
        return {"success": False, "error": str(e)}

    if check.upgrade_available:
        print(f"Meilisearch upgrade available: {check.current} -> {check.latest}")
    return {
        "success": True,
        "upgrade_available": check.upgrade_available,
        "current_version": check.current,
        "latest_version": check.latest
    }

def run_upgrade(config: Dict[str, Any], env: Dict[str, Optional[str]], prompter: Prompter,
                sleep: Callable[[float], None] = time.sleep,
                now: Callable[[], datetime] = datetime.now) -> Dict[str, Any]:
    runtime = build_runtime(config)
    settings = build_settings(config, runtime, env)
    http_timeout = config.get("http", {}).get("timeout_seconds", 30)
    client = MeilisearchClient(env[ENV_URL], env.get(ENV_MASTER_KEY), timeout=http_timeout)
    orchestrator = UpgradeOrchestrator(
        resolver=build_resolver(config),
        exporter=ExportCoordinator(
            client,
            poll_interval=config.get("export", {}).get("poll_interval_seconds", 5),
            sleep=sleep,
        ),
        store=ArtifactStore(runtime, mount_point=settings.mount_point),
        compose_file=build_compose_file(config),
        runtime=runtime,
        client=client,
        prompter=prompter,
        settings=settings,
        sleep=sleep,
        now=now,
    )
    return orchestrator.run().to_dict()

def run_recovery(config: Dict[str, Any], env: Dict[str, Optional[str]], prompter: Prompter) -> Dict[str, Any]:
    runtime = build_runtime(config)
    settings = build_settings(config, runtime, env)
    orchestrator = RecoveryOrchestrator(
        store=ArtifactStore(runtime, mount_point=settings.mount_point),
        compose_file=build_compose_file(config),
        runtime=runtime,
        prompter=prompter,
        settings=settings,
    )
    return orchestrator.run().to_dict()

def show_config(config: Dict[str, Any]) -> Dict[str, Any]:
    log_message("Current Meilisearch module configuration:")
    for key, value in config.items():
        log_message(f"  {key}: {value}")
    return {"success": True, "config": config}

def run(options: argparse.Namespace, prompter: Optional[Prompter] = None,
        module_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Dispatch on parsed options. Returns a result dict with a "success" key."""
    config = apply_overrides(module_config or MODULE_CONFIG, options)

    if options.silentcheck:
        return silent_check(config)

    if options.config:
        return show_config(config)

    try:
        env = load_environment(config["env_file"])
    except ConfigMissingError as e:
        log_message(f"Error: {e}", "ERROR")
        return {"success": False, "error": str(e)}

    compose_file = build_compose_file(config)
    if not compose_file.exists():
        message = f"{compose_file.path} not found"
        log_message(f"Error: {message}", "ERROR")
        return {"success": False, "error": message}

    prompter = prompter or ConsolePrompter()
    if options.recover:
        return run_recovery(config, env, prompter)

    return run_upgrade(config, env, prompter)

def main(args=None):
    """Module entrypoint for orchestrated runs: main(["--recover"]) etc."""
    options = build_parser().parse_args(args or [])
    return run(options)
