"""Command line dispatch, .env loading and the unattended check."""

import logging
from unittest.mock import Mock, patch

import pytest
import requests

from meili_updates import index as cli
from meili_updates.utils.errors import ConfigMissingError
from meili_updates.utils.prompt import ConsolePrompter
from meili_updates.modules.meilisearch import index as module
from meili_updates.modules.meilisearch.components.version_resolver import VersionResolver

from conftest import release_session

RELEASE_URL = "https://api.github.com/repos/meilisearch/meilisearch/releases/latest"


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text("MEILISEARCH_URL=http://localhost:7700\nMEILI_MASTER_KEY=from-file\n")
    return path


def _options(*argv):
    return module.build_parser().parse_args(list(argv))


def test_module_config_is_loaded_from_index_json():
    config = module.load_module_config()
    assert config["metadata"]["module_name"] == "meilisearch"
    assert config["config"]["import"]["timeout_seconds"] == 600
    assert config["config"]["health_check"] == {"attempts": 30, "interval_seconds": 2}


def test_modes_are_mutually_exclusive():
    with pytest.raises(SystemExit):
        _options("--recover", "--silentcheck")


def test_apply_overrides_leaves_module_config_untouched():
    options = _options("--compose-file", "/srv/docker-compose.yml", "--service", "search", "--volume", "idx")

    config = module.apply_overrides(module.DEFAULT_CONFIG, options)

    assert config["compose_file"] == "/srv/docker-compose.yml"
    assert config["service"]["name"] == "search"
    assert config["volume"]["name"] == "idx"
    assert module.DEFAULT_CONFIG["config"]["service"]["name"] == "meilisearch"


def test_load_environment_from_file(env_file):
    env = module.load_environment(str(env_file), environ={})
    assert env["MEILISEARCH_URL"] == "http://localhost:7700"
    assert env["MEILI_MASTER_KEY"] == "from-file"


def test_environment_overrides_file(env_file):
    env = module.load_environment(str(env_file), environ={"MEILI_MASTER_KEY": "from-env"})
    assert env["MEILI_MASTER_KEY"] == "from-env"
    assert env["MEILISEARCH_URL"] == "http://localhost:7700"


def test_missing_env_file_needs_url_in_environment(tmp_path):
    missing = str(tmp_path / ".env")
    with pytest.raises(ConfigMissingError, match="MEILISEARCH_URL=http://localhost:7700"):
        module.load_environment(missing, environ={})

    env = module.load_environment(missing, environ={"MEILISEARCH_URL": "http://search:7700"})
    assert env["MEILISEARCH_URL"] == "http://search:7700"
    assert env.get("MEILI_MASTER_KEY") is None


def test_env_file_without_url(tmp_path):
    path = tmp_path / ".env"
    path.write_text("MEILI_MASTER_KEY=only-key\n")
    with pytest.raises(ConfigMissingError):
        module.load_environment(str(path), environ={})


def test_volume_candidates_include_project_prefix():
    runtime = Mock(project_name="docker")
    assert module.volume_candidates({"volume": {"name": "docker_meili_data"}}, runtime) == [
        "docker_meili_data", "docker_docker_meili_data",
    ]


def test_silent_check_prints_one_line(compose_file, capsys):
    resolver = VersionResolver(compose_file, RELEASE_URL, session=release_session("v1.15.0"))

    result = module.silent_check({}, resolver=resolver)

    assert result["success"] and result["upgrade_available"]
    assert capsys.readouterr().out == "Meilisearch upgrade available: v1.14.0 -> v1.15.0\n"


def test_silent_check_is_silent_when_current(compose_file, capsys):
    resolver = VersionResolver(compose_file, RELEASE_URL, session=release_session("v1.14.0"))

    result = module.silent_check({}, resolver=resolver)

    assert result["success"] and not result["upgrade_available"]
    assert capsys.readouterr().out == ""


def test_silent_check_failure_is_silent(compose_file, capsys):
    session = Mock()
    session.get.side_effect = requests.ConnectionError("offline")

    result = module.silent_check({}, resolver=VersionResolver(compose_file, RELEASE_URL, session=session))

    assert not result["success"]
    assert capsys.readouterr().out == ""


def test_main_silentcheck_end_to_end(compose_path, compose_file, capsys):
    resolver = VersionResolver(compose_file, RELEASE_URL, session=release_session("v1.15.0"))

    with patch.object(module, "build_resolver", return_value=resolver):
        with pytest.raises(SystemExit) as exit_info:
            cli.main(["--silentcheck", "--compose-file", str(compose_path)])

    assert exit_info.value.code == 0
    assert capsys.readouterr().out == "Meilisearch upgrade available: v1.14.0 -> v1.15.0\n"


@pytest.mark.parametrize("result, code", [
    ({"success": True}, 0),
    ({"success": True, "cancelled": True}, 0),
    ({"success": False, "error": "boom"}, 1),
    ({"success": False, "cancelled": True}, 1),
])
def test_main_exit_codes(result, code):
    with patch.object(cli, "run", return_value=result), patch.object(cli, "setup_update_logging"):
        with pytest.raises(SystemExit) as exit_info:
            cli.main([])
    assert exit_info.value.code == code


def test_main_interrupted():
    with patch.object(cli, "run", side_effect=KeyboardInterrupt), patch.object(cli, "setup_update_logging"):
        with pytest.raises(SystemExit) as exit_info:
            cli.main(["--recover"])
    assert exit_info.value.code == 130


def test_run_without_env_file_fails(tmp_path, monkeypatch):
    monkeypatch.delenv("MEILISEARCH_URL", raising=False)
    options = _options("--env-file", str(tmp_path / ".env"))

    result = module.run(options, prompter=Mock())

    assert not result["success"]
    assert ".env" in result["error"]


def test_run_without_compose_file_fails(tmp_path, env_file, monkeypatch):
    monkeypatch.delenv("MEILISEARCH_URL", raising=False)
    options = _options("--env-file", str(env_file), "--compose-file", str(tmp_path / "missing.yml"))

    result = module.run(options, prompter=Mock())

    assert not result["success"]
    assert "missing.yml not found" in result["error"]


def test_show_config():
    result = module.run(_options("--config"), module_config=module.DEFAULT_CONFIG)
    assert result["success"]
    assert result["config"]["service"]["name"] == "meilisearch"


def test_console_prompter(monkeypatch, capsys):
    answers = iter(["yes", "2", "9", " v1.14.0 "])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
    prompter = ConsolePrompter()

    assert prompter.confirm("Continue?") is True
    assert prompter.choose("Pick", [("1", "one"), ("2", "two")]) == "2"
    assert prompter.choose("Pick", [("1", "one"), ("2", "two")]) is None
    assert prompter.ask("Version") == "v1.14.0"
    assert "2. two" in capsys.readouterr().out


def test_console_prompter_without_terminal(monkeypatch):
    def no_input(prompt):
        raise EOFError

    monkeypatch.setattr("builtins.input", no_input)
    assert ConsolePrompter().confirm("Continue?") is False
    assert ConsolePrompter().ask("Version") == ""


def test_recover_without_compose_file_fails(tmp_path, env_file, monkeypatch):
    monkeypatch.delenv("MEILISEARCH_URL", raising=False)
    prompter = Mock()
    options = _options("--recover", "--env-file", str(env_file), "--compose-file", str(tmp_path / "missing.yml"))

    with patch.object(module, "run_recovery") as run_recovery:
        result = module.run(options, prompter=prompter)

    assert not result["success"]
    assert "missing.yml not found" in result["error"]
    run_recovery.assert_not_called()
    prompter.confirm.assert_not_called()


def test_module_version_comes_from_index_json():
    from meili_updates.modules import meilisearch
    assert meilisearch.__version__ == module.MODULE_CONFIG["metadata"]["schema_version"]
