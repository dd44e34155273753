import pytest

from cage.MANAGERS.environment_manager import EnvironmentManager
from cage.MODELS.errors import SettingsError


def test_merged_environment_precedence(tmp_path):
    (tmp_path / "base.env").write_text("A=file\nB=file\nC=base\n")
    (tmp_path / "local.env").write_text("C=local\n")
    manager = EnvironmentManager(base_dir=str(tmp_path), environ={'B': 'process'})

    env = manager.get_merged_environment(["base.env", "local.env", "missing.env"], {'D': 'explicit'})
    assert env == {'A': 'file', 'B': 'process', 'C': 'local', 'D': 'explicit'}


def test_defaults_without_any_variables(tmp_path):
    settings = EnvironmentManager(base_dir=str(tmp_path), environ={}).get_settings([".env"])
    assert settings.default_shell == 'sh'
    assert settings.shell_label == 'io.fdy.cage.shell'
    assert settings.test_label == 'io.fdy.cage.test'
    assert settings.max_workers == 4
    assert settings.call_timeout is None
    assert settings.retries == 0


def test_settings_from_env_file_and_environ(tmp_path):
    (tmp_path / ".env").write_text(
        "CAGE_MAX_WORKERS=8\n"
        "CAGE_DEFAULT_SHELL=bash\n"
        "CAGE_CALL_TIMEOUT=\n"
        "UNRELATED=1\n"
    )
    manager = EnvironmentManager(base_dir=str(tmp_path), environ={'CAGE_MAX_WORKERS': '2'})
    settings = manager.get_settings([".env"])
    assert settings.max_workers == 2
    assert settings.default_shell == 'bash'
    assert settings.call_timeout is None


def test_overrides_win_unless_none(tmp_path):
    manager = EnvironmentManager(base_dir=str(tmp_path), environ={'CAGE_RETRIES': '2', 'CAGE_PROJECT_NAME': 'pod'})
    settings = manager.get_settings(overrides={'retries': 5, 'project_name': None, 'call_timeout': 1.5})
    assert settings.retries == 5
    assert settings.project_name == 'pod'
    assert settings.call_timeout == 1.5


@pytest.mark.parametrize("environ", [
    {'CAGE_MAX_WORKERS': '0'},
    {'CAGE_MAX_WORKERS': 'many'},
    {'CAGE_CALL_TIMEOUT': '-1'},
])
def test_invalid_settings(environ):
    with pytest.raises(SettingsError) as exc:
        EnvironmentManager(environ=environ).get_settings()
    assert 'CAGE_' in str(exc.value)
