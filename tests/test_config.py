import pytest

from cask.cask_config import KernelConfig, ConfigError, load_config, config_from_mapping
from cask.cask_datatypes import Mode


def test_defaults():
    config = load_config(environ={})
    assert config == KernelConfig()
    assert config.stop_on_error
    assert config.initial_mode is Mode.EMBEDDED


def test_yaml_file(tmp_path):
    path = tmp_path / "cask.yaml"
    path.write_text("debug: true\nstop_on_error: no\ninitial_mode: host\nprompt: '>>> '\n")
    config = load_config(str(path), environ={})
    assert config.debug
    assert not config.stop_on_error
    assert config.initial_mode is Mode.HOST
    assert config.prompt == ">>> "


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "cask.yaml"
    path.write_text("stop_on_error: true\n")
    env = {"CASK_CONFIG": str(path), "CASK_STOP_ON_ERROR": "0", "CASK_INITIAL_MODE": "HOST"}
    config = load_config(environ=env)
    assert not config.stop_on_error
    assert config.initial_mode is Mode.HOST


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(str(path), environ={}) == KernelConfig()


@pytest.mark.parametrize("data", [
    {"colour": "red"},
    {"debug": "maybe"},
    {"initial_mode": "lisp"},
    {"prompt": 3},
])
def test_bad_values(data):
    with pytest.raises(ConfigError):
        config_from_mapping(data)


def test_bad_files(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yaml"), environ={})
    bad = tmp_path / "bad.yaml"
    bad.write_text("a: [1, 2\n")
    with pytest.raises(ConfigError):
        load_config(str(bad), environ={})
    listed = tmp_path / "list.yaml"
    listed.write_text("- 1\n- 2\n")
    with pytest.raises(ConfigError):
        load_config(str(listed), environ={})
