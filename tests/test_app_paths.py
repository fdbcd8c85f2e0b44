import os

import pytest

import app_paths


@pytest.fixture
def fresh_data_dir(monkeypatch):
    app_paths.get_data_dir.cache_clear()
    yield monkeypatch
    app_paths.get_data_dir.cache_clear()


def test_env_override_wins(fresh_data_dir, tmp_path):
    target = tmp_path / "data"
    fresh_data_dir.setenv(app_paths.DATA_DIR_ENV, str(target))
    assert app_paths.get_data_dir() == str(target)
    assert target.is_dir()
    assert app_paths.get_config_path() == os.path.join(str(target), "config.json")
    assert app_paths.get_log_path() == os.path.join(str(target), "logs", "unitorrent.log")
    assert (target / "logs").is_dir()


def test_user_dir_used_without_override(fresh_data_dir, tmp_path):
    fresh_data_dir.delenv(app_paths.DATA_DIR_ENV, raising=False)
    fresh_data_dir.setattr(app_paths, "get_portable_base_dir", lambda: tmp_path / "app")
    fresh_data_dir.setattr(app_paths, "get_user_data_base_dir", lambda: tmp_path / "user")
    assert app_paths.get_data_dir() == str(tmp_path / "user" / "UniTorrent")


def test_existing_portable_dir_is_preferred(fresh_data_dir, tmp_path):
    fresh_data_dir.delenv(app_paths.DATA_DIR_ENV, raising=False)
    portable = tmp_path / "app" / app_paths.PORTABLE_DATA_DIR_NAME
    portable.mkdir(parents=True)
    fresh_data_dir.setattr(app_paths, "get_portable_base_dir", lambda: tmp_path / "app")
    fresh_data_dir.setattr(app_paths, "get_user_data_base_dir", lambda: tmp_path / "user")
    assert app_paths.get_data_dir() == str(portable)
    assert not (tmp_path / "user").exists()
