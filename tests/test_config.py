import json
import stat

import pytest

from userpool import config as config_mod
from userpool.config import PoolSettings, load_config, load_settings, save_config
from userpool.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    path = tmp_path / ".userpool" / "config.json"
    monkeypatch.setattr(config_mod, "_config_path", lambda: path)
    for env_var in ("USERPOOL_ID", "USERPOOL_CLIENT_ID", "USERPOOL_ENDPOINT", "USERPOOL_PARANOIA",
                    "USERPOOL_TIMEOUT", "USERPOOL_STORAGE"):
        monkeypatch.delenv(env_var, raising=False)
    return path


class TestConfigFile:
    def test_missing_file_is_empty(self):
        assert load_config() == {}

    def test_save_and_load(self, _isolated_config):
        save_config({"user_pool_id": "us-east-1_abc", "client_id": "cid"})
        assert load_config() == {"user_pool_id": "us-east-1_abc", "client_id": "cid"}
        assert stat.S_IMODE(_isolated_config.stat().st_mode) == 0o600

    def test_corrupt_file_is_empty(self, _isolated_config):
        _isolated_config.parent.mkdir(parents=True)
        _isolated_config.write_text("{not json")
        assert load_config() == {}


class TestLoadSettings:
    def test_from_file(self):
        save_config({"user_pool_id": "us-east-1_abc", "client_id": "cid", "paranoia": 2})
        settings = load_settings()
        assert settings == PoolSettings(user_pool_id="us-east-1_abc", client_id="cid", paranoia=2)

    def test_env_overrides_file(self, monkeypatch):
        save_config({"user_pool_id": "us-east-1_abc", "client_id": "cid"})
        monkeypatch.setenv("USERPOOL_CLIENT_ID", "env-cid")
        monkeypatch.setenv("USERPOOL_TIMEOUT", "5")
        settings = load_settings()
        assert settings.client_id == "env-cid"
        assert settings.timeout == 5.0

    def test_explicit_override_wins(self, monkeypatch):
        monkeypatch.setenv("USERPOOL_ID", "us-east-1_env")
        monkeypatch.setenv("USERPOOL_CLIENT_ID", "cid")
        settings = load_settings(user_pool_id="eu-west-1_arg", storage="memory")
        assert settings.user_pool_id == "eu-west-1_arg"
        assert settings.storage == "memory"

    def test_missing_ids(self):
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("USERPOOL_ID", "us-east-1_abc")
        monkeypatch.setenv("USERPOOL_CLIENT_ID", "cid")
        monkeypatch.setenv("USERPOOL_PARANOIA", "lots")
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_to_dict_drops_unset(self):
        data = PoolSettings(user_pool_id="us-east-1_abc", client_id="cid").to_dict()
        assert "endpoint" not in data
        assert json.loads(json.dumps(data))["client_id"] == "cid"
