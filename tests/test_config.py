"""
Tests for Config loading: defaults, YAML file, environment overrides.
"""
import textwrap

import pytest
import yaml

from devflow.config import Config, ConfigError


def _write_config(tmp_path, config: dict):
    path = tmp_path / "devflow.yaml"
    path.write_text(yaml.dump(config))
    return path


class TestConfig:

    def test_defaults_when_file_missing(self, tmp_path):
        cfg = Config.load(str(tmp_path / "missing.yaml"), environ={})
        assert cfg.openai_model == "gpt-4o-mini"
        assert cfg.drag_activation_distance == 8.0
        assert cfg.default_user == "local"
        assert cfg.db_path.endswith("devflow.db")
        assert "~" not in cfg.db_path

    def test_yaml_values(self, tmp_path):
        path = _write_config(tmp_path, {
            "db_path": str(tmp_path / "x.db"),
            "openai_model": "gpt-4o",
            "insight_ttl_days": 3,
        })
        cfg = Config.load(str(path), environ={})
        assert cfg.db_path == str(tmp_path / "x.db")
        assert cfg.openai_model == "gpt-4o"
        assert cfg.insight_ttl_days == 3

    def test_env_overrides_yaml(self, tmp_path):
        path = _write_config(tmp_path, {"api_secret": "from-file"})
        cfg = Config.load(str(path), environ={"DEVFLOW_API_SECRET": "from-env", "OPENAI_API_KEY": "sk-test"})
        assert cfg.api_secret == "from-env"
        assert cfg.openai_api_key == "sk-test"

    def test_config_path_from_env(self, tmp_path):
        path = _write_config(tmp_path, {"default_user": "alice"})
        cfg = Config.load(environ={"DEVFLOW_CONFIG": str(path)})
        assert cfg.default_user == "alice"

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        path = _write_config(tmp_path, {"theme": "x", "default_user": "bob"})
        cfg = Config.load(str(path), environ={})
        assert cfg.default_user == "bob"
        assert "theme" in caplog.text

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "devflow.yaml"
        path.write_text(textwrap.dedent("""\
            db_path: [unclosed
            """))
        with pytest.raises(ConfigError, match="Cannot parse"):
            Config.load(str(path), environ={})

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "devflow.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            Config.load(str(path), environ={})

    def test_validation(self, tmp_path):
        path = _write_config(tmp_path, {"drag_activation_distance": -1})
        with pytest.raises(ConfigError):
            Config.load(str(path), environ={})

    def test_numeric_strings_coerced(self, tmp_path):
        path = _write_config(tmp_path, {"insight_ttl_days": "3", "llm_timeout_secs": "30"})
        cfg = Config.load(str(path), environ={})
        assert cfg.insight_ttl_days == 3
        assert cfg.llm_timeout_secs == 30.0

    def test_wrong_type_raises_config_error(self, tmp_path):
        path = _write_config(tmp_path, {"drag_activation_distance": "far"})
        with pytest.raises(ConfigError, match="drag_activation_distance must be a number"):
            Config.load(str(path), environ={})

        path = _write_config(tmp_path, {"insight_ttl_days": None})
        with pytest.raises(ConfigError, match="insight_ttl_days"):
            Config.load(str(path), environ={})

        path = _write_config(tmp_path, {"openai_model": {"name": "x"}})
        with pytest.raises(ConfigError, match="openai_model must be a string"):
            Config.load(str(path), environ={})
