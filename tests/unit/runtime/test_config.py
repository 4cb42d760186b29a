"""Unit tests for the tool configuration loader."""

import os
from pathlib import Path

import pytest

from dbhelper.runtime.config import (
    CONFIG_ENV_VAR,
    ToolConfig,
    config_path,
    load_config,
    substitute_env_vars,
)


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path, monkeypatch):
    """Run from an empty directory so no stray dbhelper.yaml or .env is read."""
    monkeypatch.chdir(tmp_path)


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


class TestSubstituteEnvVars:
    def test_required_variable(self, monkeypatch):
        monkeypatch.setenv("PG_BIN_DIR", "/opt/pg/bin")

        assert substitute_env_vars("tool_dir: ${PG_BIN_DIR}") == "tool_dir: /opt/pg/bin"

    def test_default_value(self, monkeypatch):
        monkeypatch.delenv("DBHELPER_JOBS", raising=False)

        assert substitute_env_vars("jobs: ${DBHELPER_JOBS:-4}") == "jobs: 4"

    def test_missing_required_variable_raises(self, monkeypatch):
        monkeypatch.delenv("PG_BIN_DIR", raising=False)

        with pytest.raises(ValueError, match="PG_BIN_DIR"):
            substitute_env_vars("${PG_BIN_DIR}")

    def test_custom_error_message(self, monkeypatch):
        monkeypatch.delenv("PG_BIN_DIR", raising=False)

        with pytest.raises(ValueError, match="set the client tool directory"):
            substitute_env_vars("${PG_BIN_DIR:?set the client tool directory}")


class TestLoadConfig:
    def test_defaults_without_file(self):
        config = load_config()

        assert config == ToolConfig()
        assert config.jobs == 1
        assert config.max_attempts == 3

    def test_reads_default_file(self, tmp_path):
        _write(tmp_path / "dbhelper.yaml", "config:\n  jobs: 4\n  retry_base_delay: 0.5\n")

        config = load_config()

        assert config.jobs == 4
        assert config.retry_base_delay == 0.5

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "custom.yaml", "config:\n  max_attempts: 5\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert config_path() == path
        assert load_config().max_attempts == 5

    def test_explicit_missing_file_raises(self, tmp_path):
        with pytest.raises(ValueError, match="Config file not found"):
            load_config(tmp_path / "nope.yaml")

    def test_placeholders_from_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PG_BIN_DIR", raising=False)
        _write(tmp_path / ".env", "PG_BIN_DIR=/usr/lib/postgresql/16/bin\n")
        path = _write(tmp_path / "dbhelper.yaml", "config:\n  tool_dir: ${PG_BIN_DIR}\n")

        try:
            config = load_config(path)
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop("PG_BIN_DIR", None)

        assert config.tool_dir == Path("/usr/lib/postgresql/16/bin")

    def test_process_environment_wins_over_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DBHELPER_JOBS", "8")
        _write(tmp_path / ".env", "DBHELPER_JOBS=2\n")
        path = _write(tmp_path / "dbhelper.yaml", "config:\n  jobs: ${DBHELPER_JOBS}\n")

        assert load_config(path).jobs == 8

    def test_log_dir_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))

        assert load_config().log_dir == tmp_path / "logs"

    def test_missing_config_key(self, tmp_path):
        path = _write(tmp_path / "dbhelper.yaml", "jobs: 4\n")

        with pytest.raises(ValueError, match="missing 'config' key"):
            load_config(path)

    def test_malformed_yaml(self, tmp_path):
        path = _write(tmp_path / "dbhelper.yaml", "config: [unclosed\n")

        with pytest.raises(ValueError, match="Error parsing YAML"):
            load_config(path)

    @pytest.mark.parametrize(
        "body",
        ["jobs: 0", "max_attempts: 0", "progress_interval: 0", "unknown_key: 1"],
    )
    def test_invalid_values(self, tmp_path, body):
        path = _write(tmp_path / "dbhelper.yaml", f"config:\n  {body}\n")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(path)

    def test_empty_config_section(self, tmp_path):
        path = _write(tmp_path / "dbhelper.yaml", "config:\n")

        assert load_config(path) == ToolConfig()
