"""Tests for config parsing and env helpers."""
from __future__ import annotations

import os

import pytest

from sol_activity_monitor.config import Config, from_env, parse_args
from sol_activity_monitor.env import EnvSettings

_ENV_KEYS = (
    "SOLANA_RPC_URL", "SOLANA_WS_URL", "POLLING_INTERVAL", "RETRY_ATTEMPTS",
    "RETRY_DELAY", "SIGNATURE_LIMIT", "SUBSCRIBE_LOGS", "DATA_DIR", "DEBUG",
    "LOG_LEVEL", "ENV_FILE", "TOKEN_API_URL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self) -> None:
        cfg = Config()
        assert cfg.poll_interval_s == 15.0
        assert cfg.signature_limit == 10
        assert cfg.max_retries == 3
        assert cfg.retry_delay_s == 5.0
        assert cfg.processed_keep == 1000
        assert cfg.addresses_path == os.path.join("data", "monitored-addresses.json")
        cfg.validate()

    def test_env_intervals_in_ms(self, monkeypatch) -> None:
        monkeypatch.setenv("POLLING_INTERVAL", "30000")
        monkeypatch.setenv("RETRY_DELAY", "2500")
        monkeypatch.setenv("RETRY_ATTEMPTS", "7")
        cfg = from_env()
        assert cfg.poll_interval_s == pytest.approx(30.0)
        assert cfg.retry_delay_s == pytest.approx(2.5)
        assert cfg.max_retries == 7

    def test_debug_flag(self, monkeypatch) -> None:
        monkeypatch.setenv("DEBUG", "true")
        assert from_env().log_level == "DEBUG"

    def test_cli_overrides_env(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("POLLING_INTERVAL", "30000")
        monkeypatch.setenv("SOLANA_RPC_URL", "https://env.example")
        cfg, args = parse_args([
            "--env-file", str(tmp_path / "missing.env"),
            "--poll-interval", "5", "--no-logs", "--max-retries", "1",
            "--data-dir", str(tmp_path),
        ])
        assert args.command == "run"
        assert cfg.poll_interval_s == 5.0
        assert cfg.subscribe_logs is False
        assert cfg.max_retries == 1
        assert cfg.rpc_url == "https://env.example"
        assert cfg.processed_path == os.path.join(str(tmp_path), "processed-transactions.json")

    def test_commands(self, tmp_path) -> None:
        _, args = parse_args(["add", "addr", "my", "label",
                              "--env-file", str(tmp_path / "none.env")])
        assert args.command == "add"
        assert args.args == ["addr", "my", "label"]

    @pytest.mark.parametrize("field,value", [
        ("rpc_url", ""), ("ws_url", ""), ("poll_interval_s", 0.0),
        ("signature_limit", 0), ("max_retries", -1),
    ])
    def test_validate_rejects(self, field, value) -> None:
        cfg = Config()
        setattr(cfg, field, value)
        with pytest.raises(ValueError):
            cfg.validate()


class TestEnvSettings:
    def test_parse(self, tmp_path) -> None:
        path = tmp_path / ".env"
        path.write_text(
            "# comment\n"
            "export SOLANA_RPC_URL='https://file.example'\n"
            "SIGNATURE_LIMIT = 25 # per tick\n"
            "LABEL=\"a # b\"\n"
            "not a pair\n",
            encoding="utf-8",
        )
        env = EnvSettings.load(str(path), environ={})
        assert env.file_values == {
            "SOLANA_RPC_URL": "https://file.example",
            "SIGNATURE_LIMIT": "25",
            "LABEL": "a # b",
        }
        assert env.get_int("SIGNATURE_LIMIT", 10) == 25

    def test_real_environment_wins(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / ".env"
        path.write_text("SOLANA_WS_URL=wss://file\nSIGNATURE_LIMIT=25\nDATA_DIR=/srv\n",
                        encoding="utf-8")
        monkeypatch.setenv("SOLANA_WS_URL", "wss://real")
        monkeypatch.setenv("SIGNATURE_LIMIT", "3")
        env = EnvSettings.load(str(path))
        assert env.get_str("SOLANA_WS_URL", None) == "wss://real"
        assert env.get_int("SIGNATURE_LIMIT", 10) == 3
        assert env.get_str("DATA_DIR", "data") == "/srv"
        assert "DATA_DIR" not in os.environ

    def test_file_feeds_config(self, tmp_path) -> None:
        path = tmp_path / ".env"
        path.write_text("POLLING_INTERVAL=2500\nSUBSCRIBE_LOGS=no\n", encoding="utf-8")
        cfg = from_env(EnvSettings.load(str(path), environ={}))
        assert cfg.poll_interval_s == pytest.approx(2.5)
        assert cfg.subscribe_logs is False

    def test_missing_file(self, tmp_path) -> None:
        assert EnvSettings.load(str(tmp_path / "nope")).file_values == {}

    def test_typed_fallbacks(self) -> None:
        env = EnvSettings(environ={"SUBSCRIBE_LOGS": "off", "DEBUG": "maybe",
                                   "SIGNATURE_LIMIT": "ten", "RETRY_DELAY": "  "})
        assert env.get_bool("SUBSCRIBE_LOGS", True) is False
        assert env.get_bool("DEBUG", True) is True
        assert env.get_int("SIGNATURE_LIMIT", 10) == 10
        assert env.seconds_from_ms("RETRY_DELAY", 5.0) == pytest.approx(5.0)
