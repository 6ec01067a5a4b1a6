import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from advisor_core.config.settings import Settings


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("ADVISOR_CONFIG_FILE", raising=False)
    monkeypatch.delenv("GATEWAY_API_KEY", raising=False)
    cfg = Settings(_env_file=None)
    assert cfg.default_provider == "gateway"
    assert cfg.inter_turn_pause == 0.5
    assert cfg.retry_strategy == "linear"
    assert cfg.cache_ttl_hours == 24


def test_settings_read_yaml_and_env(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "config.yaml"
        path.write_text("retry_max_attempts: 5\nevaluation_timeout: 30\nlog_dir: custom-logs\n", encoding="utf-8")
        monkeypatch.setenv("ADVISOR_CONFIG_FILE", str(path))
        monkeypatch.setenv("EVALUATION_TIMEOUT", "12")
        cfg = Settings(_env_file=None)
    assert cfg.retry_max_attempts == 5
    assert cfg.log_dir == "custom-logs"
    # 环境变量优先于 config.yaml
    assert cfg.evaluation_timeout == 12


def test_settings_reject_short_api_key(monkeypatch):
    monkeypatch.delenv("ADVISOR_CONFIG_FILE", raising=False)
    with pytest.raises(PydanticValidationError):
        Settings(_env_file=None, gateway_api_key="short")
