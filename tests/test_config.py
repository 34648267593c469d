import io
import logging

import pytest

from webui_agent.config import DEFAULT_MODEL, AgentSettings, ModelConfig
from webui_agent.logging_config import RESULT, setup_logging


def test_default_settings():
    settings = AgentSettings()

    assert settings.use_vision is True
    assert settings.max_failures == 3
    assert settings.retry_delay == 10
    assert settings.max_input_tokens == 128000
    assert settings.token_shrink_step == 500
    assert settings.max_actions_per_step == 10
    assert settings.validate_output is False
    assert "placeholder" in settings.include_attributes


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("WEBUI_AGENT_MAX_FAILURES", "5")
    monkeypatch.setenv("WEBUI_AGENT_USE_VISION", "false")
    monkeypatch.setenv("WEBUI_AGENT_RETRY_DELAY", "2.5")
    monkeypatch.setenv("WEBUI_AGENT_ALLOWED_DOMAINS", "example.com, *.test.io")
    monkeypatch.setenv("WEBUI_AGENT_EXTEND_SYSTEM_MESSAGE", "回答使用中文")

    settings = AgentSettings.from_env(dotenv=False)

    assert settings.max_failures == 5
    assert settings.use_vision is False
    assert settings.retry_delay == 2.5
    assert settings.allowed_domains == ["example.com", "*.test.io"]
    assert settings.extend_system_message == "回答使用中文"


def test_overrides_win_over_env(monkeypatch):
    monkeypatch.setenv("WEBUI_AGENT_MAX_FAILURES", "5")

    settings = AgentSettings.from_env(dotenv=False, max_failures=1)

    assert settings.max_failures == 1


def test_unknown_override():
    with pytest.raises(TypeError):
        AgentSettings.from_env(dotenv=False, no_such_setting=1)


def test_model_config_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://api.example.com/v1")
    monkeypatch.delenv("OPENAI_MODEL", raising=False)
    monkeypatch.setenv("OPENAI_PLANNER_MODEL", "planner-model")

    config = ModelConfig.from_env(dotenv=False)

    assert config.api_key == "sk-test"
    assert config.base_url == "https://api.example.com/v1"
    assert config.model == DEFAULT_MODEL
    assert config.planner_model == "planner-model"


@pytest.fixture
def package_logger():
    logger = logging.getLogger("webui_agent")
    yield logger
    logger.handlers = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def test_setup_logging_levels(package_logger):
    stream = io.StringIO()

    setup_logging("debug", stream=stream, force_setup=True)
    logging.getLogger("webui_agent.core").debug("调试信息")

    assert package_logger.level == logging.DEBUG
    assert "调试信息" in stream.getvalue()

    setup_logging("result", stream=stream, force_setup=True)
    assert package_logger.level == RESULT
