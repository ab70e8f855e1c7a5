"""测试配置加载与校验"""

import json

import pytest
from pydantic import ValidationError

from claude_bridge.config.registry import find_model_capabilities
from claude_bridge.config.settings import (
    CONFIG_ENV_VAR,
    BridgeConfig,
    Provider,
    load_config,
    load_config_file,
    parse_config,
)
from claude_bridge.models.errors import ConfigurationError


class TestParseConfig:
    """测试序列化配置的解析"""

    def test_camel_case_fields(self):
        """测试启动器写入的camelCase字段"""
        config = parse_config(
            {
                "provider": "openai",
                "model": "gpt-4o",
                "apiKey": "sk-test",
                "baseURL": "https://proxy.example.com/v1/",
                "maxRetries": 5,
                "maxOutputTokens": 500,
                "logDirectory": "/tmp/bridge-logs",
                "debug": True,
            }
        )
        assert config.provider == Provider.OPENAI
        assert config.api_key == "sk-test"
        assert config.resolved_base_url == "https://proxy.example.com/v1"
        assert config.max_retries == 5
        assert config.max_output_tokens == 500
        assert str(config.log_path) == "/tmp/bridge-logs"
        assert config.logging_enabled is True

    def test_default_base_urls(self):
        openai = parse_config({"provider": "openai", "model": "gpt-4o", "apiKey": "k"})
        google = parse_config({"provider": "google", "model": "gemini-2.5-flash", "apiKey": "k"})
        assert openai.resolved_base_url == "https://api.openai.com/v1"
        assert google.resolved_base_url == "https://generativelanguage.googleapis.com/v1beta"

    def test_api_key_from_environment(self, monkeypatch):
        """测试未配置apiKey时读取供应商环境变量"""
        monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
        config = parse_config({"provider": "google", "model": "gemini-2.5-flash"})
        assert config.api_key == "env-key"

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            parse_config({"provider": "openai", "model": "gpt-4o"})

    def test_anthropic_provider_rejected(self):
        with pytest.raises(ConfigurationError, match="not supported"):
            parse_config({"provider": "anthropic", "model": "claude", "apiKey": "k"})

    def test_unknown_provider_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_config({"provider": "mistral", "model": "large", "apiKey": "k"})

    def test_missing_model(self):
        with pytest.raises(ConfigurationError, match="model is required"):
            parse_config({"provider": "openai", "apiKey": "k"})

    def test_trace_mode_ignores_provider_and_model(self, monkeypatch):
        """测试trace模式不需要provider、model和密钥"""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = parse_config({"trace": True, "provider": "anthropic", "model": "x"})
        assert config.trace is True
        assert config.provider is None
        assert config.model is None
        assert config.logging_enabled is True

    def test_invalid_json(self):
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            parse_config("{provider: openai")

    def test_non_object_json(self):
        with pytest.raises(ConfigurationError, match="JSON object"):
            parse_config("[1, 2, 3]")

    def test_negative_max_retries_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_config({"provider": "openai", "model": "gpt-4o", "apiKey": "k", "maxRetries": -1})

    def test_config_is_immutable(self):
        config = parse_config({"provider": "openai", "model": "gpt-4o", "apiKey": "k"})
        with pytest.raises(ValidationError):
            config.model = "gpt-4.1"


class TestLoadConfig:
    """测试从环境变量与文件加载"""

    def test_load_from_environ(self):
        raw = json.dumps({"provider": "openai", "model": "gpt-4o", "apiKey": "k"})
        config = load_config({CONFIG_ENV_VAR: raw})
        assert isinstance(config, BridgeConfig)
        assert config.model == "gpt-4o"

    def test_missing_environment_variable(self):
        with pytest.raises(ConfigurationError, match=CONFIG_ENV_VAR):
            load_config({})

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "bridge.json"
        path.write_text(json.dumps({"provider": "google", "model": "gemini-2.5-pro", "apiKey": "k"}))
        config = load_config_file(path)
        assert config.provider == Provider.GOOGLE

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="cannot read"):
            load_config_file(tmp_path / "missing.json")


class TestModelRegistry:
    """测试模型能力注册表"""

    def test_known_model(self):
        capabilities = find_model_capabilities("gpt-4o")
        assert capabilities is not None
        assert capabilities.supports_tools is True
        assert capabilities.max_output_tokens == 16384

    def test_unknown_model(self):
        assert find_model_capabilities("my-finetune") is None
        assert find_model_capabilities(None) is None
