#!/usr/bin/env python3
"""
Tests for building model configurations from YAML tables and the environment.
"""

import pytest

from llm_gateway.config import Configuration, EinsteinDevModel, LLMExpressModel
from llm_gateway.llm.client import EinsteinChatClient, LLMExpressClient
from llm_gateway.llm.exceptions import ConfigurationError

EINSTEIN_ENV = {
    "OPENAI_API_KEY": "gpt-key",
    "OPENAI_TENANT_ID": "core/tenant/00D",
    "XGEN_API_KEY": "xgen-key",
    "XGEN_BASE_URL": "https://xgen.test/v1.1",
}


def _configuration(environ, path=None):
    return Configuration(config_path=path, environ=environ, load_env=False)


class TestEinsteinModels:
    """Test the packaged Einstein model table."""

    def test_gpt5(self):
        config = _configuration(EINSTEIN_ENV).einstein_model(EinsteinDevModel.GPT5)

        assert config.model == "llmgateway__OpenAIGPT5"
        assert config.api_key == "gpt-key"
        assert config.tenant_id == "core/tenant/00D"
        assert config.feature_id == "EinsteinForDevelopers"
        assert config.base_url == "https://test.api.salesforce.com/einstein/gpt/code/v1.1"
        assert config.model_provider is None
        assert config.resolved_max_tokens == 2048

    def test_xgen_uses_env_base_url_and_provider(self):
        config = _configuration(EINSTEIN_ENV).einstein_model("XGEN")

        assert config.model == "xgen_stream"
        assert config.base_url == "https://xgen.test/v1.1"
        assert config.model_provider == "InternalTextGeneration"
        assert config.parameters == {"command_source": "Chat"}

    def test_missing_api_key(self):
        with pytest.raises(ConfigurationError, match="XGEN_API_KEY"):
            _configuration({}).einstein_model(EinsteinDevModel.XGEN)

    def test_unknown_model(self):
        with pytest.raises(ConfigurationError):
            _configuration(EINSTEIN_ENV).einstein_model("NOPE")

    def test_client_from_model(self):
        client = EinsteinChatClient.from_model(
            EinsteinDevModel.GPT5, _configuration(EINSTEIN_ENV)
        )
        assert client.config.model == "llmgateway__OpenAIGPT5"


class TestLLMExpressModels:
    """Test the LLM Express model list."""

    ENV = {
        "LLM_EXPRESS_GATEWAY_BASE_URL": "https://express.test",
        "LLM_EXPRESS_GATEWAY_API_KEY": "express-key",
    }

    @pytest.mark.parametrize("model", list(LLMExpressModel))
    def test_every_listed_model_resolves(self, model):
        config = _configuration(self.ENV).llm_express_model(model)
        assert config.model == model.value
        assert config.base_url == "https://express.test"
        assert config.api_key == "express-key"

    def test_missing_base_url(self):
        with pytest.raises(ConfigurationError, match="LLM_EXPRESS_GATEWAY_BASE_URL"):
            _configuration({"LLM_EXPRESS_GATEWAY_API_KEY": "k"}).llm_express_model("gpt-4o")

    def test_unlisted_model(self):
        with pytest.raises(ConfigurationError):
            _configuration(self.ENV).llm_express_model("gpt-2")

    def test_client_from_model(self):
        client = LLMExpressClient.from_model("gpt-5", _configuration(self.ENV))
        assert client.url == "https://express.test/chat/completions"


class TestConfigFile:
    """Test loading an explicit YAML file."""

    def test_custom_file(self, tmp_path):
        path = tmp_path / "models.yaml"
        path.write_text(
            "einstein:\n"
            "  base_url: https://custom.test\n"
            "  timeout: 5\n"
            "  models:\n"
            "    LOCAL:\n"
            "      model: local_model\n"
            "      api_key_env: LOCAL_KEY\n"
        )
        config = _configuration({"LOCAL_KEY": "k"}, str(path)).einstein_model("LOCAL")

        assert config.base_url == "https://custom.test"
        assert config.timeout == 5.0
        assert config.max_tokens is None

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            _configuration({}, str(path))
