"""Tests for LLM client (F1)."""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, APIStatusError

from mateai.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMResponse,
    LLMResponseError,
    LLMStatusError,
    Message,
)

REQUEST = httpx.Request("POST", "https://api.perplexity.ai/chat/completions")


def make_completion(content: str = "Hola", total_tokens: int = 30) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "sonar"
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = total_tokens - 10
    response.usage.total_tokens = total_tokens
    return response


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = LLMConfig()
        assert config.provider == "perplexity"
        assert config.base_url == "https://api.perplexity.ai"
        assert config.model == "sonar"
        assert config.temperature == 0.7
        assert config.max_tokens == 2000

    def test_from_yaml(self, tmp_path):
        """Test loading the llm section from YAML."""
        config_file = tmp_path / "mateai.yaml"
        config_file.write_text(
            "llm:\n"
            "  provider: lmstudio\n"
            "  model: qwen2.5-7b\n"
            "  temperature: 0.2\n"
            "  max_tokens: 800\n",
            encoding="utf-8",
        )

        config = LLMConfig.from_yaml(config_file)

        assert config.provider == "lmstudio"
        assert config.model == "qwen2.5-7b"
        assert config.temperature == 0.2
        assert config.max_tokens == 800
        assert config.api_key == "lm-studio"

    def test_from_yaml_missing_file(self, tmp_path):
        config = LLMConfig.from_yaml(tmp_path / "missing.yaml")
        assert config.provider == "perplexity"

    def test_for_provider_reads_api_key(self):
        with patch.dict("os.environ", {"PERPLEXITY_API_KEY": "pplx-test"}):
            config = LLMConfig.for_provider("perplexity")
        assert config.api_key == "pplx-test"
        assert config.base_url == "https://api.perplexity.ai"

    def test_for_provider_openai(self):
        with patch.dict("os.environ", {"OPENAI_API_KEY": "sk-test"}):
            config = LLMConfig.for_provider("openai")
        assert config.base_url == "https://api.openai.com/v1"
        assert config.model == "gpt-4o-mini"
        assert config.api_key == "sk-test"


class TestMessage:
    def test_to_dict(self):
        assert Message(role="user", content="Hola").to_dict() == {
            "role": "user",
            "content": "Hola",
        }


class TestLLMResponse:
    def test_total_tokens_default(self):
        response = LLMResponse(content="x", model="m", provider="perplexity")
        assert response.total_tokens == 0


class TestLLMClientMocked:
    """Tests for LLMClient using mocks (no real API calls)."""

    @pytest.fixture
    def mock_openai_client(self):
        """Create a mock OpenAI client."""
        with patch("mateai.llm.client.OpenAI") as mock:
            mock_instance = MagicMock()
            mock.return_value = mock_instance
            yield mock_instance

    def test_client_initialization(self, mock_openai_client):
        """Test client initializes with config."""
        client = LLMClient(config=LLMConfig(model="sonar-pro"))
        assert client.config.provider == "perplexity"
        assert client.config.model == "sonar-pro"

    def test_client_provider_override(self, mock_openai_client):
        """Provider override keeps sampling settings."""
        config = LLMConfig(temperature=0.1, max_tokens=123)
        client = LLMClient(config=config, provider="lmstudio")

        assert client.config.provider == "lmstudio"
        assert client.config.temperature == 0.1
        assert client.config.max_tokens == 123

    def test_client_model_override(self, mock_openai_client):
        client = LLMClient(config=LLMConfig(), model="custom-model")
        assert client.config.model == "custom-model"

    def test_chat_success(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = make_completion("Respuesta")

        client = LLMClient(config=LLMConfig())
        response = client.chat([Message(role="user", content="Hola")])

        assert response.content == "Respuesta"
        assert response.total_tokens == 30
        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "sonar"
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 2000

    def test_chat_sampling_override(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = make_completion()

        client = LLMClient(config=LLMConfig())
        client.chat([Message(role="user", content="Hola")], temperature=0.3, max_tokens=500)

        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 500

    def test_chat_empty_response(self, mock_openai_client):
        response = MagicMock()
        response.choices = []
        mock_openai_client.chat.completions.create.return_value = response

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMResponseError, match="Respuesta vacía"):
            client.chat([Message(role="user", content="Hola")])

    def test_chat_connection_error(self, mock_openai_client):
        mock_openai_client.chat.completions.create.side_effect = APIConnectionError(
            request=REQUEST
        )

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMConnectionError, match="No se pudo conectar"):
            client.chat([Message(role="user", content="Hola")])

    def test_chat_status_error(self, mock_openai_client):
        """Non-2xx answers keep their status code."""
        mock_openai_client.chat.completions.create.side_effect = APIStatusError(
            "Internal Server Error",
            response=httpx.Response(500, request=REQUEST),
            body=None,
        )

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMStatusError) as exc_info:
            client.chat([Message(role="user", content="Hola")])

        assert exc_info.value.status_code == 500
        assert str(exc_info.value) == "API Error: 500"

    def test_simple_chat(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = make_completion("¡Hola!")

        client = LLMClient(config=LLMConfig())
        result = client.simple_chat(system_prompt="Sé amable", user_message="Hola")

        assert result == "¡Hola!"
        messages = mock_openai_client.chat.completions.create.call_args.kwargs["messages"]
        assert messages == [
            {"role": "system", "content": "Sé amable"},
            {"role": "user", "content": "Hola"},
        ]

    def test_is_available(self, mock_openai_client):
        client = LLMClient(config=LLMConfig())
        assert client.is_available() is True

    def test_is_not_available(self, mock_openai_client):
        mock_openai_client.models.list.side_effect = APIConnectionError(request=REQUEST)
        client = LLMClient(config=LLMConfig())
        assert client.is_available() is False
