"""Tests for model provider clients."""

from unittest.mock import Mock, patch

import pytest
import requests

from flash_assistant.client import GeminiClient, GenerationResult, ModelGateway, OllamaClient
from flash_assistant.exceptions import (
    ConfigurationError,
    ProviderAPIError,
    ProviderConnectionError,
)


def gemini_reply(text="Hello", tokens=12):
    response = Mock()
    response.status_code = 200
    response.json.return_value = {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {"totalTokenCount": tokens},
    }
    return response


def test_client_initialization(config):
    """Test client initialization with config."""
    gemini = GeminiClient(config)
    ollama = OllamaClient(config)
    assert gemini.endpoint == config.google_endpoint
    assert ollama.endpoint == config.local_endpoint
    assert ollama.timeout == config.local_timeout


@patch("flash_assistant.client.requests.post")
def test_gemini_generate(mock_post, monkeypatch, config):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    mock_post.return_value = gemini_reply("Hi there", tokens=42)

    result = GeminiClient(config).generate("hello", "gemini-2.5-flash", 0.3, max_output_tokens=10)

    assert result.ok
    assert result.text == "Hi there"
    assert result.total_tokens == 42
    url = mock_post.call_args[0][0]
    kwargs = mock_post.call_args[1]
    assert url.endswith("/models/gemini-2.5-flash:generateContent")
    assert kwargs["params"] == {"key": "secret"}
    assert kwargs["json"]["contents"][0]["parts"][0]["text"] == "hello"
    assert kwargs["json"]["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 10}


def test_gemini_requires_api_key(config):
    with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
        GeminiClient(config).generate("hello", "gemini-2.5-flash", 0.3)


@patch("flash_assistant.client.requests.post")
def test_gemini_blocked_prompt(mock_post, monkeypatch, config):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    response = Mock()
    response.json.return_value = {"promptFeedback": {"blockReason": "SAFETY"}}
    mock_post.return_value = response

    with pytest.raises(ProviderAPIError, match="SAFETY"):
        GeminiClient(config).generate("hello", "gemini-2.5-flash", 0.3)


@patch("flash_assistant.client.requests.post")
def test_ollama_generate(mock_post, config):
    """Test non-streaming response generation."""
    mock_response = Mock()
    mock_response.json.return_value = {
        "response": "Complete response",
        "prompt_eval_count": 10,
        "eval_count": 5,
    }
    mock_response.status_code = 200
    mock_post.return_value = mock_response

    result = OllamaClient(config).generate("test prompt", "gemma3n:e4b", 0.7, max_output_tokens=50)

    assert result.text == "Complete response"
    assert result.total_tokens == 15
    payload = mock_post.call_args[1]["json"]
    assert mock_post.call_args[0][0] == "http://localhost:11434/api/generate"
    assert payload["stream"] is False
    assert payload["model"] == "gemma3n:e4b"
    assert payload["options"] == {"temperature": 0.7, "num_predict": 50}


@patch("flash_assistant.client.requests.post")
def test_connection_error(mock_post, config):
    """Test handling of connection errors."""
    mock_post.side_effect = requests.exceptions.ConnectionError("Connection failed")
    with pytest.raises(ProviderConnectionError):
        OllamaClient(config).generate("test prompt", "gemma3n:e4b", 0.7)


@patch("flash_assistant.client.requests.post")
def test_timeout_error(mock_post, config):
    mock_post.side_effect = requests.exceptions.Timeout("slow")
    with pytest.raises(ProviderConnectionError, match="timed out"):
        OllamaClient(config).generate("test prompt", "gemma3n:e4b", 0.7)


@patch("flash_assistant.client.requests.post")
def test_api_error(mock_post, config):
    """Test handling of API errors."""
    mock_response = Mock()
    mock_response.status_code = 500
    mock_response.raise_for_status.side_effect = requests.exceptions.HTTPError(
        "Server error", response=mock_response
    )
    mock_post.return_value = mock_response

    with pytest.raises(ProviderAPIError, match="500"):
        OllamaClient(config).generate("test prompt", "gemma3n:e4b", 0.7)


@patch("flash_assistant.client.requests.get")
def test_list_models(mock_get, config):
    mock_get.return_value = Mock(status_code=200)
    mock_get.return_value.json.return_value = {"models": [{"name": "gemma3n:e4b"}, {"name": "llama3.2:latest"}]}
    assert OllamaClient(config).list_models() == ["gemma3n:e4b", "llama3.2:latest"]


@patch("flash_assistant.client.requests.get")
def test_test_connection(mock_get, config):
    """Test connection testing."""
    mock_get.return_value = Mock(status_code=200)
    assert OllamaClient(config).test_connection() is True

    mock_get.side_effect = requests.exceptions.ConnectionError()
    assert OllamaClient(config).test_connection() is False
    assert OllamaClient(config).list_models() == []


@patch("flash_assistant.client.requests.post")
def test_gateway_routes_by_provider(mock_post, monkeypatch, config):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    mock_post.return_value = gemini_reply("from gemini")
    gateway = ModelGateway(config)

    result = gateway.generate("hi", "google", "gemini-2.5-flash", 0.1, {"max_output_tokens": 5})
    assert result == GenerationResult(ok=True, text="from gemini", usage={"total_tokens": 12})


def test_gateway_reports_errors_as_data(config):
    gateway = ModelGateway(config)

    missing_key = gateway.generate("hi", "google", "gemini-2.5-flash", 0.1)
    assert not missing_key.ok
    assert "API key" in missing_key.error

    unknown = gateway.generate("hi", "openai", "gpt", 0.1)
    assert not unknown.ok
    assert "Unknown provider" in unknown.error


@patch("flash_assistant.client.requests.post")
def test_gateway_connection_failure(mock_post, config):
    mock_post.side_effect = requests.exceptions.ConnectionError("refused")
    result = ModelGateway(config).generate("hi", "local", "gemma3n:e4b", 0.1)
    assert not result.ok
    assert "Ollama" in result.error
