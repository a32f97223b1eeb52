"""Model provider clients for flash-assistant.

Two providers are supported: Google Gemini over its REST API ("google")
and a local Ollama server ("local"). ``ModelGateway`` puts both behind a
single ``generate`` call that reports failures as data.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from flash_assistant.config import Config
from flash_assistant.exceptions import (
    ConfigurationError,
    FlashError,
    ProviderAPIError,
    ProviderConnectionError,
)
from flash_assistant.logger import get_logger


@dataclass
class GenerationResult:
    """Outcome of one generation call."""

    ok: bool
    text: str = ""
    error: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)


def _post(logger, url: str, payload: Dict[str, Any], timeout: float, label: str,
          params: Optional[Dict[str, str]] = None) -> requests.Response:
    """POST a JSON payload and map ``requests`` failures to provider errors."""
    try:
        response = requests.post(url, json=payload, params=params, timeout=timeout)
        response.raise_for_status()
        return response
    except requests.exceptions.ConnectionError as e:
        logger.error(f"Connection error to {label}: {e}")
        raise ProviderConnectionError(f"Failed to connect to {label}: {e}") from e
    except requests.exceptions.Timeout as e:
        logger.error(f"Request timeout after {timeout} seconds: {e}")
        raise ProviderConnectionError(
            f"Request to {label} timed out after {timeout} seconds: {e}"
        ) from e
    except requests.exceptions.HTTPError as e:
        status_code = getattr(e.response, 'status_code', 'unknown')
        logger.error(f"HTTP error {status_code}: {e}")
        raise ProviderAPIError(f"{label} returned error {status_code}: {e}") from e
    except requests.exceptions.RequestException as e:
        logger.error(f"Request failed: {e}")
        raise ProviderConnectionError(f"Request to {label} failed: {e}") from e


class GeminiClient:
    """Client for the Google Gemini ``generateContent`` endpoint."""

    def __init__(self, config: Config):
        self.endpoint = config.google_endpoint.rstrip("/")
        self.timeout = config.google_timeout
        self.api_key = config.google_api_key
        self.logger = get_logger(f"{__name__}.GeminiClient")

    def generate(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_output_tokens: Optional[int] = None,
    ) -> GenerationResult:
        """
        Generate a complete response from Gemini.

        Args:
            prompt: The prompt to send to the model.
            model: Gemini model name, e.g. "gemini-2.5-flash".
            temperature: Sampling temperature.
            max_output_tokens: Optional output ceiling.

        Returns:
            Successful GenerationResult.

        Raises:
            ConfigurationError: If no API key is configured.
            ProviderConnectionError: If connection fails.
            ProviderAPIError: If the API returns an error or no text.
        """
        if not self.api_key:
            raise ConfigurationError(
                "No Gemini API key found. Set GEMINI_API_KEY or GOOGLE_API_KEY."
            )

        generation_config: Dict[str, Any] = {"temperature": temperature}
        if max_output_tokens is not None:
            generation_config["maxOutputTokens"] = max_output_tokens

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        url = f"{self.endpoint}/models/{model}:generateContent"
        self.logger.debug(f"Making request to Gemini model {model}")
        response = _post(
            self.logger, url, payload, self.timeout, "Gemini",
            params={"key": self.api_key},
        )

        try:
            data = response.json()
        except ValueError as e:
            self.logger.error(f"Failed to parse Gemini response: {e}")
            raise ProviderAPIError(f"Failed to parse Gemini response: {e}") from e

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback", {}).get("blockReason")
            raise ProviderAPIError(
                f"Gemini returned no candidates{f' (blocked: {feedback})' if feedback else ''}"
            )
        parts: List[Dict[str, Any]] = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts)

        usage_meta = data.get("usageMetadata", {})
        usage = {"total_tokens": int(usage_meta.get("totalTokenCount", 0))}
        return GenerationResult(ok=True, text=text, usage=usage)


class OllamaClient:
    """Client for a local Ollama server."""

    def __init__(self, config: Config):
        self.endpoint = config.local_endpoint.rstrip("/")
        self.timeout = config.local_timeout
        self.logger = get_logger(f"{__name__}.OllamaClient")

    def generate(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_output_tokens: Optional[int] = None,
    ) -> GenerationResult:
        """
        Generate a complete (non-streaming) response from Ollama.

        Args:
            prompt: The prompt to send to the model.
            model: Local model tag, e.g. "gemma3n:e4b".
            temperature: Sampling temperature.
            max_output_tokens: Optional output ceiling (``num_predict``).

        Returns:
            Successful GenerationResult.

        Raises:
            ProviderConnectionError: If connection fails.
            ProviderAPIError: If API returns an error.
        """
        options: Dict[str, Any] = {"temperature": temperature}
        if max_output_tokens is not None:
            options["num_predict"] = max_output_tokens

        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": options,
        }
        self.logger.debug(f"Making request to {self.endpoint} with model {model}")
        response = _post(
            self.logger, f"{self.endpoint}/api/generate", payload, self.timeout, "Ollama"
        )
        try:
            data = response.json()
        except ValueError as e:
            self.logger.error(f"Failed to parse Ollama response: {e}")
            raise ProviderAPIError(f"Failed to parse Ollama response: {e}") from e

        usage = {
            "total_tokens": int(data.get("prompt_eval_count", 0)) + int(data.get("eval_count", 0))
        }
        return GenerationResult(ok=True, text=data.get("response", ""), usage=usage)

    def list_models(self) -> List[str]:
        """
        List models pulled into the local server.

        Returns:
            Model tags; empty when the server is unreachable.
        """
        try:
            response = requests.get(f"{self.endpoint}/api/tags", timeout=5)
            response.raise_for_status()
            return [m.get("name", "") for m in response.json().get("models", [])]
        except (requests.exceptions.RequestException, ValueError) as e:
            self.logger.debug(f"Failed to list Ollama models: {e}")
            return []

    def test_connection(self) -> bool:
        """
        Test connection to the Ollama server.

        Returns:
            True if connection is successful, False otherwise.
        """
        try:
            response = requests.get(f"{self.endpoint}/api/tags", timeout=2)
            success = response.status_code == 200
            if success:
                self.logger.debug("Connection test successful")
            else:
                self.logger.warning(f"Connection test returned status {response.status_code}")
            return success
        except requests.exceptions.RequestException as e:
            self.logger.debug(f"Connection test failed: {e}")
            return False


class ModelGateway:
    """Routes generation requests to the configured provider."""

    def __init__(self, config: Config):
        self.config = config
        self.google = GeminiClient(config)
        self.local = OllamaClient(config)
        self.logger = get_logger(f"{__name__}.ModelGateway")

    def generate(
        self,
        prompt: str,
        provider: str,
        model: str,
        temperature: float,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        """
        Generate text without raising.

        Args:
            prompt: Full prompt text.
            provider: "google" or "local".
            model: Provider-specific model name.
            temperature: Sampling temperature.
            options: Extra settings; ``max_output_tokens`` is honored.

        Returns:
            GenerationResult with ``ok=False`` and an error message on any
            provider failure.
        """
        options = options or {}
        if provider == "google":
            client = self.google
        elif provider == "local":
            client = self.local
        else:
            return GenerationResult(ok=False, error=f"Unknown provider: {provider}")

        try:
            return client.generate(
                prompt,
                model=model,
                temperature=temperature,
                max_output_tokens=options.get("max_output_tokens"),
            )
        except FlashError as e:
            self.logger.debug(f"Generation via {provider} failed: {e}")
            return GenerationResult(ok=False, error=str(e))
