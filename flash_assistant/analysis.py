"""Rate-limited quick analysis calls through the analysis sub-mind."""

from dataclasses import dataclass
from typing import Optional

import click

from flash_assistant.agents.registry import SubMindRegistry
from flash_assistant.logger import get_logger
from flash_assistant.rate_limiter import RateLimiter


@dataclass
class AnalysisResult:
    """Outcome of a quick analysis request."""

    success: bool
    response: str = ""
    error: Optional[str] = None
    fallback: bool = False
    tokens_used: int = 0


class QuickAnalyzer:
    """Sends short, low-temperature questions to the analysis sub-mind.

    Every request must be admitted by the shared ``RateLimiter`` first;
    denied requests return ``fallback=True`` without calling the model.
    """

    def __init__(
        self,
        gateway,
        rate_limiter: RateLimiter,
        registry: SubMindRegistry,
        provider: str = "google",
        model: str = "gemini-2.0-flash",
        temperature: float = 0.1,
        echo=None,
    ):
        self.gateway = gateway
        self.rate_limiter = rate_limiter
        self.registry = registry
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self._echo = echo or (lambda message: click.echo(click.style(message, fg="yellow"), err=True))
        self.logger = get_logger(f"{__name__}.QuickAnalyzer")

    def analyze(self, request: str, max_output_tokens: int = 50) -> AnalysisResult:
        """
        Ask the analysis sub-mind a question.

        Args:
            request: Analysis request appended to the sub-mind prompt.
            max_output_tokens: Output ceiling for the reply.

        Returns:
            AnalysisResult; never raises for provider failures.
        """
        if not self.rate_limiter.try_admit():
            self.logger.warning("Analysis rate limit reached")
            self._echo("⚠️  Analysis rate limit reached, falling back to pattern matching")
            return AnalysisResult(success=False, error="Rate limit exceeded", fallback=True)

        sub_mind = self.registry.get("analysis")
        if sub_mind is None:
            return AnalysisResult(success=False, error="Analysis agent not found")

        prompt = f"{sub_mind.system_prompt}\n\nAnalysis Request:\n{request}"
        try:
            result = self.gateway.generate(
                prompt,
                self.provider,
                self.model,
                self.temperature,
                {"max_output_tokens": max_output_tokens},
            )
        except Exception as e:
            self.logger.warning(f"Quick analysis failed: {e}")
            return AnalysisResult(success=False, error=str(e))

        if not result.ok:
            self.logger.debug(f"Quick analysis returned an error: {result.error}")
            return AnalysisResult(success=False, error=result.error)

        return AnalysisResult(
            success=True,
            response=(result.text or "").strip(),
            tokens_used=result.usage.get("total_tokens", 0) if result.usage else 0,
        )

