"""
LLM-backed category prediction supporting multiple providers (Anthropic, OpenAI, etc.).
"""

import asyncio
import os
from enum import Enum
from typing import Optional, Protocol

from .errors import PredictionError
from .logging import get_logger

logger = get_logger(__name__)


class Predictor(Protocol):
    """Anything that can answer a categorization prompt with free text."""

    async def predict(self, subject: str, instructions: str) -> str:
        ...


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    AZURE_OPENAI = "azure-openai"


# Default models for each provider
DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-3-5-haiku-20241022",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.AZURE_OPENAI: "gpt-4o-mini",
}

# A category name is a word or two
MAX_TOKENS = 20


def _create_anthropic_client():
    import anthropic
    return anthropic.Anthropic()  # Uses ANTHROPIC_API_KEY env var


def _create_openai_client():
    import openai
    return openai.OpenAI()  # Uses OPENAI_API_KEY env var


def _create_azure_openai_client():
    import openai
    return openai.AzureOpenAI(
        api_key=os.getenv("AZURE_OPENAI_API_KEY"),
        api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
        azure_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT")
    )


class LLMPredictor:
    """Predictor that sends the prompt to a hosted chat model."""

    def __init__(self, provider: str = "openai", model: Optional[str] = None):
        try:
            self.provider = LLMProvider(provider)
        except ValueError:
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.model = model or DEFAULT_MODELS[self.provider]
        self._client = None

    def _get_client(self):
        """Get or create the provider client (lazy initialization)."""
        if self._client is None:
            if self.provider == LLMProvider.ANTHROPIC:
                self._client = _create_anthropic_client()
            elif self.provider == LLMProvider.OPENAI:
                self._client = _create_openai_client()
            else:
                self._client = _create_azure_openai_client()
        return self._client

    def _call_anthropic(self, prompt: str) -> str:
        """Call Anthropic API."""
        response = self._get_client().messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            temperature=0.0,
            messages=[{"role": "user", "content": prompt}]
        )
        return response.content[0].text

    def _call_openai(self, prompt: str) -> str:
        """Call OpenAI or Azure OpenAI API."""
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=MAX_TOKENS,
            temperature=0.0,
        )
        return response.choices[0].message.content or ""

    def complete(self, prompt: str) -> str:
        """Blocking call to the configured provider."""
        if self.provider == LLMProvider.ANTHROPIC:
            return self._call_anthropic(prompt)
        return self._call_openai(prompt)

    async def predict(self, subject: str, instructions: str) -> str:
        prompt = f"{instructions}\n\n{subject}"
        try:
            text = await asyncio.to_thread(self.complete, prompt)
        except Exception as e:
            logger.warning("LLM prediction failed (%s/%s): %s", self.provider.value, self.model, e)
            raise PredictionError(f"LLM prediction failed: {e}") from e
        logger.debug("LLM answered %r", text)
        return text
