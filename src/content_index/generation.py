"""Text generation client for label extraction prompts."""

import asyncio
from typing import Protocol

import httpx
from loguru import logger
from pydantic import BaseModel, Field


class GenerationConfig(BaseModel):
    """Configuration for the text generation model.

    Attributes:
        model: Model name on the Ollama server
        base_url: Ollama server URL
        temperature: Sampling temperature
        max_retries: Attempts per prompt for transient failures
        timeout_seconds: Per-request timeout
    """

    model: str = "llama3.2"
    base_url: str = "http://localhost:11434"
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=600.0)


class GenerationClient(Protocol):
    """Protocol for text generation implementations."""

    async def generate(self, prompt: str) -> str:
        """Return the model's completion for prompt."""
        ...


class OllamaGeneration:
    """Ollama ``/api/generate`` client with retry on timeouts and 5xx."""

    def __init__(self, config: GenerationConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = http_client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_seconds
        )

    async def generate(self, prompt: str) -> str:
        """Generate a completion.

        Raises:
            httpx.HTTPError: After all retries for transient failures, or
                immediately for 4xx responses
        """
        payload = {
            "model": self.config.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.config.temperature},
        }

        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.post("/api/generate", json=payload)
                response.raise_for_status()
                return str(response.json().get("response", ""))

            except httpx.TimeoutException as e:
                logger.warning(
                    f"Timeout generating completion "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt == self.config.max_retries - 1:
                    raise

            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500 or attempt == self.config.max_retries - 1:
                    logger.error(f"HTTP error generating completion: {e}")
                    raise
                logger.warning(
                    f"Server error (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )

            await asyncio.sleep(0.5 * 2**attempt)

        raise RuntimeError("Exhausted all retry attempts")

    async def aclose(self) -> None:
        await self.client.aclose()
