"""Unit tests for the Ollama generation client."""

import json

import httpx
import pytest
import respx
from httpx import Response

from content_index.generation import GenerationConfig, OllamaGeneration

GENERATE_URL = "http://localhost:11434/api/generate"


@pytest.fixture
def generation_config() -> GenerationConfig:
    return GenerationConfig(model="llama3.2", max_retries=3, timeout_seconds=5.0)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Skip retry sleeps."""

    async def instant(_delay):
        return None

    monkeypatch.setattr("content_index.generation.asyncio.sleep", instant)


class TestOllamaGeneration:
    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_success(self, generation_config):
        route = respx.post(GENERATE_URL).mock(
            return_value=Response(200, json={"response": '["ai"]', "done": True})
        )

        client = OllamaGeneration(generation_config)
        completion = await client.generate("List interests")

        assert completion == '["ai"]'
        body = json.loads(route.calls.last.request.content)
        assert body == {
            "model": "llama3.2",
            "prompt": "List interests",
            "stream": False,
            "options": {"temperature": 0.3},
        }
        await client.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_server_error(self, generation_config):
        route = respx.post(GENERATE_URL).mock(
            side_effect=[
                Response(503, text="busy"),
                Response(200, json={"response": "ok"}),
            ]
        )

        client = OllamaGeneration(generation_config)
        assert await client.generate("prompt") == "ok"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_exhausts_retries(self, generation_config):
        route = respx.post(GENERATE_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        client = OllamaGeneration(generation_config)
        with pytest.raises(httpx.TimeoutException):
            await client.generate("prompt")
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(self, generation_config):
        route = respx.post(GENERATE_URL).mock(return_value=Response(404, text="no model"))

        client = OllamaGeneration(generation_config)
        with pytest.raises(httpx.HTTPStatusError):
            await client.generate("prompt")
        assert route.call_count == 1
