"""
Tests for the text generation clients.

HTTP is served by httpx.MockTransport; no provider is contacted.
"""

import json

import httpx
import pytest

from src.core import Agent, AnthropicLLM, LLMError, OllamaLLM, Settings, create_llm


def _agent() -> Agent:
    return Agent(name="Scout", description="A curious explorer", goals="map the valley", user_id="user-a")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_anthropic_request_shape_and_parse():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "I head north."}]})

    settings = Settings(anthropic_api_key="sk-test", anthropic_model="claude-test", llm_max_tokens=256)
    llm = AnthropicLLM(settings, client=_client(handler))

    text = await llm.complete("hello")

    assert text == "I head north."
    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["headers"]["anthropic-version"] == settings.anthropic_version
    assert seen["body"]["model"] == "claude-test"
    assert seen["body"]["max_tokens"] == 256
    assert seen["body"]["messages"] == [{"role": "user", "content": "hello"}]
    await llm.close()


@pytest.mark.asyncio
async def test_anthropic_non_text_block_yields_empty():
    def handler(request):
        return httpx.Response(200, json={"content": [{"type": "tool_use", "id": "x"}]})

    llm = AnthropicLLM(Settings(), client=_client(handler))
    assert await llm.complete("hi") == ""


@pytest.mark.asyncio
async def test_ollama_request_shape_and_parse():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": "Resting."})

    settings = Settings(ollama_host="http://ollama:11434", ollama_model="llama3.1:8b")
    llm = OllamaLLM(settings, client=_client(handler))

    assert await llm.complete("prompt") == "Resting."
    assert seen["url"] == "http://ollama:11434/api/generate"
    assert seen["body"]["stream"] is False
    assert "think" not in seen["body"]


@pytest.mark.asyncio
async def test_error_status_raises_llm_error():
    llm = OllamaLLM(Settings(), client=_client(lambda r: httpx.Response(503)))
    with pytest.raises(LLMError, match="503"):
        await llm.complete("prompt")


@pytest.mark.asyncio
async def test_connection_error_raises_llm_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    llm = OllamaLLM(Settings(), client=_client(handler))
    with pytest.raises(LLMError, match="Failed to connect"):
        await llm.complete("prompt")


@pytest.mark.asyncio
async def test_generate_response_builds_prompt_and_memory():
    captured = {}

    def handler(request):
        captured["prompt"] = json.loads(request.content)["prompt"]
        return httpx.Response(200, json={"response": "Surveying the ridge."})

    llm = OllamaLLM(Settings(), client=_client(handler))
    memory = {"notes": ["river to the east"]}

    result = await llm.generate_response(_agent(), "World Context: Valley", memory)

    assert result.response == "Surveying the ridge."
    assert result.memory["notes"] == ["river to the east"]
    assert result.memory["lastInteraction"]["response"] == "Surveying the ridge."
    assert result.memory["lastInteraction"]["context"] == "World Context: Valley"
    assert "lastInteraction" not in memory

    prompt = captured["prompt"]
    assert "You are an AI agent named Scout" in prompt
    assert "Your goals are: map the valley" in prompt
    assert "river to the east" in prompt
    assert "World Context: Valley" in prompt


def test_create_llm_selects_provider():
    assert isinstance(create_llm(Settings(llm_provider="ollama")), OllamaLLM)
    assert isinstance(create_llm(Settings(llm_provider="anthropic")), AnthropicLLM)


def test_create_llm_rejects_unknown_provider():
    with pytest.raises(ValueError, match="llm_provider"):
        create_llm(Settings(llm_provider="mystery"))
