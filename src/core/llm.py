"""
Text generation clients.

A generator turns (agent, context, memory) into a response and the memory
blob to persist. Providers only implement ``complete`` (prompt in, text
out); prompt composition and memory bookkeeping live in the base class.

Instances are created by ``create_llm`` and injected into each scheduler,
so tests can pass a fake generator.
"""

import json
import time
from typing import Any

import httpx
import structlog

from .config import Settings, get_settings
from .metrics import get_metrics
from .models import Agent, GenerationResult, utcnow_iso

logger = structlog.get_logger()

AGENT_PROMPT_TEMPLATE = """You are an AI agent named {name} with the following description: {description}
Your goals are: {goals}

Previous context and memory:
{memory}

Current context:
{context}

Respond in character as the AI agent, considering your goals and previous context. Your response should be focused and concise."""


class LLMError(Exception):
    """Raised when LLM generation fails."""

    pass


class TextGenerator:
    """Base class for text generation providers."""

    provider = "base"

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    async def complete(self, prompt: str) -> str:
        raise NotImplementedError

    def build_prompt(self, agent: Agent, context: str, memory: dict[str, Any]) -> str:
        return AGENT_PROMPT_TEMPLATE.format(
            name=agent.name,
            description=agent.description,
            goals=agent.goals,
            memory=json.dumps(memory, indent=2, default=str),
            context=context,
        )

    async def generate_response(
        self,
        agent: Agent,
        context: str,
        memory: dict[str, Any],
    ) -> GenerationResult:
        """
        Generate the agent's next action.

        Args:
            agent: The acting agent
            context: Composed world context for this turn
            memory: The agent's current memory blob

        Returns:
            GenerationResult with the response text and the updated memory
        """
        response = await self.complete(self.build_prompt(agent, context, memory))
        updated = {
            **memory,
            "lastInteraction": {
                "context": context,
                "response": response,
                "timestamp": utcnow_iso(),
            },
        }
        return GenerationResult(response=response, memory=updated)

    async def close(self):
        pass


class _HTTPGenerator(TextGenerator):
    """Shared httpx plumbing: one POST per completion, metrics, error mapping."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        super().__init__(settings)
        self.client = client or httpx.AsyncClient(timeout=self.settings.llm_timeout)

    @property
    def model(self) -> str:
        raise NotImplementedError

    def _request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def _parse(self, data: dict[str, Any]) -> str:
        raise NotImplementedError

    async def complete(self, prompt: str) -> str:
        url, headers, body = self._request(prompt)
        labels = {"provider": self.provider, "model": self.model}

        metrics = get_metrics()
        start = time.time()
        try:
            response = await self.client.post(url, json=body, headers=headers)

            if response.status_code == 200:
                metrics.increment("agentsim_llm_requests_total", {**labels, "status": "success"})
                return self._parse(response.json())

            logger.error(
                "llm_request_failed",
                provider=self.provider,
                status=response.status_code,
                model=self.model,
            )
            metrics.increment("agentsim_llm_requests_total", {**labels, "status": "error"})
            raise LLMError(f"{self.provider} returned status {response.status_code}")

        except httpx.TimeoutException:
            logger.error("llm_timeout", provider=self.provider, model=self.model, timeout=self.settings.llm_timeout)
            metrics.increment("agentsim_llm_requests_total", {**labels, "status": "timeout"})
            raise LLMError(f"{self.provider} timed out after {self.settings.llm_timeout}s")
        except httpx.RequestError as e:
            logger.error("llm_request_error", error=repr(e), error_type=type(e).__name__)
            metrics.increment("agentsim_llm_requests_total", {**labels, "status": "error"})
            raise LLMError(f"Failed to connect to {self.provider}: {type(e).__name__}: {e}")
        finally:
            metrics.observe("agentsim_llm_latency_seconds", labels, value=time.time() - start)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()


class AnthropicLLM(_HTTPGenerator):
    """Generate text via the Anthropic Messages API."""

    provider = "anthropic"

    @property
    def model(self) -> str:
        return self.settings.anthropic_model

    def _request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        headers = {
            "x-api-key": self.settings.anthropic_api_key,
            "anthropic-version": self.settings.anthropic_version,
        }
        body = {
            "model": self.model,
            "max_tokens": self.settings.llm_max_tokens,
            "temperature": self.settings.llm_temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        return f"{self.settings.anthropic_base_url.rstrip('/')}/v1/messages", headers, body

    def _parse(self, data: dict[str, Any]) -> str:
        # Only the first block is used; non-text blocks yield an empty response
        content = data.get("content") or []
        if content and content[0].get("type") == "text":
            return content[0].get("text", "")
        return ""


class OllamaLLM(_HTTPGenerator):
    """Generate text via Ollama's /api/generate endpoint."""

    provider = "ollama"

    @property
    def model(self) -> str:
        return self.settings.ollama_model

    def _request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        body: dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.settings.llm_temperature,
                "num_predict": self.settings.llm_max_tokens,
            },
        }
        # Disable thinking for qwen3 models to get a clean response
        if "qwen3" in self.model:
            body["think"] = False
        return f"{self.settings.ollama_host}/api/generate", {}, body

    def _parse(self, data: dict[str, Any]) -> str:
        return data.get("response", "")


_PROVIDERS: dict[str, type[_HTTPGenerator]] = {
    "anthropic": AnthropicLLM,
    "ollama": OllamaLLM,
}


def create_llm(settings: Settings | None = None) -> TextGenerator:
    """Build the configured text generator."""
    settings = settings or get_settings()
    try:
        cls = _PROVIDERS[settings.llm_provider]
    except KeyError:
        raise ValueError(f"Unknown llm_provider: {settings.llm_provider!r}")
    if cls is AnthropicLLM and not settings.anthropic_api_key:
        logger.warning("anthropic_api_key_missing")
    return cls(settings)
