"""
Generative research agent backed by Anthropic's Claude API.

The pipeline uses the agent for deep research notes, remediation assets and
topic suggestions. Two effort levels are offered:

    - express: short, low-temperature generation for assets and suggestions
    - advanced: longer, higher-temperature multi-step research

Features:
    - Exponential backoff retry on rate limits, 5xx and transport errors
    - Token usage and estimated cost tracking per request
    - Collaborator failures surfaced as ``UpstreamFailure``

Example:
    >>> async with ClaudeResearchAgent(settings) as agent:
    ...     notes = await agent.run_agent(prompt, mode=AgentMode.ADVANCED)
"""

from __future__ import annotations

import asyncio
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import anthropic
from anthropic import APIError, APIStatusError, RateLimitError

from citefix.analyzers.prompts import SYSTEM_PROMPTS
from citefix.config.settings import Settings, get_settings
from citefix.models.schemas import AgentMode, utcnow
from citefix.pipeline.errors import UpstreamFailure
from citefix.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Token costs per model (per 1K tokens)
TOKEN_COSTS = {
    "claude-sonnet-4-20250514": {"input": 0.003, "output": 0.015},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-3-5-haiku-20241022": {"input": 0.0008, "output": 0.004},
}

EXPRESS_MAX_TOKENS = 2000
MAX_BACKOFF_SECONDS = 60


@dataclass
class TokenUsage:
    """Token usage tracking for a single request."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str = ""
    mode: str = AgentMode.EXPRESS.value
    timestamp: datetime = field(default_factory=utcnow)

    def calculate_cost(self, model: str) -> float:
        """Calculate estimated cost based on token usage."""
        if model in TOKEN_COSTS:
            costs = TOKEN_COSTS[model]
            input_cost = (self.input_tokens / 1000) * costs["input"]
            output_cost = (self.output_tokens / 1000) * costs["output"]
            self.estimated_cost = input_cost + output_cost
        return self.estimated_cost


# =============================================================================
# Agent Interface
# =============================================================================

class ResearchAgent(ABC):
    """Interface the research, asset and suggestion steps call."""

    @abstractmethod
    async def run_agent(self, prompt: str, mode: AgentMode | str = AgentMode.EXPRESS) -> str:
        """
        Free-text response to ``prompt``.

        Raises:
            UpstreamFailure: If the agent cannot produce a response.
        """


class ClaudeResearchAgent(ResearchAgent):
    """
    Claude-backed research agent.

    Attributes:
        settings: Application settings
        client: Anthropic API client
        token_usage_history: List of token usage records
        total_cost: Running total of API costs
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
        max_retries: Optional[int] = None,
    ):
        self.settings = settings or get_settings()
        self.max_retries = max_retries or self.settings.max_retries

        if client is None:
            key = api_key
            if key is None and self.settings.anthropic_api_key is not None:
                key = self.settings.anthropic_api_key.get_secret_value()
            if not key:
                raise UpstreamFailure(
                    "ANTHROPIC_API_KEY is not configured",
                    collaborator="agent",
                    recoverable=False,
                )
            client = anthropic.AsyncAnthropic(api_key=key)
        self.client = client

        self.token_usage_history: list[TokenUsage] = []
        self.total_cost: float = 0.0

    async def __aenter__(self) -> "ClaudeResearchAgent":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client connection."""
        await self.client.close()
        logger.info(
            "Research agent closed",
            total_requests=len(self.token_usage_history),
            total_cost=f"${self.total_cost:.4f}",
        )

    def _mode_parameters(self, mode: str) -> tuple[str, float, int]:
        if mode == AgentMode.ADVANCED.value:
            return (
                SYSTEM_PROMPTS["research"],
                self.settings.research_temperature,
                self.settings.claude_max_tokens,
            )
        return (
            SYSTEM_PROMPTS["assets"],
            self.settings.asset_temperature,
            min(EXPRESS_MAX_TOKENS, self.settings.claude_max_tokens),
        )

    async def run_agent(self, prompt: str, mode: AgentMode | str = AgentMode.EXPRESS) -> str:
        mode = AgentMode(mode).value
        system, temperature, max_tokens = self._mode_parameters(mode)
        text, _ = await self._call_api(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
            mode=mode,
        )
        return text

    async def _call_api(
        self,
        messages: list[dict[str, str]],
        system: str,
        temperature: float,
        max_tokens: int,
        mode: str,
    ) -> tuple[str, TokenUsage]:
        """
        Make an API call with retry logic.

        Returns:
            Tuple of (response_text, token_usage)

        Raises:
            UpstreamFailure: On client errors, or once retries are exhausted
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                start_time = time.monotonic()

                response = await self.client.messages.create(
                    model=self.settings.claude_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system,
                    messages=messages,
                )

                elapsed = time.monotonic() - start_time
                response_text = "".join(
                    block.text for block in response.content if getattr(block, "type", "text") == "text"
                )

                usage = TokenUsage(
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    total_tokens=response.usage.input_tokens + response.usage.output_tokens,
                    model=self.settings.claude_model,
                    mode=mode,
                )
                usage.calculate_cost(self.settings.claude_model)
                self.token_usage_history.append(usage)
                self.total_cost += usage.estimated_cost

                logger.info(
                    "Agent call successful",
                    mode=mode,
                    attempt=attempt + 1,
                    elapsed_seconds=f"{elapsed:.2f}",
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    cost=f"${usage.estimated_cost:.4f}",
                )
                return response_text, usage

            except RateLimitError as e:
                last_error = e
                wait_time = self._calculate_backoff(attempt, base=30)
                logger.warning("Rate limit hit, backing off", attempt=attempt + 1, wait_seconds=wait_time)
                await asyncio.sleep(wait_time)

            except APIStatusError as e:
                last_error = e
                if e.status_code >= 500:
                    wait_time = self._calculate_backoff(attempt)
                    logger.warning(
                        "Server error, retrying",
                        attempt=attempt + 1,
                        status_code=e.status_code,
                        wait_seconds=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error("Agent request rejected", status_code=e.status_code, error=str(e))
                    raise UpstreamFailure(
                        f"Agent request rejected ({e.status_code}): {e}",
                        collaborator="agent",
                        recoverable=False,
                    ) from e

            except APIError as e:
                last_error = e
                wait_time = self._calculate_backoff(attempt)
                logger.warning("API error, retrying", attempt=attempt + 1, wait_seconds=wait_time, error=str(e))
                await asyncio.sleep(wait_time)

        logger.error("Max retries exceeded", mode=mode, max_retries=self.max_retries, last_error=str(last_error))
        raise UpstreamFailure(
            f"Agent failed after {self.max_retries} attempts: {last_error}",
            collaborator="agent",
        )

    @staticmethod
    def _calculate_backoff(attempt: int, base: float = 1.0) -> float:
        """Exponential backoff with jitter."""
        backoff = base * (2 ** attempt)
        jitter = random.uniform(0, backoff * 0.1)
        return min(backoff + jitter, MAX_BACKOFF_SECONDS)

    def get_usage_stats(self) -> dict[str, Any]:
        total_tokens = sum(u.total_tokens for u in self.token_usage_history)
        return {
            "total_requests": len(self.token_usage_history),
            "total_tokens": total_tokens,
            "total_cost": self.total_cost,
            "by_mode": {
                mode.value: sum(1 for u in self.token_usage_history if u.mode == mode.value)
                for mode in AgentMode
            },
        }
