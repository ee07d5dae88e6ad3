"""Generative-service client used by the planner.

The planner depends only on `LLMClient`. The concrete client is constructed
once at startup by `build_llm_client` and injected; a missing API key yields
no client at all, and the planner then uses its deterministic fallback.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from session_pilot.config import PlannerConfig

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class LLMError(Exception):
	"""Transport or HTTP failure talking to the generative service."""


class LLMClient(ABC):
	"""Interface every generative-service provider implements."""

	@abstractmethod
	async def complete(self, system: str, messages: list[dict[str, str]], max_tokens: int) -> str:
		"""Send a conversation and return the first text block of the reply.

		`messages` alternate `user`/`assistant` roles and end with a `user` turn.
		`max_tokens` bounds the reply size and must always be set.
		"""


class AnthropicClient(LLMClient):
	"""Messages API over httpx. Every call carries the configured timeout."""

	def __init__(
		self,
		api_key: str,
		model: str,
		api_url: str = "https://api.anthropic.com/v1/messages",
		timeout: float = 60.0,
		transport: httpx.AsyncBaseTransport | None = None,
	) -> None:
		self.model = model
		self._api_key = api_key
		self._api_url = api_url
		self._timeout = timeout
		self._transport = transport

	async def complete(self, system: str, messages: list[dict[str, str]], max_tokens: int) -> str:
		payload: dict[str, Any] = {
			"model": self.model,
			"max_tokens": max_tokens,
			"system": system,
			"messages": messages,
		}
		headers = {
			"x-api-key": self._api_key,
			"anthropic-version": ANTHROPIC_VERSION,
			"content-type": "application/json",
		}
		try:
			async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
				resp = await client.post(self._api_url, json=payload, headers=headers)
				resp.raise_for_status()
				data = resp.json()
		except httpx.HTTPError as exc:
			raise LLMError(f"Planning request failed: {exc}") from exc
		except ValueError as exc:
			raise LLMError(f"Planning response was not JSON: {exc}") from exc

		if not isinstance(data, dict):
			raise LLMError(f"Unexpected planning response shape: {type(data).__name__}")
		content = data.get("content") or []
		if not isinstance(content, list):
			raise LLMError("Unexpected planning response content")
		for block in content:
			if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
				return block["text"]
		raise LLMError("No text content in planning response")


def build_llm_client(config: PlannerConfig) -> LLMClient | None:
	api_key = config.api_key
	if not api_key:
		logger.info("%s not set, plans will use the deterministic fallback", config.api_key_env)
		return None
	return AnthropicClient(
		api_key=api_key,
		model=config.model,
		api_url=config.api_url,
		timeout=config.timeout,
	)
