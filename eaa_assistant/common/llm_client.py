"""
Provider-agnostic chat-completion client for the EAA Assistant.

Supports OpenAI and Anthropic behind one async interface:
complete(system_prompt, messages, temperature, max_tokens) -> text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

import anthropic
from openai import AsyncOpenAI

from .errors import UpstreamError

logger = logging.getLogger("eaa_assistant.common.llm_client")


class LLMClient:
    """Unified async chat client across LLM providers."""

    def __init__(
        self,
        provider: str = "openai",
        model: str = "",
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        *,
        client=None,
        timeout: float = 30.0,
    ) -> None:
        self.provider = (provider or "openai").lower()
        self.model = model
        self.timeout = timeout
        self._client = client

        if client is not None:
            return

        if self.provider == "openai":
            if not openai_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            self._client = AsyncOpenAI(api_key=openai_api_key)
            return

        if self.provider == "anthropic":
            if not anthropic_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            self._client = anthropic.AsyncAnthropic(api_key=anthropic_api_key)
            return

        logger.warning("Unsupported LLM provider: %s", self.provider)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def complete(
        self,
        system_prompt: Optional[str],
        messages: List[Dict[str, str]],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ) -> str:
        """
        Run one chat completion.

        Args:
            system_prompt: System instruction (may be None)
            messages: [{"role": "user"|"assistant", "content": str}, ...]
            temperature: Sampling temperature
            max_tokens: Output token limit

        Raises:
            UpstreamError: provider unavailable, failed, timed out or
                returned an empty completion
        """
        if not self.is_available:
            raise UpstreamError("chat", "LLM client is not available")

        try:
            text = await asyncio.wait_for(
                self._dispatch(system_prompt, messages, temperature, max_tokens),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Chat completion timed out after %.1fs (%s)", self.timeout, self.provider)
            raise UpstreamError("chat", f"timed out after {self.timeout}s")
        except UpstreamError:
            raise
        except Exception as e:
            logger.warning("Chat completion failed (%s): %s", self.provider, e)
            raise UpstreamError("chat", str(e)) from e

        if not text:
            raise UpstreamError("chat", "empty completion")
        return text

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 512,
    ) -> str:
        """Single-turn convenience wrapper around complete()."""
        return await self.complete(
            system,
            [{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def _dispatch(
        self,
        system_prompt: Optional[str],
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        if self.provider == "openai":
            payload = []
            if system_prompt:
                payload.append({"role": "system", "content": system_prompt})
            payload.extend(messages)
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=payload,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return (response.choices[0].message.content or "").strip()

        if self.provider == "anthropic":
            kwargs = {}
            if system_prompt:
                kwargs["system"] = system_prompt
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=messages,
                **kwargs,
            )
            return response.content[0].text.strip()

        raise UpstreamError("chat", f"Unsupported LLM provider: {self.provider}")
