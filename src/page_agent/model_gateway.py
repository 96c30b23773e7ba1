"""Uniform calling contract for the Claude and OpenAI model providers."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from .config import DEFAULT_REQUEST_TIMEOUT, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS
from .errors import ConfigurationError, ProtocolError, ProviderError, RateLimited

logger = logging.getLogger(__name__)

PROVIDERS = ("claude", "openai")

ClientFactory = Callable[[str, str, float], Any]


class RateLimiter:
    """Sliding-window limiter shared by every model call."""

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    def can_proceed(self) -> bool:
        """Admit and record a call when the window has capacity."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._requests) >= self.max_requests:
                return False
            self._requests.append(now)
            return True

    def wait_time(self) -> float:
        """Seconds until the oldest recorded call leaves the window."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._requests) < self.max_requests:
                return 0.0
            return max(0.0, self._requests[0] + self.window_seconds - now)

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()


rate_limiter = RateLimiter()


def default_client_factory(provider: str, api_key: str, timeout: float) -> Any:
    # The pipeline owns retries; SDK clients never retry.
    if provider == "claude":
        return AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)
    return AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)


class ModelGateway:
    """Single entry point for remote model calls."""

    def __init__(
        self,
        limiter: Optional[RateLimiter] = None,
        client_factory: Optional[ClientFactory] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.rate_limiter = limiter or rate_limiter
        self._client_factory = client_factory or default_client_factory
        self.timeout = timeout
        self._clients: Dict[Tuple[str, str], Any] = {}

    async def call(
        self,
        provider: str,
        api_key: str,
        model: str,
        system_prompt: str,
        user_message: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> str:
        if not api_key:
            raise ConfigurationError("API key is required")
        if provider not in PROVIDERS:
            raise ConfigurationError(f"Unknown AI provider: {provider}")

        client = self._client_for(provider, api_key)
        logger.debug("Model call provider=%s model=%s prompt=%s", provider, model, user_message)
        try:
            return await self._call_once(client, provider, model, system_prompt, user_message, max_tokens, temperature)
        except ProtocolError as exc:
            logger.warning("Malformed %s response (%s); re-prompting once", provider, exc)
        return await self._call_once(client, provider, model, system_prompt, user_message, max_tokens, temperature)

    def _client_for(self, provider: str, api_key: str) -> Any:
        key = (provider, api_key)
        client = self._clients.get(key)
        if client is None:
            client = self._client_factory(provider, api_key, self.timeout)
            self._clients[key] = client
        return client

    async def _call_once(
        self,
        client: Any,
        provider: str,
        model: str,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        if not self.rate_limiter.can_proceed():
            raise RateLimited(self.rate_limiter.wait_time())

        if provider == "claude":
            request = _call_claude(client, model, system_prompt, user_message, max_tokens, temperature)
        else:
            request = _call_openai(client, model, system_prompt, user_message, max_tokens, temperature)

        try:
            text = await asyncio.wait_for(request, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(None, f"{provider} request timed out after {self.timeout:.0f}s") from exc
        logger.debug("Model raw response: %s", text)
        return text


async def _call_claude(
    client: Any,
    model: str,
    system_prompt: str,
    user_message: str,
    max_tokens: int,
    temperature: float,
) -> str:
    try:
        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
    except anthropic.AuthenticationError as exc:
        raise ConfigurationError("The Anthropic API key was rejected") from exc
    except anthropic.APIStatusError as exc:
        logger.error("Claude API error %s: %s", exc.status_code, _error_body(exc))
        raise ProviderError(exc.status_code, _error_body(exc)) from exc
    except anthropic.APIConnectionError as exc:
        raise ProviderError(None, str(exc)) from exc

    for block in getattr(response, "content", None) or []:
        text = getattr(block, "text", None)
        if text:
            return text
    raise ProtocolError("Invalid response from Claude API")


async def _call_openai(
    client: Any,
    model: str,
    system_prompt: str,
    user_message: str,
    max_tokens: int,
    temperature: float,
) -> str:
    try:
        response = await client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
    except openai.AuthenticationError as exc:
        raise ConfigurationError("The OpenAI API key was rejected") from exc
    except openai.APIStatusError as exc:
        logger.error("OpenAI API error %s: %s", exc.status_code, _error_body(exc))
        raise ProviderError(exc.status_code, _error_body(exc)) from exc
    except openai.APIConnectionError as exc:
        raise ProviderError(None, str(exc)) from exc

    choices = getattr(response, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    content = getattr(message, "content", None) if message else None
    if not content:
        raise ProtocolError("Invalid response from OpenAI API")
    return content


def _error_body(exc: Exception) -> str:
    response = getattr(exc, "response", None)
    text = getattr(response, "text", None) if response is not None else None
    return text or str(exc)


__all__ = ["ModelGateway", "PROVIDERS", "RateLimiter", "default_client_factory", "rate_limiter"]
