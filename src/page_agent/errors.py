"""Error kinds raised across the command pipeline."""

from __future__ import annotations

from typing import Optional


class PageAgentError(RuntimeError):
    """Base class for pipeline failures that carry a user-facing message."""

    retryable = False
    default_message = "Something went wrong while handling the command."

    @property
    def user_message(self) -> str:
        return self.default_message


class ConfigurationError(PageAgentError):
    """Raised when the API key or provider settings are missing or invalid."""

    default_message = "API key not configured. Set it in your environment or .env file."

    @property
    def user_message(self) -> str:
        return str(self) or self.default_message


class ProviderError(PageAgentError):
    """Raised when a model provider answers with a non-success status or is unreachable."""

    retryable = True
    default_message = "The AI provider request failed. Please try again."

    def __init__(self, status: Optional[int], body: str) -> None:
        super().__init__(f"Provider error {status if status is not None else 'n/a'}: {body}")
        self.status = status
        self.body = body


class ProtocolError(PageAgentError):
    """Raised when a provider response lacks the expected text content."""

    default_message = "The AI provider returned an unexpected response."


class SafetyViolation(PageAgentError):
    """Raised when generated action content matches a blocked pattern."""

    def __init__(self, fragment: str, reason: str) -> None:
        super().__init__(f"{reason} (matched {fragment!r})")
        self.fragment = fragment
        self.reason = reason

    @property
    def user_message(self) -> str:
        return f"Action blocked for safety: {self.reason}"


class ExecutionError(PageAgentError):
    """Raised when an action could not be applied to the page."""

    retryable = True
    default_message = "The action could not be completed on the page."

    @property
    def user_message(self) -> str:
        return str(self) or self.default_message


class RateLimited(PageAgentError):
    """Raised when the shared model rate limiter has no capacity left."""

    def __init__(self, wait_time: float) -> None:
        super().__init__(f"Rate limit reached; retry in {wait_time:.1f}s")
        self.wait_time = wait_time

    @property
    def user_message(self) -> str:
        return f"Too many requests. Please wait {max(1, round(self.wait_time))} seconds and try again."


__all__ = [
    "ConfigurationError",
    "ExecutionError",
    "PageAgentError",
    "ProtocolError",
    "ProviderError",
    "RateLimited",
    "SafetyViolation",
]
