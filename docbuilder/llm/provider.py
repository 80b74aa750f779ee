#!/usr/bin/env python3
"""Vendor-agnostic LLM provider base class and data types.

Defines the request/response format shared by the gateway and any
chat-completion backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LLMRequest:
    """Vendor-agnostic chat-completion request."""
    user_prompt: str = ""
    system_prompt: str = ""
    model: str = ""
    max_tokens: int = 1024
    temperature: Optional[float] = None
    timeout: Optional[float] = None

    def to_messages(self) -> List[Dict[str, Any]]:
        """System message (when present) followed by the user message."""
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.user_prompt})
        return messages


@dataclass
class LLMResponse:
    """Vendor-agnostic chat-completion response."""
    content: str = ""
    model_id: str = ""
    provider: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    stop_reason: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier."""

    @abstractmethod
    def invoke(self, request: LLMRequest) -> LLMResponse:
        """Invoke the LLM synchronously."""


class ProviderError(RuntimeError):
    """Raised by a provider when the upstream call fails.

    status_code is the upstream HTTP status when one was received, 502 for
    connection failures and 504 for timeouts.
    """

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
