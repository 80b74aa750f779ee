#!/usr/bin/env python3
"""OpenAI-compatible LLM provider.

Supports any OpenAI-compatible chat-completions API. Used for OpenRouter,
which additionally wants HTTP-Referer / X-Title attribution headers.
"""

import logging
import time
from typing import Optional

import openai
from openai import OpenAI

from docbuilder.llm.provider import LLMProvider, LLMRequest, LLMResponse, ProviderError

logger = logging.getLogger("docbuilder.llm.openai")


class OpenAICompatibleProvider(LLMProvider):
    """Provider for OpenAI-compatible REST APIs (OpenRouter, vLLM, etc.)."""

    def __init__(self, api_key: str, base_url: str = "https://openrouter.ai/api/v1",
                 provider_label: str = "openrouter", app_url: str = "",
                 app_title: str = "", client: Optional[OpenAI] = None):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._label = provider_label
        headers = {}
        if app_url:
            headers["HTTP-Referer"] = app_url
        if app_title:
            headers["X-Title"] = app_title
        # max_retries=0: one request per call
        self._client = client or OpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            default_headers=headers or None,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return self._label

    def invoke(self, request: LLMRequest) -> LLMResponse:
        start = time.time()
        kwargs = {
            "model": request.model,
            "messages": request.to_messages(),
            "max_tokens": request.max_tokens,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.timeout is not None:
            kwargs["timeout"] = request.timeout

        try:
            resp = self._client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as exc:
            raise ProviderError(f"{self._label} request timed out: {exc}", 504) from exc
        except openai.APIStatusError as exc:
            logger.error("%s API error %s: %s", self._label, exc.status_code, exc)
            raise ProviderError(
                f"{self._label} returned HTTP {exc.status_code}", exc.status_code
            ) from exc
        except openai.APIConnectionError as exc:
            raise ProviderError(f"{self._label} connection failed: {exc}", 502) from exc
        except openai.OpenAIError as exc:
            logger.error("%s call failed: %s", self._label, exc)
            raise ProviderError(f"{self._label} call failed: {exc}", 502) from exc

        if not resp.choices:
            raise ProviderError(f"No response received from model {request.model}", 502)

        content = resp.choices[0].message.content or ""
        usage = resp.usage
        return LLMResponse(
            content=content,
            model_id=getattr(resp, "model", "") or request.model,
            provider=self._label,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.time() - start) * 1000),
            stop_reason=str(resp.choices[0].finish_reason),
            raw=resp.model_dump() if hasattr(resp, "model_dump") else {},
        )
