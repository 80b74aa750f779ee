#!/usr/bin/env python3
"""LLM gateway: one system/user prompt pair in, raw response text out.

Every LLM call in the application goes through LLMGateway.complete():
  - field extraction for the document builder
  - chat with selected documents
  - one call per checklist item during assessments
  - the raw /api/llm/query pass-through

Single request per call. No retry, no backoff, no streaming. Upstream
non-2xx responses surface as LLMGatewayError carrying the upstream status.

Usage:
    python -m docbuilder.llm.gateway --prompt "Say hello" [--system "..."] [--model ...] --json
"""

import argparse
import json
import logging
import sys
from typing import Optional

from docbuilder.config.settings import Settings, get_settings
from docbuilder.llm.provider import LLMProvider, LLMRequest, LLMResponse, ProviderError

logger = logging.getLogger("docbuilder.llm.gateway")


class LLMGatewayError(RuntimeError):
    """Raised when the hosted LLM call fails or cannot be made."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


class LLMGateway:
    """Thin wrapper binding a provider to the configured defaults."""

    def __init__(self, provider: LLMProvider, default_model: str,
                 default_max_tokens: int = 1024):
        self._provider = provider
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens

    @property
    def provider_name(self) -> str:
        return self._provider.provider_name

    def invoke(self, request: LLMRequest) -> LLMResponse:
        """Send a fully-built request. Fills in model / max_tokens defaults."""
        if not request.user_prompt:
            raise ValueError("User prompt is required")
        request.model = request.model or self.default_model
        request.max_tokens = request.max_tokens or self.default_max_tokens
        try:
            response = self._provider.invoke(request)
        except ProviderError as exc:
            logger.warning("LLM call failed (model=%s status=%s): %s",
                           request.model, exc.status_code, exc)
            raise LLMGatewayError(str(exc), exc.status_code) from exc
        logger.debug("LLM call ok model=%s in=%d out=%d %dms",
                     response.model_id, response.input_tokens,
                     response.output_tokens, response.duration_ms)
        return response

    def complete(self, user_prompt: str, system_prompt: Optional[str] = None,
                 model: Optional[str] = None, max_tokens: Optional[int] = None,
                 timeout: Optional[float] = None) -> str:
        """Return the text of a single chat completion."""
        request = LLMRequest(
            user_prompt=user_prompt,
            system_prompt=system_prompt or "",
            model=model or "",
            max_tokens=max_tokens or 0,
            timeout=timeout,
        )
        return self.invoke(request).content


def build_gateway(settings: Settings) -> LLMGateway:
    """Create a gateway for the configured OpenAI-compatible endpoint."""
    if not settings.llm_api_key:
        raise LLMGatewayError(
            "LLM API key not configured. Set OPENROUTER_API_KEY.", status_code=500
        )
    from docbuilder.llm.openai_provider import OpenAICompatibleProvider
    provider = OpenAICompatibleProvider(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        app_url=settings.app_url,
        app_title=settings.app_title,
    )
    return LLMGateway(provider, settings.llm_model, settings.llm_max_tokens)


_gateway: Optional[LLMGateway] = None


def get_gateway() -> LLMGateway:
    """Process-wide gateway, built from settings on first use."""
    global _gateway
    if _gateway is None:
        _gateway = build_gateway(get_settings())
    return _gateway


def set_gateway(gateway: Optional[LLMGateway]) -> None:
    """Install (or clear with None) the process-wide gateway."""
    global _gateway
    _gateway = gateway


def main():
    parser = argparse.ArgumentParser(description="Send one prompt to the LLM gateway")
    parser.add_argument("--prompt", required=True)
    parser.add_argument("--system", default=None)
    parser.add_argument("--model", default=None)
    parser.add_argument("--max-tokens", type=int, default=None)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    try:
        text = get_gateway().complete(args.prompt, system_prompt=args.system,
                                      model=args.model, max_tokens=args.max_tokens)
    except LLMGatewayError as exc:
        result = {"error": str(exc), "status_code": exc.status_code}
        print(json.dumps(result, indent=2) if args.json else f"ERROR: {exc}")
        sys.exit(1)

    print(json.dumps({"response": text}, indent=2) if args.json else text)


if __name__ == "__main__":
    main()
