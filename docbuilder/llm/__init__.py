"""Hosted LLM access.

Modules:
    provider         - request/response dataclasses and the provider interface
    openai_provider  - OpenAI-compatible chat completions (OpenRouter)
    gateway          - single-call complete() used by the rest of the app
"""
