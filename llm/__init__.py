"""LLM client package."""

from .client import LLMClient, LLMError, LLMNotConfigured, extract_json  # noqa: F401

__all__ = ["LLMClient", "LLMError", "LLMNotConfigured", "extract_json"]
