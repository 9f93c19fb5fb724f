"""LLM client, error classification and JSON recovery."""

from .client import (
    CompletionClient,
    CompletionResult,
    LLMSettings,
    OllamaCompletionClient,
    create_llm_client,
)
from .errors import AICompletionError, classify_ai_error
from .json_recovery import JsonRecovery, recover_broken_json

__all__ = [
    "AICompletionError",
    "CompletionClient",
    "CompletionResult",
    "JsonRecovery",
    "LLMSettings",
    "OllamaCompletionClient",
    "classify_ai_error",
    "create_llm_client",
    "recover_broken_json",
]
