"""Completion provider error classification."""

import json

from callsense.models.enums import AIErrorCode

# Substring signals, checked in order; first match wins
_MESSAGE_SIGNALS: list[tuple[AIErrorCode, tuple[str, ...]]] = [
    (AIErrorCode.RATE_LIMIT, ("rate limit", "rate_limit", "429", "too many requests", "overloaded")),
    (AIErrorCode.AUTH, ("401", "403", "unauthorized", "forbidden", "api key", "authentication")),
    (AIErrorCode.CONTENT_POLICY, ("content policy", "content_policy", "content_filter", "safety")),
    (AIErrorCode.PARSE, ("json", "parse", "decode")),
    (AIErrorCode.NETWORK, ("connection", "timed out", "timeout", "unreachable", "econnrefused")),
    (AIErrorCode.MODEL, ("model not found", "no such model", "model", "context length")),
]

TRANSIENT_CODES = frozenset({AIErrorCode.RATE_LIMIT, AIErrorCode.NETWORK})


class AICompletionError(Exception):
    """Classified failure of a completion call."""

    def __init__(self, code: AIErrorCode, message: str, call_point: str | None = None):
        super().__init__(message)
        self.code = code
        self.call_point = call_point

    def __str__(self) -> str:
        prefix = f"[{self.code.value}]"
        if self.call_point:
            prefix = f"{prefix} {self.call_point}:"
        return f"{prefix} {self.args[0]}"

    @property
    def transient(self) -> bool:
        return self.code in TRANSIENT_CODES


def classify_ai_error(error: BaseException) -> AIErrorCode:
    """Map a provider exception onto an AIErrorCode.

    Args:
        error: Exception raised by the provider client or response handling.

    Returns:
        The best matching error code, UNKNOWN if nothing matches.
    """
    if isinstance(error, AICompletionError):
        return error.code
    if isinstance(error, json.JSONDecodeError):
        return AIErrorCode.PARSE
    if isinstance(error, (ConnectionError, TimeoutError)):
        return AIErrorCode.NETWORK

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if status == 429:
        return AIErrorCode.RATE_LIMIT
    if status in (401, 403):
        return AIErrorCode.AUTH

    message = f"{type(error).__name__} {error}".lower()
    for code, signals in _MESSAGE_SIGNALS:
        if any(signal in message for signal in signals):
            return code
    return AIErrorCode.UNKNOWN
