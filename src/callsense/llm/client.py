"""Completion service: Ollama client configuration and the provider contract."""

from functools import lru_cache
from typing import Any, Optional, Protocol

import structlog
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import OllamaLLM
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from callsense.llm.errors import AICompletionError, classify_ai_error
from callsense.models.enums import AIErrorCode

logger = structlog.get_logger(__name__)


class LLMSettings(BaseSettings):
    """LLM configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    model_name: str = "gpt-oss:20b"
    temperature: float = 0.3
    request_timeout: int = 120
    num_ctx: int = 8192
    num_predict: int = 2048  # Max tokens to generate


class CompletionResult(BaseModel):
    """Wrapper for a completion response with metadata."""

    content: str
    model: str
    usage: dict[str, int] = Field(default_factory=dict)
    tool_uses: Optional[list[dict[str, Any]]] = None


class CompletionClient(Protocol):
    """Contract of the completion provider consumed by stage executors."""

    async def complete(
        self,
        prompt: str,
        *,
        system: str = "",
        max_tokens: int = 2048,
        temperature: float = 0.3,
        call_point: str = "pipeline",
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> CompletionResult:
        ...


@lru_cache
def get_llm_settings() -> LLMSettings:
    """Get cached LLM settings."""
    return LLMSettings()


def create_llm_client(
    settings: LLMSettings | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> OllamaLLM:
    """Create configured Ollama LLM client.

    Args:
        settings: Optional custom settings. Uses defaults if not provided.
        max_tokens: Override for the number of tokens to generate.
        temperature: Override for the sampling temperature.

    Returns:
        Configured OllamaLLM instance.
    """
    settings = settings or get_llm_settings()

    return OllamaLLM(
        model=settings.model_name,
        base_url=settings.ollama_base_url,
        temperature=settings.temperature if temperature is None else temperature,
        timeout=settings.request_timeout,
        num_ctx=settings.num_ctx,
        num_predict=max_tokens or settings.num_predict,
    )


_CHAT_PROMPT = ChatPromptTemplate.from_messages([
    ("system", "{system}"),
    ("human", "{prompt}"),
])


class OllamaCompletionClient:
    """CompletionClient backed by a local Ollama model through LangChain.

    Transient failures (rate limit, network) are retried with exponential
    backoff, up to ``max_retries`` additional attempts. Everything else is
    classified and raised as AICompletionError on the first failure.
    """

    def __init__(self, settings: LLMSettings | None = None, max_retries: int = 2):
        self.settings = settings or get_llm_settings()
        self.max_retries = max_retries

    async def complete(
        self,
        prompt: str,
        *,
        system: str = "",
        max_tokens: int = 2048,
        temperature: float = 0.3,
        call_point: str = "pipeline",
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> CompletionResult:
        llm = create_llm_client(self.settings, max_tokens=max_tokens, temperature=temperature)
        chain = _CHAT_PROMPT | llm | StrOutputParser()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(lambda e: isinstance(e, AICompletionError) and e.transient),
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                try:
                    content = await chain.ainvoke({"system": system, "prompt": prompt})
                except Exception as e:
                    code = classify_ai_error(e)
                    logger.warning(
                        "completion_failed",
                        call_point=call_point,
                        code=code.value,
                        attempt=attempt.retry_state.attempt_number,
                        error=str(e),
                    )
                    raise AICompletionError(code, str(e), call_point=call_point) from e

        if not content or not content.strip():
            raise AICompletionError(AIErrorCode.MODEL, "empty model response", call_point=call_point)

        logger.debug("completion_success", call_point=call_point, model=self.settings.model_name, length=len(content))
        return CompletionResult(
            content=content,
            model=self.settings.model_name,
            usage={"input_chars": len(system) + len(prompt), "output_chars": len(content)},
        )
