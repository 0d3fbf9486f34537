"""LLM provider abstraction via LiteLLM Router.

The knowledge core consumes two capabilities from a language-model provider:
fixed-dimension text embeddings and chat completion. Both are expressed by the
LLMProvider protocol and injected into every consumer; LiteLLMProvider is the
production implementation.

- Model groups: "embedding" (EMBEDDING_MODEL) and "reasoning" (COMPLETION_MODEL)
- Transient provider failures are retried with exponential backoff (tenacity)
- Every failure surfaces as ProviderError
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import litellm
import structlog
from litellm import Router
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.app.config import Settings, get_settings
from src.app.core.monitoring import track_provider_call
from src.knowledge.errors import ProviderError

logger = structlog.get_logger(__name__)

EMBEDDING_GROUP = "embedding"
REASONING_GROUP = "reasoning"

# Failures worth another attempt; auth and bad-request errors are not
_TRANSIENT_ERRORS = (
    litellm.RateLimitError,
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


@runtime_checkable
class LLMProvider(Protocol):
    """Embedding and completion capability."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, all of the same dimension."""
        ...

    async def complete(self, messages: list[dict]) -> str:
        """Return the assistant message content for a chat transcript."""
        ...


# ── LiteLLM implementation ───────────────────────────────────────────────────


class LiteLLMProvider:
    """LLMProvider backed by a LiteLLM Router.

    The router itself does not retry (num_retries=0); retries happen in the
    tenacity-decorated helpers so backoff and the transient-error filter are
    explicit.
    """

    def __init__(self, settings: Settings | None = None, router: Router | None = None) -> None:
        settings = settings or get_settings()
        self._timeout = settings.LLM_TIMEOUT

        if router is not None:
            self.router = router
            return

        model_list = [
            {
                "model_name": EMBEDDING_GROUP,
                "litellm_params": {
                    "model": settings.EMBEDDING_MODEL,
                    "api_key": settings.OPENAI_API_KEY or None,
                },
            },
            {
                "model_name": REASONING_GROUP,
                "litellm_params": {
                    "model": settings.COMPLETION_MODEL,
                    "api_key": settings.OPENAI_API_KEY or None,
                },
            },
        ]
        if not settings.OPENAI_API_KEY:
            logger.warning("llm_api_key_missing", embedding_model=settings.EMBEDDING_MODEL)

        self.router = Router(
            model_list=model_list,
            num_retries=0,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts.

        Args:
            texts: Texts to embed. Empty strings are sent as-is.

        Returns:
            One vector per text, in input order.

        Raises:
            ProviderError: The provider failed after retries, or returned a
                response with the wrong shape.
        """
        if not texts:
            return []

        try:
            async with track_provider_call(EMBEDDING_GROUP, "embed"):
                response = await self._aembedding(texts)
        except Exception as exc:
            logger.error("embedding_failed", batch_size=len(texts), error=str(exc))
            raise ProviderError(f"embedding failed: {exc}") from exc

        items = sorted(response.data, key=lambda d: _field(d, "index"))
        vectors = [list(_field(d, "embedding")) for d in items]
        if len(vectors) != len(texts):
            raise ProviderError(f"expected {len(texts)} embeddings, got {len(vectors)}")
        if len({len(v) for v in vectors}) > 1:
            raise ProviderError("provider returned embeddings of mixed dimension")
        return vectors

    async def complete(self, messages: list[dict]) -> str:
        """Run a chat completion against the reasoning model group.

        Raises:
            ProviderError: The provider failed after retries.
        """
        try:
            async with track_provider_call(REASONING_GROUP, "complete"):
                response = await self._acompletion(messages)
        except Exception as exc:
            logger.error("completion_failed", error=str(exc))
            raise ProviderError(f"completion failed: {exc}") from exc

        return response.choices[0].message.content or ""

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _aembedding(self, texts: list[str]):
        return await self.router.aembedding(model=EMBEDDING_GROUP, input=texts)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _acompletion(self, messages: list[dict]):
        return await self.router.acompletion(model=REASONING_GROUP, messages=messages)


def _field(item, name: str):
    """Read a field from a LiteLLM response item (object or plain dict)."""
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


# ── Singleton ─────────────────────────────────────────────────────────────────

_llm_provider: LiteLLMProvider | None = None


def get_llm_provider() -> LiteLLMProvider:
    """Get or create the LiteLLM provider singleton."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = LiteLLMProvider()
    return _llm_provider
