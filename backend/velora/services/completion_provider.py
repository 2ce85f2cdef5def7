"""
Completion provider: streaming chat completions from an OpenAI-compatible API
"""
from typing import Dict, Any, List, Optional, AsyncIterator
from dataclasses import dataclass
import asyncio
import logging

from openai import AsyncOpenAI, OpenAIError

from velora.errors import ErrorKind, RelayError

logger = logging.getLogger(__name__)

# Rough tokens-per-word ratio used when the provider reports no usage.
TOKENS_PER_WORD = 1.3


def estimate_tokens(text: str) -> int:
    """
    Approximate token count: whitespace-split word count scaled by 1.3,
    rounded with Python's round(), so .5 ties go to the nearest even integer
    (5 words -> 6.5 -> 6).

    This is a stand-in for providers that do not report usage. It is not an
    exact count and must not be used as billing data.
    """
    return int(round(len(text.split()) * TOKENS_PER_WORD))


@dataclass
class CompletionResult:
    """Final outcome of one streamed completion."""
    full_text: str
    tokens: int
    model: str
    estimated: bool


class CompletionStream:
    """
    Async iterator over the text increments of one completion.

    Iterate it to the end, then call result() for the combined text, token
    count and model identifier.
    """

    def __init__(self, chunks: AsyncIterator[Any], model: str):
        self._chunks = chunks
        self._model = model
        self._parts: List[str] = []
        self._usage_tokens: Optional[int] = None
        self._finished = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            async for chunk in self._chunks:
                if getattr(chunk, "model", None):
                    self._model = chunk.model

                usage = getattr(chunk, "usage", None)
                if usage is not None and getattr(usage, "completion_tokens", None) is not None:
                    self._usage_tokens = usage.completion_tokens

                choices = getattr(chunk, "choices", None) or []
                delta = choices[0].delta.content if choices and choices[0].delta else None
                if delta:
                    self._parts.append(delta)
                    yield delta
        except OpenAIError as e:
            logger.error(f"❌ Completion stream failed after {len(self._parts)} increment(s): {str(e)}")
            raise RelayError(ErrorKind.UPSTREAM_FAILURE, f"Completion provider error: {str(e)}") from e
        self._finished = True

    def result(self) -> CompletionResult:
        if not self._finished:
            raise RuntimeError("Completion stream has not been fully consumed")

        full_text = "".join(self._parts)
        if self._usage_tokens is not None:
            return CompletionResult(full_text, self._usage_tokens, self._model, estimated=False)

        tokens = estimate_tokens(full_text)
        logger.debug(f"Provider reported no usage, estimated {tokens} tokens from word count")
        return CompletionResult(full_text, tokens, self._model, estimated=True)


class CompletionProvider:
    """Service for streaming chat completions"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        model: str = "llama-3.3-70b-versatile",
        temperature: float = 0.9,
        max_tokens: int = 1024,
        top_p: float = 1.0,
        timeout: Optional[float] = None,
        stream_usage: bool = True,
        client: Optional[AsyncOpenAI] = None
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.top_p = top_p
        self.timeout = timeout
        self.stream_usage = stream_usage
        self._client = client
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "CompletionProvider":
        return cls(
            api_key=settings.LLM_API_KEY,
            base_url=settings.LLM_BASE_URL,
            model=settings.LLM_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            top_p=settings.LLM_TOP_P,
            timeout=settings.LLM_TIMEOUT,
            stream_usage=settings.LLM_STREAM_USAGE,
        )

    async def get_client(self) -> AsyncOpenAI:
        """Create the API client on first use. Later calls reuse it."""
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                if not self.api_key:
                    raise RelayError(ErrorKind.UPSTREAM_FAILURE, "Completion provider API key is not configured")
                self._client = AsyncOpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout,
                )
                logger.info(f"✅ Completion client initialized (model={self.model})")
        return self._client

    async def stream_completion(self, messages: List[Dict[str, str]]) -> CompletionStream:
        """
        Start a streaming completion.

        Args:
            messages: Ordered list of {"role", "content"} dicts, system prompt first

        Returns:
            CompletionStream yielding text increments
        """
        client = await self.get_client()

        params: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
        }
        if self.stream_usage:
            params["stream_options"] = {"include_usage": True}

        try:
            chunks = await client.chat.completions.create(**params)
        except OpenAIError as e:
            logger.error(f"❌ Completion request failed: {str(e)}")
            raise RelayError(ErrorKind.UPSTREAM_FAILURE, f"Completion provider error: {str(e)}") from e

        return CompletionStream(chunks, self.model)
