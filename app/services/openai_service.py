import asyncio
import logging
from typing import Optional, Protocol

import openai
from pydantic import BaseModel

from app.core.config import Settings, settings
from app.core.exceptions import ProviderError

logger = logging.getLogger("openai_service")

EMPTY_COMPLETION_REPLY = "I apologize, but I could not generate a response at this time."

FALLBACK_RESPONSES = {
    ProviderError.TIMEOUT: "Sorry, the response took too long. Please try again.",
    ProviderError.RATE_LIMITED: "Our AI service is currently busy. Please try again in a moment.",
    ProviderError.AUTH: "I'm experiencing some technical difficulties right now. Please contact support if the issue persists.",
    ProviderError.UNKNOWN: "I'm experiencing some technical difficulties right now. Please try again in a moment, or contact support if the issue persists.",
}


def fallback_response(kind: str) -> str:
    return FALLBACK_RESPONSES.get(kind, FALLBACK_RESPONSES[ProviderError.UNKNOWN])


class LLMCompletion(BaseModel):
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMProvider(Protocol):
    async def generate(self, system_prompt: str, user_message: str,
                       model: Optional[str] = None) -> LLMCompletion:
        """
        Raises:
            ProviderError: with ``kind`` timeout, auth, rate_limited or unknown
        """
        ...


def classify_error(error: Exception) -> str:
    if isinstance(error, (asyncio.TimeoutError, openai.APITimeoutError)):
        return ProviderError.TIMEOUT
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderError.AUTH
    if isinstance(error, openai.RateLimitError):
        return ProviderError.RATE_LIMITED
    return ProviderError.UNKNOWN


class OpenAIService:
    def __init__(self, config: Settings = settings):
        self.model = config.openai_model
        self.max_tokens = config.openai_max_tokens
        self.temperature = config.openai_temperature
        self.timeout = config.llm_timeout_seconds
        self.client: Optional[openai.AsyncOpenAI] = None
        if config.openai_api_key:
            self.client = openai.AsyncOpenAI(api_key=config.openai_api_key, timeout=self.timeout)
        else:
            logger.warning("OPENAI_API_KEY not set, chat replies will fall back to canned responses")

    async def generate(self, system_prompt: str, user_message: str,
                       model: Optional[str] = None) -> LLMCompletion:
        if self.client is None:
            raise ProviderError(ProviderError.AUTH, "OpenAI API key is not configured")
        model = model or self.model
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_message},
                    ],
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            kind = classify_error(e)
            logger.error(f"OpenAI API Error ({kind}): {e}")
            raise ProviderError(kind, f"OpenAI request failed: {kind}") from e

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage
        return LLMCompletion(
            content=(content or "").strip() or EMPTY_COMPLETION_REPLY,
            model=model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
        )
