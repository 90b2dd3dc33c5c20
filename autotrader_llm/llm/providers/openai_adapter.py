"""
OpenAI Adapter

Supports: GPT-4o family and any OpenAI-compatible endpoint via base_url.
"""

import logging
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from autotrader_llm.llm.llm_client import (
    AuthenticationError,
    InvalidRequestError,
    LLMClient,
    LLMClientFactory,
    LLMError,
    LLMMessage,
    LLMResponse,
    ProviderTimeoutError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

# Most specific first: APITimeoutError subclasses APIConnectionError
_ERROR_MAP = (
    (openai.APITimeoutError, ProviderTimeoutError),
    (openai.RateLimitError, RateLimitError),
    (openai.AuthenticationError, AuthenticationError),
    (openai.PermissionDeniedError, AuthenticationError),
    (openai.BadRequestError, InvalidRequestError),
    (openai.NotFoundError, InvalidRequestError),
)


class OpenAIAdapter(LLMClient):
    """OpenAI chat-completions client (retries handled by the SDK)"""

    def __init__(self, model: str, api_key: str, client: Optional[OpenAI] = None, **kwargs):
        super().__init__(model, api_key, **kwargs)
        self.client = client or OpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=self.max_retries
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _translate(self, error: openai.OpenAIError) -> LLMError:
        for sdk_error, ours in _ERROR_MAP:
            if isinstance(error, sdk_error):
                return self._error(ours, str(error))
        return self._error(LLMError, str(error))

    def generate(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": self._chat_messages(messages),
            "temperature": self._normalize_temperature(temperature),
        }
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        params.update(kwargs)

        try:
            response = self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            raise self._translate(e) from e

        if not response.choices:
            raise self._error(LLMError, "response contained no choices")

        usage = response.usage
        return LLMResponse(
            content=(response.choices[0].message.content or "").strip(),
            model=response.model or self.model,
            provider=self.provider_name,
            usage={
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens
            } if usage else None,
            raw_response=response
        )


LLMClientFactory.register_provider("openai", OpenAIAdapter)
