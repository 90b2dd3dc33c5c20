"""
DeepSeek Adapter

Supports: deepseek-chat, deepseek-reasoner
API: OpenAI-compatible chat completions at https://api.deepseek.com/v1

deepseek-reasoner returns its chain of thought in reasoning_content and
rejects sampling parameters, so temperature is only sent to chat models.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

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


class DeepSeekAdapter(LLMClient):
    """DeepSeek chat-completions client over requests"""

    BASE_URL = "https://api.deepseek.com/v1"
    RETRY_BACKOFF_SECONDS = 2.0

    def __init__(self, model: str, api_key: str, session: Optional[requests.Session] = None, **kwargs):
        super().__init__(model, api_key, **kwargs)
        self.base_url = (self.base_url or self.BASE_URL).rstrip("/")
        self.session = session or requests.Session()

    @property
    def provider_name(self) -> str:
        return "deepseek"

    @property
    def is_reasoner(self) -> bool:
        return "reasoner" in self.model

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a completion request.

        Only connection failures and timeouts are retried; an HTTP error
        status means the provider answered and is mapped straight to an
        LLMError subclass.
        """
        headers = {"Authorization": f"Bearer {self.api_key}"}
        url = f"{self.base_url}/chat/completions"

        last_error: Optional[LLMError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(url, headers=headers, json=payload, timeout=self.timeout)
            except requests.exceptions.Timeout:
                last_error = self._error(ProviderTimeoutError, f"no response within {self.timeout}s")
            except requests.exceptions.RequestException as e:
                last_error = self._error(LLMError, f"request failed: {e}")
            else:
                return self._handle_response(response)

            logger.warning(f"DeepSeek attempt {attempt}/{self.max_retries} failed: {last_error}")
            if attempt < self.max_retries:
                time.sleep(self.RETRY_BACKOFF_SECONDS * attempt)

        raise last_error

    def _handle_response(self, response: requests.Response) -> Dict[str, Any]:
        if response.status_code == 200:
            try:
                return response.json()
            except ValueError as e:
                raise self._error(LLMError, f"malformed response body: {response.text[:200]}") from e

        body = response.text[:500]
        if response.status_code == 429:
            raise self._error(RateLimitError, f"rate limit exceeded: {body}")
        if response.status_code in (401, 403):
            raise self._error(AuthenticationError, f"authentication failed: {body}")
        if 400 <= response.status_code < 500:
            raise self._error(InvalidRequestError, f"HTTP {response.status_code}: {body}")
        raise self._error(LLMError, f"HTTP {response.status_code}: {body}")

    def generate(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        payload: Dict[str, Any] = {"model": self.model, "messages": self._chat_messages(messages)}
        if not self.is_reasoner:
            payload["temperature"] = self._normalize_temperature(temperature)
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        payload.update(kwargs)

        data = self._post(payload)

        choices = data.get("choices") or []
        if not choices:
            raise self._error(LLMError, "response contained no choices")

        message = choices[0].get("message") or {}
        usage = data.get("usage")
        return LLMResponse(
            content=(message.get("content") or "").strip(),
            model=data.get("model", self.model),
            provider=self.provider_name,
            reasoning=message.get("reasoning_content") or "",
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0)
            } if usage else None,
            raw_response=data
        )


LLMClientFactory.register_provider("deepseek", DeepSeekAdapter)
