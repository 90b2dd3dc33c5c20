"""
LLM client interface used by the trader agent.

One chat-completion call per trading cycle; adapters translate provider
failures into the LLMError family so callers handle a single hierarchy.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

logger = logging.getLogger(__name__)


@dataclass
class LLMMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class LLMResponse:
    """
    Completion returned by a provider.

    content is the answer text; reasoning holds the separate chain of thought
    some reasoning models return alongside it (empty otherwise).
    """
    content: str
    model: str
    provider: str
    reasoning: str = ""
    usage: Optional[Dict[str, int]] = None  # prompt_tokens, completion_tokens, total_tokens
    raw_response: Optional[Any] = None


class LLMError(Exception):
    """Base exception for provider failures"""
    def __init__(self, message: str, provider: str, model: str):
        self.provider = provider
        self.model = model
        super().__init__(f"[{provider}/{model}] {message}")


class RateLimitError(LLMError):
    pass


class AuthenticationError(LLMError):
    pass


class InvalidRequestError(LLMError):
    """Provider rejected the request (4xx other than auth/rate limit)"""
    pass


class ProviderTimeoutError(LLMError):
    """Provider did not answer within the HTTP timeout"""
    pass


class LLMClient(ABC):
    """
    Abstract base class for provider adapters.

    Settings shared by every adapter (timeout, retries, base URL override)
    are read from keyword arguments so the factory can pass one config
    section to any provider.
    """

    DEFAULT_TIMEOUT = 120.0
    DEFAULT_MAX_RETRIES = 3

    def __init__(self, model: str, api_key: str, **kwargs):
        """
        Args:
            model: Model identifier (e.g. "deepseek-reasoner", "gpt-4o")
            api_key: Provider API key
            **kwargs: timeout, max_retries, base_url
        """
        if not api_key:
            raise AuthenticationError("API key not provided", self.provider_name, model)

        self.model = model
        self.api_key = api_key
        self.timeout = float(kwargs.get('timeout') or self.DEFAULT_TIMEOUT)
        self.max_retries = int(kwargs.get('max_retries') or self.DEFAULT_MAX_RETRIES)
        self.base_url = kwargs.get('base_url')

    @abstractmethod
    def generate(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Generate a completion from messages.

        Raises:
            LLMError: On provider errors (see subclasses for specific causes)
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @staticmethod
    def _normalize_temperature(temperature: float) -> float:
        """Clamp temperature to [0.0, 1.0]"""
        return max(0.0, min(1.0, temperature))

    @staticmethod
    def _chat_messages(messages: List[LLMMessage]) -> List[Dict[str, str]]:
        return [{"role": msg.role, "content": msg.content} for msg in messages]

    def _error(self, cls, message: str) -> LLMError:
        return cls(message, self.provider_name, self.model)


class LLMClientFactory:
    """
    Registry of provider adapters.

    Adapters register themselves when autotrader_llm.llm.providers is imported.
    """

    _registry: Dict[str, type] = {}

    @classmethod
    def register_provider(cls, provider_name: str, client_class: type):
        cls._registry[provider_name.lower()] = client_class
        logger.debug(f"Registered LLM provider: {provider_name}")

    @classmethod
    def available_providers(cls) -> List[str]:
        return sorted(cls._registry)

    @classmethod
    def create(cls, provider: str, model: str, api_key: str, **kwargs) -> LLMClient:
        """
        Create a client for a registered provider.

        Raises:
            ValueError: If the provider is not registered
        """
        client_class = cls._registry.get(provider.lower())
        if client_class is None:
            raise ValueError(
                f"Unsupported provider: {provider}. "
                f"Available providers: {', '.join(cls.available_providers())}"
            )

        logger.info(f"Creating LLM client: {provider}/{model}")
        return client_class(model=model, api_key=api_key, **kwargs)


def get_llm_client(provider: str, model: str, api_key: str, **kwargs) -> LLMClient:
    """Convenience function to create an LLM client"""
    return LLMClientFactory.create(provider, model, api_key, **kwargs)
