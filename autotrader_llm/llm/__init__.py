"""
LLM abstraction layer.

Importing this package registers the bundled provider adapters.
"""

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
    get_llm_client,
)
from autotrader_llm.llm import providers  # noqa: F401

__all__ = [
    'LLMClient',
    'LLMClientFactory',
    'LLMMessage',
    'LLMResponse',
    'LLMError',
    'RateLimitError',
    'AuthenticationError',
    'InvalidRequestError',
    'ProviderTimeoutError',
    'get_llm_client',
]
