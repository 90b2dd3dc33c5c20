"""
LLM Provider Adapters

Imports all provider adapters to register them with the factory.
"""

from autotrader_llm.llm.providers.deepseek_adapter import DeepSeekAdapter
from autotrader_llm.llm.providers.openai_adapter import OpenAIAdapter

__all__ = ['DeepSeekAdapter', 'OpenAIAdapter']
