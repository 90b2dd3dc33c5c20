"""
Configuration module for AutoTrader-LLM.

Provides:
- Configuration schema (Config and its sections)
- Loaders with environment variable expansion and validation
"""

from .config_schema import Config, parse_clock, parse_duration
from .loader import load_config, save_config

__all__ = [
    'Config',
    'load_config',
    'save_config',
    'parse_clock',
    'parse_duration',
]
