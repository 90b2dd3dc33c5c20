"""
Helpers for keeping credentials out of logs.
"""

from typing import Any, Dict

SENSITIVE_KEYS = {
    'api_key', 'apikey', 'secret', 'secret_key', 'password',
    'token', 'bot_token', 'access_token', 'authorization', 'credentials'
}


def mask_api_key(key: str) -> str:
    """
    Mask an API key or token for safe logging.

    Shows the first 8 and last 4 characters.

    Examples:
        >>> mask_api_key("sk-1234567890abcdefghijklmnopqrstuvwxyz")
        'sk-12345...wxyz'
        >>> mask_api_key("short")
        '***'
        >>> mask_api_key("")
        'None'
    """
    if not key:
        return "None"

    if len(key) <= 12:
        return "***"

    return f"{key[:8]}...{key[-4:]}"


def sanitize_for_log(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of a (nested) dict with sensitive values masked.

    Examples:
        >>> sanitize_for_log({"telegram": {"bot_token": "12345:abcdefghijklmnop", "chat_id": "42"}})
        {'telegram': {'bot_token': '12345:ab...mnop', 'chat_id': '42'}}
    """
    if not isinstance(data, dict):
        return data

    sanitized = {}
    for key, value in data.items():
        if key.lower() in SENSITIVE_KEYS:
            sanitized[key] = mask_api_key(value) if isinstance(value, str) else "***"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_for_log(value)
        elif isinstance(value, list):
            sanitized[key] = [sanitize_for_log(item) if isinstance(item, dict) else item for item in value]
        else:
            sanitized[key] = value
    return sanitized
