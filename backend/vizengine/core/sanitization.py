"""
Sanitization of user supplied strings before they reach the logs.
"""
import re
from typing import Optional

_LINE_BREAKS = re.compile(r'[\r\n]')
_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f-\x9f]')


def sanitize_for_logging(value: Optional[str], max_length: int = 500) -> str:
    """
    Sanitize value for safe logging (prevents log injection).

    Args:
        value: Value to sanitize
        max_length: Maximum length

    Returns:
        Sanitized value safe for logging
    """
    if not value:
        return ""

    value = _LINE_BREAKS.sub(' ', str(value))
    value = _CONTROL_CHARS.sub('', value)

    if len(value) > max_length:
        value = value[:max_length] + "..."

    return value


def sanitize_query(query: Optional[str], max_length: int = 1000) -> Optional[str]:
    """Normalize a free-text chart query: strip control characters and collapse whitespace."""
    if query is None:
        return None
    cleaned = _CONTROL_CHARS.sub(' ', query)
    cleaned = re.sub(r'\s+', ' ', cleaned).strip()
    return cleaned[:max_length] or None
