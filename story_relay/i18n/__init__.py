"""
Localized bot messages.
"""

from .locales import DEFAULT_LANGUAGE, LOCALES, SUPPORTED_LANGUAGES, get_message

__all__ = ["DEFAULT_LANGUAGE", "LOCALES", "SUPPORTED_LANGUAGES", "get_message"]
