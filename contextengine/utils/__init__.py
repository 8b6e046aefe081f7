"""Utility functions and helpers.

- Logging configuration
- Input validation
- Content flattening
"""

from contextengine.utils.logging_config import setup_logging
from contextengine.utils.validation import (
    ValidationError,
    ConfigurationError,
    validate_chat_id,
    content_to_text,
)

__all__ = [
    # Logging
    "setup_logging",

    # Validation
    "ValidationError",
    "ConfigurationError",
    "validate_chat_id",
    "content_to_text",
]
