"""Input validation utilities."""

from typing import Any, List


class ValidationError(Exception):
    """Validation error."""
    pass


class ConfigurationError(ValidationError):
    """Invalid engine configuration, raised at construction time."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))


def validate_chat_id(chat_id: Any) -> bool:
    """Validate a conversation identifier."""
    return isinstance(chat_id, str) and bool(chat_id.strip())


def content_to_text(content: Any) -> str:
    """Flatten chat-layer content (plain text or a list of blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
        return "\n".join(parts)
    return str(content)
