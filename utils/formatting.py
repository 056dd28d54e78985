"""Text formatting helpers."""


def truncate(text: str, max_length: int = 1024) -> str:
    """Truncate text to max_length, adding ellipsis if needed."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
