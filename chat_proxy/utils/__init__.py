from typing import Optional


def clip(text: Optional[str], limit: int = 200) -> str:
    """Shorten text for log previews."""
    if not text:
        return ""
    return text if len(text) <= limit else f"{text[:limit]}..."
