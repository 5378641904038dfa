TITLE_LIMIT = 50
PROVIDER_RESULT_LIMIT = 30_000
DISPLAY_RESULT_LIMIT = 500

TRUNCATION_MARKER = "\n... [truncated]"


def derive_title(text: str, limit: int = TITLE_LIMIT) -> str:
    text = text.strip()
    return text[:limit] + "..." if len(text) > limit else text


def truncate_for_provider(result: str, limit: int = PROVIDER_RESULT_LIMIT) -> str:
    """Cap a tool result before it is handed back to the model."""
    if len(result) <= limit:
        return result
    return result[:limit] + TRUNCATION_MARKER


def truncate_for_display(result: str, limit: int = DISPLAY_RESULT_LIMIT) -> str:
    """Cap the persisted copy of a tool result, noting the original length."""
    if len(result) <= limit:
        return result
    return f"{result[:limit]}\n... ({len(result)} chars total)"

