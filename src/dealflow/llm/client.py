"""Anthropic client factory and model configuration."""

from anthropic import Anthropic

# Haiku for fast/cheap reply classification, Sonnet for term extraction
CLASSIFICATION_MODEL = "claude-haiku-4-5-20250929"
EXTRACTION_MODEL = "claude-sonnet-4-5-20250929"

# Number of most recent messages included as conversation context
HISTORY_WINDOW = 10


def get_anthropic_client(api_key: str | None = None, timeout: float | None = None) -> Anthropic:
    """Create an Anthropic client.

    Without *api_key* the Anthropic() constructor reads ANTHROPIC_API_KEY
    from the environment.  *timeout* bounds every request made by the client.

    Returns:
        Configured Anthropic client instance.
    """
    kwargs: dict[str, object] = {}
    if api_key:
        kwargs["api_key"] = api_key
    if timeout is not None:
        kwargs["timeout"] = timeout
    return Anthropic(**kwargs)  # type: ignore[arg-type]
