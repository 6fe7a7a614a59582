def redact_identifier(identifier: str | None, visible_chars: int = 4) -> str:
    """
    Redact a subject identifier for logging purposes.
    Shows the first few characters followed by ***.
    """
    if not identifier:
        return "None"
    if len(identifier) <= visible_chars:
        return f"{identifier[:1]}***"
    return f"{identifier[:visible_chars]}***"
