"""Security configuration constants for cardstream logging.

Keys listed here are redacted from structured log context so that host
credentials and user-authored card content never reach log sinks.
"""

# Comprehensive list of sensitive keys for sanitization
SENSITIVE_KEYS: set[str] = {
    # Authentication & Authorization
    "password",
    "secret",
    "token",
    "access_token",
    "refresh_token",
    "authorization",
    "auth_token",
    "api_key",
    "host_api_token",
    "bearer",
    "cookie",
    "set-cookie",
    "x-api-key",
    # User-authored content
    "description",
    "card_content",
    "user_input",
    "children",
}

# Substrings that mark a key as sensitive regardless of prefix/suffix
SENSITIVE_SUBSTRINGS: tuple[str, ...] = ("token", "secret", "password", "api_key")


def is_sensitive_key(key: str) -> bool:
    """Return True when a log context key must be redacted."""
    lowered = key.lower()
    if lowered in SENSITIVE_KEYS:
        return True
    return any(part in lowered for part in SENSITIVE_SUBSTRINGS)
