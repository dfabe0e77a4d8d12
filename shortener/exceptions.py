"""Domain exceptions for the URL shortener."""

__all__ = [
    "ShortenerError",
    "CodeGenerationError",
    "PersistenceError",
    "RateLimitExceeded",
]


class ShortenerError(Exception):
    """Base class for all URL shortener errors."""


class CodeGenerationError(ShortenerError):
    """No unused short code was found within the attempt bound."""

    def __init__(self, attempts: int):
        super().__init__(f"Could not generate a unique short code after {attempts} attempts")
        self.attempts = attempts


class PersistenceError(ShortenerError):
    """Reading or writing the mapping snapshot failed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Snapshot {path}: {reason}")
        self.path = path
        self.reason = reason


class RateLimitExceeded(ShortenerError):
    """A caller exceeded its request allowance for the current window."""

    def __init__(self, key: str, retry_after: int):
        super().__init__(f"Rate limit exceeded for {key}. Retry after {retry_after} seconds.")
        self.key = key
        self.retry_after = retry_after
