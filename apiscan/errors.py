"""Exception types raised by apiscan components."""

from __future__ import annotations


class ApiscanError(RuntimeError):
    """Base class for apiscan failures."""


class ParseError(ApiscanError):
    """Raised by structural backends when a file cannot be parsed at all."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class UnsupportedLanguageError(ApiscanError):
    """Raised when no backend or plugin is registered for a language tag."""

    def __init__(self, language: str) -> None:
        super().__init__(f"Unsupported language: {language}")
        self.language = language


__all__ = ["ApiscanError", "ParseError", "UnsupportedLanguageError"]
