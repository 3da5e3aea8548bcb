"""
errors.py -- Errors raised by the title subsystem.
"""


class GenerationError(Exception):
    """A single text-generation call failed."""


class UnsupportedLanguageError(GenerationError):
    """The text generator rejected the prompt language."""


class PolicyLoadError(Exception):
    """The title policy document is missing or malformed. Fatal."""
