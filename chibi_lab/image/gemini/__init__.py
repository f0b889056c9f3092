"""Gemini-backed character and expression generation."""

from .adapter import GeminiImageBackend, create_gemini_backend
from .interfaces import (
    CHARACTER_FROM_TEXT,
    CHIBI_FROM_IMAGE,
    EXPRESSION,
    GenerationBackendProtocol,
    GenerationRequest,
    ImageValidation,
)

__all__ = [
    "CHARACTER_FROM_TEXT",
    "CHIBI_FROM_IMAGE",
    "EXPRESSION",
    "GeminiImageBackend",
    "GenerationBackendProtocol",
    "GenerationRequest",
    "ImageValidation",
    "create_gemini_backend",
]
