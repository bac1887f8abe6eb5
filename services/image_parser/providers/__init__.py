"""Vision provider implementations.

This module provides a unified interface over the external vision models.
"""
from services.image_parser.providers.base import ImagePayload, Provider, sniff_mime_type
from services.image_parser.providers.gemini import GeminiProvider
from services.image_parser.providers.openrouter import OpenRouterProvider, find_json_object
from services.image_parser.providers.fake import FakeProvider

__all__ = [
    # Base classes and types
    "Provider",
    "ImagePayload",
    "sniff_mime_type",
    "find_json_object",
    # Provider implementations
    "GeminiProvider",
    "OpenRouterProvider",
    "FakeProvider",
]
