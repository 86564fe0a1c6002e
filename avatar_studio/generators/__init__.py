"""
Generator adapters for Avatar Studio.

Backend-agnostic access to external image and video generation.
"""

from .base import GeneratedContent, Generator, KindRouter
from .openai_images import OpenAIImageGenerator
from .placeholder import PlaceholderGenerator

__all__ = [
    "GeneratedContent",
    "Generator",
    "KindRouter",
    "OpenAIImageGenerator",
    "PlaceholderGenerator",
]
