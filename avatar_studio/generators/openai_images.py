"""
OpenAI image generation backend.

Wraps the OpenAI Images API behind the Generator interface.
"""

import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from .base import GeneratedContent, Generator
from ..core.errors import GenerationFailed
from ..storage.models import ContentKind

logger = logging.getLogger(__name__)


class OpenAIImageGenerator(Generator):
    """Image generator backed by the OpenAI Images API.
    
    All backend failures surface as GenerationFailed so the caller can
    refund the request.
    """
    
    def __init__(self, model: str = "dall-e-3", size: str = "1024x1024", quality: Optional[str] = None):
        """Initialize the OpenAI image generator.
        
        Args:
            model: OpenAI image model name
            size: Image size, e.g. "1024x1024"
            quality: Optional quality setting passed through to the API
            
        Raises:
            ValueError: If model or size is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not size or not size.strip():
            raise ValueError("size is required and cannot be empty")
        
        self.model = model
        self.size = size
        self.quality = quality
        self.client = OpenAI()
    
    def generate(
        self,
        prompt: str,
        kind: ContentKind,
        timeout: float,
        seed: Optional[str] = None
    ) -> GeneratedContent:
        """Generate one image and return its URL.
        
        Raises:
            GenerationFailed: On unsupported kind, API errors or a response
                without an image URL
        """
        if kind is not ContentKind.IMAGE:
            raise GenerationFailed(f"{kind.value} generation is not supported by {self.model}")
        
        params = {
            "model": self.model,
            "prompt": prompt,
            "size": self.size,
            "n": 1,
        }
        if self.quality:
            params["quality"] = self.quality
        
        try:
            response = self.client.images.generate(**params, timeout=timeout)
        except OpenAIError as e:
            logger.warning("OpenAI image generation failed: %s", e)
            raise GenerationFailed(str(e)) from e
        
        if not response.data or not getattr(response.data[0], "url", None):
            raise GenerationFailed("OpenAI response missing image URL")
        
        return GeneratedContent(url=response.data[0].url)
