"""
Placeholder generation backend.

Returns stock placeholder URLs, for demos and local development.
"""

import time
import uuid
from typing import Optional

from .base import GeneratedContent, Generator
from ..storage.models import ContentKind

PLACEHOLDER_IMAGE_URL = "https://picsum.photos/seed/{seed}/{size}/{size}"
PLACEHOLDER_VIDEO_URL = "https://example.com/placeholder-video.mp4?seed={seed}"


class PlaceholderGenerator(Generator):
    """Generator that fabricates placeholder URLs, seeded per request."""

    def __init__(self, image_size: int = 1024, delay: float = 0.0):
        """
        Args:
            image_size: Edge length of placeholder images in pixels
            delay: Simulated processing time in seconds (videos take twice as long)
        """
        if image_size <= 0:
            raise ValueError("image_size must be > 0")
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.image_size = image_size
        self.delay = delay

    def generate(
        self,
        prompt: str,
        kind: ContentKind,
        timeout: float,
        seed: Optional[str] = None
    ) -> GeneratedContent:
        seed = seed or uuid.uuid4().hex
        if self.delay:
            time.sleep(self.delay * (2 if kind is ContentKind.VIDEO else 1))

        if kind is ContentKind.VIDEO:
            return GeneratedContent(url=PLACEHOLDER_VIDEO_URL.format(seed=seed))
        return GeneratedContent(url=PLACEHOLDER_IMAGE_URL.format(seed=seed, size=self.image_size))
