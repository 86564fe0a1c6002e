"""
Generator interface.

Every backend takes a resolved prompt and returns the URL of the produced
content, or raises GenerationFailed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from avatar_studio.core.errors import GenerationFailed
from avatar_studio.storage.models import ContentKind


@dataclass(frozen=True)
class GeneratedContent:
    """Reference to content produced by a backend."""
    url: str


class Generator(ABC):
    """Opaque external content generator."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        kind: ContentKind,
        timeout: float,
        seed: Optional[str] = None
    ) -> GeneratedContent:
        """Produce content for a resolved prompt.

        Args:
            prompt: Resolved prompt text
            kind: Kind of content to produce
            timeout: Seconds the backend call may take
            seed: Optional per-request seed (the request id)

        Raises:
            GenerationFailed: If the backend fails
        """


class KindRouter(Generator):
    """Dispatches each content kind to its own backend."""

    def __init__(self, routes: Dict[ContentKind, Generator]):
        if not routes:
            raise ValueError("routes cannot be empty")
        self.routes = dict(routes)

    def generate(
        self,
        prompt: str,
        kind: ContentKind,
        timeout: float,
        seed: Optional[str] = None
    ) -> GeneratedContent:
        generator = self.routes.get(kind)
        if generator is None:
            raise GenerationFailed(f"no generator configured for {kind.value}")
        return generator.generate(prompt, kind, timeout, seed=seed)
