"""
Generation orchestration.

Turns a generation request into a billed, recorded and retrievable artifact.

State machine:
    REQUESTED -> DEBITED -> GENERATING -> COMPLETED
                                       -> REFUNDING -> REFUNDED
    REQUESTED -> REJECTED (insufficient funds)

The debit commits before the generator is called, and no lock or
transaction is held while the generator runs. Once debited, a request always
ends in COMPLETED or REFUNDED; the caller going away does not abort it.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional

from .errors import AvatarNotFound, GenerationFailed, InsufficientFunds
from .ledger import LedgerStore
from .pricing import credit_cost
from .prompts import AttributePrompt, PromptSpec, TextPrompt, resolve_prompt
from .usage import UsageRecorder
from avatar_studio.config.loader import GeneratorBackend, ServiceConfig
from avatar_studio.generators import (
    GeneratedContent,
    Generator,
    KindRouter,
    OpenAIImageGenerator,
    PlaceholderGenerator,
)
from avatar_studio.storage.models import Avatar, ContentKind, Generation
from avatar_studio.storage.repository import ArtifactRepository, UsageRepository, initialize_schema

logger = logging.getLogger(__name__)


class GenerationState(Enum):
    """Lifecycle states of a generation request."""
    REQUESTED = auto()
    DEBITED = auto()
    GENERATING = auto()
    COMPLETED = auto()
    REFUNDING = auto()
    REFUNDED = auto()
    REJECTED = auto()


@dataclass(frozen=True)
class GenerationRequest:
    """A single generation request. Not persisted."""
    account_id: str
    kind: ContentKind
    source: PromptSpec
    avatar_id: Optional[str] = None
    style: Optional[str] = None
    scene_description: Optional[str] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def build(
        cls,
        account_id: str,
        kind: ContentKind,
        prompt: Optional[str] = None,
        attributes: Optional[Mapping[str, Optional[str]]] = None,
        **kwargs: Any
    ) -> "GenerationRequest":
        """Build a request from loose fields, choosing the prompt variant.

        Raises:
            ValueError: Unless exactly one of prompt and attributes is given
        """
        if not account_id:
            raise ValueError("account_id is required")
        if prompt is not None and attributes is not None:
            raise ValueError("prompt and attributes are mutually exclusive")
        if prompt is not None:
            source: PromptSpec = TextPrompt(prompt)
        elif attributes is not None:
            source = AttributePrompt.from_mapping(attributes)
        else:
            raise ValueError("one of prompt or attributes is required")
        # Blank avatar ids mean no avatar
        if not kwargs.get("avatar_id"):
            kwargs["avatar_id"] = None
        return cls(account_id=account_id, kind=kind, source=source, **kwargs)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of a completed request."""
    generation: Generation
    credits_remaining: int
    state: GenerationState = GenerationState.COMPLETED


DEFAULT_TIMEOUTS = {
    ContentKind.IMAGE: 30.0,
    ContentKind.VIDEO: 120.0,
}


class GenerationOrchestrator:
    """Composes ledger, generator, artifact store and usage recorder.

    All collaborators are injected; the orchestrator holds no global clients.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        artifacts: ArtifactRepository,
        usage: UsageRecorder,
        generator: Generator,
        timeouts: Optional[Dict[ContentKind, float]] = None,
        max_workers: int = 8
    ):
        self.ledger = ledger
        self.artifacts = artifacts
        self.usage = usage
        self.generator = generator
        self.timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="generator")

    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run one request through debit, generation and settlement.

        Returns:
            GenerationResult with the stored generation and remaining credits

        Raises:
            AccountNotFound: If the account does not exist
            AvatarNotFound: If the avatar is missing or owned by another account
            InsufficientFunds: If the balance does not cover the cost
            GenerationFailed: If the generator failed or timed out; the debit
                has been refunded
        """
        self._transition(request, GenerationState.REQUESTED)
        cost = credit_cost(request.kind)
        avatar = self._owned_avatar(request)

        appearance = avatar.appearance() if avatar and isinstance(request.source, TextPrompt) else None
        prompt = resolve_prompt(
            request.source,
            style=request.style,
            scene_description=request.scene_description,
            avatar_appearance=appearance,
        )

        debit = self.ledger.try_debit(request.account_id, cost, request.request_id)
        if not debit.ok:
            self._transition(request, GenerationState.REJECTED)
            raise InsufficientFunds(request.account_id, cost, debit.new_balance)
        self._transition(request, GenerationState.DEBITED)

        self._transition(request, GenerationState.GENERATING)
        try:
            content = self._call_generator(prompt, request)
        except GenerationFailed as e:
            state = self._refund(request, cost)
            raise GenerationFailed(e.detail, state=state) from e

        try:
            generation = self.artifacts.create_generation(
                account_id=request.account_id,
                avatar_id=request.avatar_id,
                kind=request.kind,
                url=content.url,
                prompt=prompt,
                scene_description=request.scene_description,
                style=request.style,
                extra_params=request.extra_params,
                request_id=request.request_id,
            )
        except Exception:
            logger.exception("Failed to store generation for %s", request.request_id)
            self._refund(request, cost)
            raise

        self.usage.record(
            account_id=request.account_id,
            action=f"generate_{request.kind.value}",
            credits_used=cost,
            detail=self._usage_detail(generation),
            request_id=request.request_id,
        )

        if avatar is not None and request.kind is ContentKind.IMAGE:
            self.artifacts.update_avatar_primary_image(avatar.id, content.url)

        state = self._transition(request, GenerationState.COMPLETED)
        return GenerationResult(
            generation=generation,
            credits_remaining=self.ledger.get_balance(request.account_id),
            state=state,
        )

    def list_generations(
        self,
        account_id: str,
        avatar_id: Optional[str] = None,
        kind: Optional[ContentKind] = None
    ) -> List[Generation]:
        """Generations for an account, newest first."""
        return self.artifacts.list_generations(account_id, avatar_id=avatar_id, kind=kind)

    def delete_generation(self, generation_id: str, account_id: Optional[str] = None) -> bool:
        """Hard delete a generation.

        When ``account_id`` is given, generations owned by other accounts are
        treated as missing.

        Returns:
            True if a generation was deleted
        """
        generation = self.artifacts.get_generation(generation_id)
        if generation is None:
            return False
        if account_id is not None and generation.account_id != account_id:
            return False
        return self.artifacts.delete_generation(generation_id)

    def repair_usage_log(self, account_id: str) -> List[str]:
        """Write missing usage entries for completed generations.

        Covers entries whose background retries were exhausted or lost with
        the process.

        Returns:
            Request ids whose usage entry was written
        """
        report = self.ledger.reconcile(account_id)
        repaired = []
        for request_id in report.unmatched_debits:
            generation = self.artifacts.get_generation_by_request(request_id)
            if generation is None:
                continue
            entry_id = self.usage.record(
                account_id=generation.account_id,
                action=f"generate_{generation.kind.value}",
                credits_used=credit_cost(generation.kind),
                detail=self._usage_detail(generation),
                request_id=request_id,
            )
            if entry_id is not None:
                repaired.append(request_id)
        if repaired:
            logger.info("Restored %d usage entries for %s", len(repaired), account_id)
        return repaired

    def shutdown(self) -> None:
        """Stop the generator worker pool, letting running calls finish."""
        self._executor.shutdown(wait=True)

    def _owned_avatar(self, request: GenerationRequest) -> Optional[Avatar]:
        if not request.avatar_id:
            return None
        avatar = self.artifacts.get_avatar(request.avatar_id)
        if avatar is None or avatar.account_id != request.account_id:
            raise AvatarNotFound(request.avatar_id)
        return avatar

    def _call_generator(self, prompt: str, request: GenerationRequest) -> GeneratedContent:
        timeout = self.timeouts[request.kind]
        try:
            future = self._executor.submit(
                self.generator.generate, prompt, request.kind, timeout, request.request_id
            )
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise GenerationFailed(f"{request.kind.value} generation timed out after {timeout:g}s")
        except GenerationFailed:
            raise
        except Exception as e:
            logger.exception("Generator raised for %s", request.request_id)
            raise GenerationFailed(str(e) or type(e).__name__) from e

    def _refund(self, request: GenerationRequest, cost: int) -> GenerationState:
        self._transition(request, GenerationState.REFUNDING)
        self.ledger.refund(request.account_id, cost, request.request_id)
        return self._transition(request, GenerationState.REFUNDED)

    @staticmethod
    def _usage_detail(generation: Generation) -> Dict[str, Any]:
        return {
            "generation_id": generation.id,
            "prompt": generation.prompt,
            "style": generation.style,
            "avatar_id": generation.avatar_id,
            "scene_description": generation.scene_description,
            "extra_params": generation.extra_params,
        }

    @staticmethod
    def _transition(request: GenerationRequest, state: GenerationState) -> GenerationState:
        logger.info("Request %s (%s, %s): %s",
                    request.request_id, request.account_id, request.kind.value, state.name)
        return state


def build_generator(config: ServiceConfig) -> Generator:
    """Create the kind-routed generator described by the configuration.

    Raises:
        ValueError: If every backend is disabled
    """
    placeholder = PlaceholderGenerator()
    routes: Dict[ContentKind, Generator] = {}

    image_backend = config.generator.image_backend
    if image_backend is GeneratorBackend.OPENAI:
        routes[ContentKind.IMAGE] = OpenAIImageGenerator(
            model=config.generator.image_model,
            size=config.generator.image_size,
            quality=config.generator.image_quality,
        )
    elif image_backend is GeneratorBackend.PLACEHOLDER:
        routes[ContentKind.IMAGE] = placeholder

    if config.generator.video_backend is GeneratorBackend.PLACEHOLDER:
        routes[ContentKind.VIDEO] = placeholder

    return KindRouter(routes)


def build_orchestrator(config: ServiceConfig, generator: Optional[Generator] = None) -> GenerationOrchestrator:
    """Wire an orchestrator and its collaborators from configuration.

    Creates the database schema if needed.

    Args:
        config: Service configuration
        generator: Optional generator overriding the configured backends
    """
    db_path = config.database.path
    initialize_schema(db_path)

    retry = config.usage_log_retry
    usage = UsageRecorder(
        UsageRepository(db_path),
        max_retries=retry.max_retries,
        base_delay=retry.base_delay,
        max_delay=retry.max_delay,
    )
    return GenerationOrchestrator(
        ledger=LedgerStore(db_path),
        artifacts=ArtifactRepository(db_path),
        usage=usage,
        generator=generator or build_generator(config),
        timeouts={
            ContentKind.IMAGE: config.timeouts.image,
            ContentKind.VIDEO: config.timeouts.video,
        },
    )
