import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse, Response

from avatar_studio.api.schemas import AvatarCreate, AvatarUpdate, GenerationCreate, SettlementCreate
from avatar_studio.config.loader import ServiceConfig, default_service_config
from avatar_studio.core.errors import AccountNotFound, ErrorCode, GenerationFailed, MeteringError
from avatar_studio.core.orchestrator import GenerationOrchestrator, GenerationRequest, build_orchestrator
from avatar_studio.core.pricing import credits_for_payment
from avatar_studio.storage.models import Avatar, ContentKind, Generation, UsageLogEntry


logger = logging.getLogger(__name__)


ERROR_STATUS = {
    ErrorCode.INSUFFICIENT_FUNDS: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.ACCOUNT_NOT_FOUND: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.AVATAR_NOT_FOUND: status.HTTP_400_BAD_REQUEST,
    ErrorCode.GENERATION_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.LOG_WRITE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def generation_to_dict(generation: Generation) -> Dict[str, Any]:
    return {
        'id': generation.id,
        'accountId': generation.account_id,
        'avatarId': generation.avatar_id,
        'kind': generation.kind.value,
        'url': generation.url,
        'prompt': generation.prompt,
        'sceneDescription': generation.scene_description,
        'style': generation.style,
        'extraParams': generation.extra_params,
        'createdAt': generation.created_at.isoformat(),
    }


def avatar_to_dict(avatar: Avatar) -> Dict[str, Any]:
    return {
        'id': avatar.id,
        'accountId': avatar.account_id,
        'name': avatar.name,
        'style': avatar.style,
        'description': avatar.description,
        'gender': avatar.gender,
        'ethnicity': avatar.ethnicity,
        'age': avatar.age,
        'bodyType': avatar.body_type,
        'hairStyle': avatar.hair_style,
        'hairColor': avatar.hair_color,
        'eyeColor': avatar.eye_color,
        'fashionStyle': avatar.fashion_style,
        'primaryImageUrl': avatar.primary_image_url,
        'createdAt': avatar.created_at.isoformat(),
        'updatedAt': avatar.updated_at.isoformat(),
    }


def usage_entry_to_dict(entry: UsageLogEntry) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'accountId': entry.account_id,
        'action': entry.action,
        'creditsUsed': entry.credits_used,
        'detail': entry.detail,
        'requestId': entry.request_id,
        'createdAt': entry.created_at.isoformat(),
    }


def _error(status_code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    content = {'error': error}
    if detail is not None:
        content['detail'] = detail
    return JSONResponse(status_code=status_code, content=content)


def create_app(
    orchestrator: Optional[GenerationOrchestrator] = None,
    config: Optional[ServiceConfig] = None
) -> FastAPI:
    """Build the HTTP application around an orchestrator.

    Endpoints are plain (sync) functions: they run in the worker threadpool,
    so a client disconnect never interrupts a request between debit and
    settlement.
    """
    config = config or default_service_config()
    orchestrator = orchestrator or build_orchestrator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        orchestrator.shutdown()
        logger.info("Generator pool stopped")

    # app
    app = FastAPI(
        title='Avatar Studio API',
        description='Credit-metered avatar image and video generation',
        version='0.1.0',
        lifespan=lifespan
    )
    app.state.orchestrator = orchestrator
    app.state.config = config

    ledger = orchestrator.ledger
    artifacts = orchestrator.artifacts


    # MeteringError
    @app.exception_handler(MeteringError)
    async def metering_exception_handler(request: Request, exc: MeteringError):
        detail = exc.detail if isinstance(exc, GenerationFailed) else None
        if exc.code is ErrorCode.ACCOUNT_NOT_FOUND:
            logger.error(str(exc))
        return _error(ERROR_STATUS[exc.code], exc.code.value, detail)


    # malformed bodies and query strings
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        messages = []
        for err in exc.errors():
            location = '.'.join(str(part) for part in err.get('loc', ()))
            messages.append(f"{location}: {err.get('msg')}")
        return _error(status.HTTP_400_BAD_REQUEST, 'INVALID_REQUEST', '; '.join(messages))


    # health
    @app.get('/health')
    def check_alive():
        return {'message': 'alive'}


    # generations
    @app.post('/generations')
    def create_generation(body: GenerationCreate):
        try:
            generation_request = GenerationRequest.build(
                account_id=body.account_id,
                kind=body.kind,
                prompt=body.prompt,
                attributes=body.attributes,
                avatar_id=body.avatar_id,
                style=body.style,
                scene_description=body.scene_description,
                extra_params=body.extra_params,
            )
        except ValueError as e:
            return _error(status.HTTP_400_BAD_REQUEST, 'INVALID_REQUEST', str(e))

        result = orchestrator.generate(generation_request)
        return {
            'generation': generation_to_dict(result.generation),
            'creditsRemaining': result.credits_remaining,
        }


    @app.get('/generations')
    def list_generations(
        account_id: str = Query(alias='accountId', min_length=1),
        avatar_id: Optional[str] = Query(default=None, alias='avatarId'),
        kind: Optional[ContentKind] = Query(default=None)
    ):
        generations = orchestrator.list_generations(account_id, avatar_id=avatar_id, kind=kind)
        return [generation_to_dict(generation) for generation in generations]


    @app.delete('/generations/{generation_id}')
    def delete_generation(generation_id: str, account_id: Optional[str] = Query(default=None, alias='accountId')):
        if not orchestrator.delete_generation(generation_id, account_id=account_id):
            return _error(status.HTTP_404_NOT_FOUND, 'NOT_FOUND')
        return Response(status_code=status.HTTP_204_NO_CONTENT)


    # accounts
    @app.get('/accounts/{account_id}/balance')
    def get_balance(account_id: str):
        try:
            account = ledger.get_account(account_id)
        except AccountNotFound:
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.ACCOUNT_NOT_FOUND.value)
        return {'accountId': account.id, 'balance': account.balance, 'tier': account.tier.value}


    @app.get('/accounts/{account_id}/usage')
    def get_usage(account_id: str, limit: int = Query(default=100, ge=1, le=1000)):
        entries = orchestrator.usage.list_entries(account_id, limit=limit)
        return [usage_entry_to_dict(entry) for entry in entries]


    # avatars
    @app.post('/avatars', status_code=status.HTTP_201_CREATED)
    def create_avatar(body: AvatarCreate):
        try:
            ledger.get_account(body.account_id)
        except AccountNotFound:
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.ACCOUNT_NOT_FOUND.value)
        fields = body.model_dump(exclude={'account_id', 'name', 'style'}, exclude_none=True)
        avatar = artifacts.create_avatar(body.account_id, body.name, style=body.style, **fields)
        return avatar_to_dict(avatar)


    @app.get('/avatars')
    def list_avatars(account_id: str = Query(alias='accountId', min_length=1)):
        return [avatar_to_dict(avatar) for avatar in artifacts.list_avatars(account_id)]


    @app.get('/avatars/{avatar_id}')
    def get_avatar(avatar_id: str):
        avatar = artifacts.get_avatar(avatar_id)
        if avatar is None:
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.AVATAR_NOT_FOUND.value)
        return avatar_to_dict(avatar)


    @app.patch('/avatars/{avatar_id}')
    def update_avatar(avatar_id: str, body: AvatarUpdate):
        avatar = artifacts.update_avatar(avatar_id, **body.model_dump(exclude_unset=True))
        if avatar is None:
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.AVATAR_NOT_FOUND.value)
        return avatar_to_dict(avatar)


    @app.delete('/avatars/{avatar_id}')
    def delete_avatar(avatar_id: str):
        if not artifacts.delete_avatar(avatar_id):
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.AVATAR_NOT_FOUND.value)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


    # payment-to-credit settlement
    @app.post('/payments/settlements')
    def settle_payment(body: SettlementCreate):
        credits = credits_for_payment(body.amount_cents, config.payments.credits_per_usd)
        if credits == 0:
            return _error(status.HTTP_400_BAD_REQUEST, 'INVALID_REQUEST', 'payment too small to grant credits')
        try:
            applied = ledger.grant(body.account_id, credits, f"payment:{body.payment_id}")
        except AccountNotFound:
            return _error(status.HTTP_404_NOT_FOUND, ErrorCode.ACCOUNT_NOT_FOUND.value)
        return {
            'accountId': body.account_id,
            'paymentId': body.payment_id,
            'creditsGranted': credits if applied else 0,
            'alreadySettled': not applied,
            'balance': ledger.get_balance(body.account_id),
        }

    return app
