from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from avatar_studio.storage.models import ContentKind


class GenerationCreate(BaseModel):
    account_id: str = Field(alias='accountId', min_length=1, max_length=100)
    avatar_id: Optional[str] = Field(default=None, alias='avatarId', max_length=100)
    kind: ContentKind = ContentKind.IMAGE
    prompt: Optional[str] = Field(default=None, max_length=2000)
    attributes: Optional[Dict[str, Optional[str]]] = None
    style: Optional[str] = Field(default=None, max_length=100)
    scene_description: Optional[str] = Field(default=None, alias='sceneDescription', max_length=1000)
    extra_params: Dict[str, Any] = Field(default_factory=dict, alias='extraParams')

    # Default config override
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            'example': {
                'accountId': 'acct_123',
                'avatarId': 'f1d2c3b4-0000-4000-8000-000000000000',
                'kind': 'image',
                'attributes': {'gender': 'female', 'hairColor': 'red'},
                'style': 'anime',
            }
        }
    )

    @model_validator(mode='after')
    def check_prompt_source(self):
        if self.prompt is not None and self.attributes is not None:
            raise ValueError('prompt and attributes are mutually exclusive')
        if self.prompt is None and self.attributes is None:
            raise ValueError('one of prompt or attributes is required')
        return self


class AvatarCreate(BaseModel):
    account_id: str = Field(alias='accountId', min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=100)
    style: str = Field(default='realistic', min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    gender: Optional[str] = Field(default=None, max_length=50)
    ethnicity: Optional[str] = Field(default=None, max_length=50)
    age: Optional[str] = Field(default=None, max_length=50)
    body_type: Optional[str] = Field(default=None, alias='bodyType', max_length=50)
    hair_style: Optional[str] = Field(default=None, alias='hairStyle', max_length=50)
    hair_color: Optional[str] = Field(default=None, alias='hairColor', max_length=50)
    eye_color: Optional[str] = Field(default=None, alias='eyeColor', max_length=50)
    fashion_style: Optional[str] = Field(default=None, alias='fashionStyle', max_length=50)

    # Default config override
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            'example': {
                'accountId': 'acct_123',
                'name': 'Nova',
                'style': 'realistic',
                'gender': 'female',
                'hairStyle': 'long',
                'hairColor': 'red',
                'eyeColor': 'green',
            }
        }
    )


class AvatarUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    style: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    gender: Optional[str] = Field(default=None, max_length=50)
    ethnicity: Optional[str] = Field(default=None, max_length=50)
    age: Optional[str] = Field(default=None, max_length=50)
    body_type: Optional[str] = Field(default=None, alias='bodyType', max_length=50)
    hair_style: Optional[str] = Field(default=None, alias='hairStyle', max_length=50)
    hair_color: Optional[str] = Field(default=None, alias='hairColor', max_length=50)
    eye_color: Optional[str] = Field(default=None, alias='eyeColor', max_length=50)
    fashion_style: Optional[str] = Field(default=None, alias='fashionStyle', max_length=50)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode='after')
    def check_required_fields(self):
        for name in ('name', 'style'):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f'{name} cannot be null')
        return self


class SettlementCreate(BaseModel):
    account_id: str = Field(alias='accountId', min_length=1, max_length=100)
    payment_id: str = Field(alias='paymentId', min_length=1, max_length=200)
    amount_cents: int = Field(alias='amountCents', gt=0)

    # Default config override
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            'example': {
                'accountId': 'acct_123',
                'paymentId': 'pi_3Nxyz',
                'amountCents': 999,
            }
        }
    )
