"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ContentKind(Enum):
    """Kinds of content a generation can produce."""
    IMAGE = "image"
    VIDEO = "video"


class SubscriptionTier(Enum):
    """Subscription tiers an account can hold."""
    FREE = "free"
    PREMIUM = "premium"
    ADMIN = "admin"


class LedgerEntryType(Enum):
    """Journal entry types recorded alongside balance mutations."""
    DEBIT = "debit"
    REFUND = "refund"
    GRANT = "grant"


# Avatar appearance fields in the order prompts describe them
APPEARANCE_FIELDS = (
    "gender",
    "ethnicity",
    "age",
    "body_type",
    "hair_style",
    "hair_color",
    "eye_color",
    "fashion_style",
)


@dataclass(frozen=True)
class Account:
    """A billable identity holding a credit balance."""
    id: str
    balance: int
    tier: SubscriptionTier
    initial_balance: int
    created_at: datetime


@dataclass(frozen=True)
class Avatar:
    """A persona owned by an account, with appearance attributes."""
    id: str
    account_id: str
    name: str
    style: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    gender: Optional[str] = None
    ethnicity: Optional[str] = None
    age: Optional[str] = None
    body_type: Optional[str] = None
    hair_style: Optional[str] = None
    hair_color: Optional[str] = None
    eye_color: Optional[str] = None
    fashion_style: Optional[str] = None
    primary_image_url: Optional[str] = None

    def appearance(self) -> Dict[str, str]:
        """Appearance attributes that are set, keyed by field name."""
        return {
            name: getattr(self, name)
            for name in APPEARANCE_FIELDS
            if getattr(self, name)
        }


@dataclass(frozen=True)
class Generation:
    """Immutable record of one generated artifact."""
    id: str
    account_id: str
    kind: ContentKind
    url: str
    prompt: str
    created_at: datetime
    avatar_id: Optional[str] = None
    scene_description: Optional[str] = None
    style: Optional[str] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)
    request_id: Optional[str] = None


@dataclass(frozen=True)
class UsageLogEntry:
    """Immutable record of a billed action.

    Append-only entries that form the audit trail reconciling against
    ledger balance changes. Once written, these records must never be modified.
    """
    account_id: str
    action: str
    credits_used: int
    detail: Dict[str, Any]
    request_id: str
    created_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class LedgerEntry:
    """Journal row written in the same transaction as a balance mutation."""
    account_id: str
    request_id: str
    entry_type: LedgerEntryType
    amount: int
    created_at: datetime
    id: Optional[int] = None
