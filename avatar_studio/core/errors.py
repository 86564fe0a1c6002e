"""
Error taxonomy for metered generation.

Every error carries a stable code that the HTTP layer and CLI report verbatim.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Stable error codes surfaced to callers."""
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    AVATAR_NOT_FOUND = "AVATAR_NOT_FOUND"
    GENERATION_FAILED = "GENERATION_FAILED"
    LOG_WRITE_FAILED = "LOG_WRITE_FAILED"


class MeteringError(Exception):
    """Base class for errors raised by the metered generation flow."""
    def __init__(self, message: str, code: ErrorCode):
        super().__init__(message)
        self.code = code


class InsufficientFunds(MeteringError):
    """Balance is below the cost of the request. Not retried."""
    def __init__(self, account_id: str, required: int, available: int):
        super().__init__(
            f"Not enough credits for account {account_id}. "
            f"Required: {required}, Available: {available}",
            ErrorCode.INSUFFICIENT_FUNDS
        )
        self.account_id = account_id
        self.required = required
        self.available = available


class AccountNotFound(MeteringError):
    """The account must exist before any ledger operation."""
    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}", ErrorCode.ACCOUNT_NOT_FOUND)
        self.account_id = account_id


class AvatarNotFound(MeteringError):
    """The avatar does not exist or belongs to another account."""
    def __init__(self, avatar_id: str):
        super().__init__(f"Avatar not found: {avatar_id}", ErrorCode.AVATAR_NOT_FOUND)
        self.avatar_id = avatar_id


class GenerationFailed(MeteringError):
    """The generator backend failed or timed out. Retryable by the caller."""
    def __init__(self, detail: str, state: Optional[Enum] = None):
        super().__init__(f"Generation failed: {detail}", ErrorCode.GENERATION_FAILED)
        self.detail = detail
        self.state = state


class LogWriteFailed(MeteringError):
    """Usage log entries could not be written after all retries."""
    def __init__(self, request_ids):
        super().__init__(
            f"Usage log writes pending for requests: {', '.join(request_ids)}",
            ErrorCode.LOG_WRITE_FAILED
        )
        self.request_ids = list(request_ids)
