"""
Sign-in models, verification outcomes and exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, Field


class AuthError(Exception):
    """Base authentication error."""
    pass


class InvalidFieldError(AuthError):
    """A message field is missing or malformed at build time."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name


class MalformedMessageError(AuthError):
    """Sign-in text does not follow the EIP-4361 grammar."""
    pass


class SignatureRecoveryError(AuthError):
    """No signer could be recovered from the signature."""
    pass


class NonceStoreError(AuthError):
    """Nonce backend is unreachable or misbehaving."""
    pass


class RejectReason(str, Enum):
    """Why a sign-in attempt was rejected."""
    MALFORMED_MESSAGE = "malformed_message"
    DOMAIN_MISMATCH = "domain_mismatch"
    CHAIN_MISMATCH = "chain_mismatch"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    SIGNATURE_INVALID = "signature_invalid"
    NONCE_REPLAY = "nonce_replay"


@dataclass(frozen=True)
class SiweMessage:
    """Structured EIP-4361 message.

    Timestamps are timezone-aware UTC datetimes. Built messages truncate them
    to whole seconds.
    """
    domain: str
    address: str
    uri: str
    chain_id: int
    nonce: str
    issued_at: datetime
    version: str = "1"
    statement: Optional[str] = None
    expiration_time: Optional[datetime] = None
    not_before: Optional[datetime] = None
    request_id: Optional[str] = None
    resources: Tuple[str, ...] = field(default_factory=tuple)

    def to_message(self) -> str:
        from .message import format_message

        return format_message(self)


@dataclass(frozen=True)
class Accepted:
    address: str
    chain_id: int

    @property
    def accepted(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return False


VerificationResult = Union[Accepted, Rejected]


class NonceResponse(BaseModel):
    """Response for nonce generation."""
    nonce: str
    expires_at: datetime


class MessageRequest(BaseModel):
    """Request for a server-prepared sign-in message."""
    address: str
    chain_id: Optional[int] = None
    statement: Optional[str] = None
    request_id: Optional[str] = None
    resources: list[str] = Field(default_factory=list)


class MessageResponse(BaseModel):
    """Canonical message text the wallet should sign."""
    message: str
    nonce: str
    issued_at: datetime
    expiration_time: Optional[datetime] = None


class VerifyRequest(BaseModel):
    """Request to verify a SIWE signature."""
    message: str
    signature: str
    address: Optional[str] = None


class VerifyResponse(BaseModel):
    """Successful verification."""
    status: str = "accepted"
    address: str
    chain_id: int


class RejectionResponse(BaseModel):
    """Body of a rejected verification."""
    status: str = "rejected"
    reason: RejectReason
    detail: str = ""
