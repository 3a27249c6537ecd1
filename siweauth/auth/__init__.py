from .service import AuthService, get_auth_service
from .models import (
    AuthError,
    InvalidFieldError,
    MalformedMessageError,
    SignatureRecoveryError,
    NonceStoreError,
    RejectReason,
    SiweMessage,
    Accepted,
    Rejected,
    VerificationResult,
)
from .message import MessageBuilder, create_message, format_message, parse_message, generate_nonce
from .nonce_store import NonceStore, InMemoryNonceStore, RedisNonceStore, NonceSweeper
from .signature import SignatureScheme, EthereumPersonalSignScheme
from .verifier import SignatureVerifier
from .wallet import Wallet, LocalAccountWallet, SignInPayload, sign_in

__all__ = [
    "AuthService",
    "get_auth_service",
    "AuthError",
    "InvalidFieldError",
    "MalformedMessageError",
    "SignatureRecoveryError",
    "NonceStoreError",
    "RejectReason",
    "SiweMessage",
    "Accepted",
    "Rejected",
    "VerificationResult",
    "MessageBuilder",
    "create_message",
    "format_message",
    "parse_message",
    "generate_nonce",
    "NonceStore",
    "InMemoryNonceStore",
    "RedisNonceStore",
    "NonceSweeper",
    "SignatureScheme",
    "EthereumPersonalSignScheme",
    "SignatureVerifier",
    "Wallet",
    "LocalAccountWallet",
    "SignInPayload",
    "sign_in",
]
