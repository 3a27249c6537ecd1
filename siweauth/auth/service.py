"""
Authentication service for Sign-In with Ethereum.
"""

from datetime import timedelta
from typing import Iterable, Optional

import structlog

from ..config import Settings, settings as default_settings
from .message import MessageBuilder, generate_nonce, utc_now
from .models import InvalidFieldError, SiweMessage, VerificationResult
from .nonce_store import NonceStore, NonceSweeper, create_nonce_store
from .verifier import SignatureVerifier


logger = structlog.stdlib.get_logger(__name__)


class AuthService:
    """
    Sign-In with Ethereum service.

    Flow:
    1. Client asks for a nonce (POST /auth/nonce) and builds the message
       itself, or asks the server to prepare one (POST /auth/message)
    2. Client signs the message with its wallet
    3. Client sends message + signature to POST /auth/verify
    4. Server verifies domain, chain, time window, signer and nonce

    Issuing an application session after acceptance is left to the caller.
    """

    def __init__(
        self,
        nonce_store: Optional[NonceStore] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.nonce_store = nonce_store or create_nonce_store(self.settings)
        self.builder = MessageBuilder(
            self.nonce_store,
            default_ttl_seconds=self.settings.nonce_ttl_seconds,
        )
        self.verifier = SignatureVerifier(self.nonce_store)
        self.sweeper = NonceSweeper(
            self.nonce_store,
            interval_seconds=self.settings.nonce_sweep_interval_seconds,
        )

    async def issue_nonce(self) -> dict:
        """
        Issue a nonce for a client-built message.

        The nonce expires after ``nonce_ttl_seconds``.
        """
        nonce = generate_nonce()
        ttl = self.settings.nonce_ttl_seconds
        await self.nonce_store.issue(nonce, ttl)
        expires_at = utc_now() + timedelta(seconds=ttl)
        logger.info("siwe_nonce_issued", backend=self.nonce_store.name, ttl_seconds=ttl)
        return {"nonce": nonce, "expires_at": expires_at}

    async def prepare_message(
        self,
        address: str,
        chain_id: Optional[int] = None,
        statement: Optional[str] = None,
        request_id: Optional[str] = None,
        resources: Iterable[str] = (),
    ) -> tuple[str, SiweMessage]:
        """Build a server-side message bound to this service's domain and URI."""
        expected_chain_id = self.settings.siwe_chain_id
        if chain_id is not None and chain_id != expected_chain_id:
            raise InvalidFieldError("chain_id", f"only chain {expected_chain_id} is accepted")
        now = utc_now().replace(microsecond=0)
        return await self.builder.build(
            domain=self.settings.siwe_domain,
            address=address,
            uri=self.settings.siwe_uri,
            chain_id=expected_chain_id,
            statement=statement if statement is not None else self.settings.siwe_statement,
            issued_at=now,
            expiration_time=now + timedelta(seconds=self.settings.nonce_ttl_seconds),
            request_id=request_id,
            resources=resources,
        )

    async def verify_signature(
        self,
        message: str,
        signature: str,
        claimed_address: Optional[str] = None,
    ) -> VerificationResult:
        """Verify a signed message against this service's domain and chain."""
        return await self.verifier.verify(
            message,
            signature,
            claimed_address,
            expected_domain=self.settings.siwe_domain,
            expected_chain_id=self.settings.siwe_chain_id,
        )

    async def start(self) -> None:
        await self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.nonce_store.close()


# Singleton instance
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Get the singleton auth service instance."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def reset_auth_service() -> None:
    global _auth_service
    _auth_service = None
