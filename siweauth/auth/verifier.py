"""
SIWE signature verification.

Checks run cheapest first: parse, domain, chain, time window, signature
recovery, then nonce consumption. The nonce is only consumed after the
signature checks out. Attacker-controlled input never raises; every failure
is returned as a ``Rejected`` outcome. ``NonceStoreError`` is the only
exception that escapes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import structlog

from .message import parse_message, utc_now
from .models import (
    Accepted,
    MalformedMessageError,
    RejectReason,
    Rejected,
    SignatureRecoveryError,
    SiweMessage,
    VerificationResult,
)
from .nonce_store import NonceStore
from .signature import EthereumPersonalSignScheme, SignatureScheme


logger = structlog.stdlib.get_logger(__name__)


class SignatureVerifier:
    def __init__(
        self,
        nonce_store: NonceStore,
        scheme: Optional[SignatureScheme] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.nonce_store = nonce_store
        self.scheme = scheme or EthereumPersonalSignScheme()
        self._clock = clock

    async def verify(
        self,
        message: str,
        signature: str,
        claimed_address: Optional[str] = None,
        *,
        expected_domain: str,
        expected_chain_id: int,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        """
        Verify ``signature`` over the canonical ``message`` text.

        ``claimed_address`` defaults to the address line of the message.
        """
        try:
            parsed = parse_message(message)
        except MalformedMessageError as exc:
            return self._reject(RejectReason.MALFORMED_MESSAGE, str(exc))

        rejection = self._check_claims(parsed, expected_domain, expected_chain_id, now or self._clock())
        if rejection is not None:
            return rejection

        claimed = claimed_address if claimed_address is not None else parsed.address
        if not self.scheme.addresses_match(claimed, parsed.address):
            return self._reject(
                RejectReason.SIGNATURE_INVALID,
                "Claimed address does not match the message address",
                nonce=parsed.nonce,
            )

        try:
            recovered = self.scheme.recover_address(message, signature)
        except SignatureRecoveryError as exc:
            return self._reject(RejectReason.SIGNATURE_INVALID, str(exc), nonce=parsed.nonce)

        if not self.scheme.addresses_match(recovered, parsed.address):
            return self._reject(
                RejectReason.SIGNATURE_INVALID,
                "Signature was not produced by the claimed address",
                nonce=parsed.nonce,
            )

        if not await self.nonce_store.consume_if_valid(parsed.nonce):
            return self._reject(
                RejectReason.NONCE_REPLAY,
                "Nonce is unknown, expired or already used",
                nonce=parsed.nonce,
            )

        logger.info(
            "siwe_verification_accepted",
            address=parsed.address,
            chain_id=parsed.chain_id,
            domain=parsed.domain,
        )
        return Accepted(address=parsed.address, chain_id=parsed.chain_id)

    def _check_claims(
        self,
        parsed: SiweMessage,
        expected_domain: str,
        expected_chain_id: int,
        now: datetime,
    ) -> Optional[Rejected]:
        if parsed.domain != expected_domain:
            return self._reject(
                RejectReason.DOMAIN_MISMATCH,
                f"Message is bound to {parsed.domain!r}",
                nonce=parsed.nonce,
            )
        if parsed.chain_id != expected_chain_id:
            return self._reject(
                RejectReason.CHAIN_MISMATCH,
                f"Message targets chain {parsed.chain_id}",
                nonce=parsed.nonce,
            )
        if parsed.expiration_time is not None and now >= parsed.expiration_time:
            return self._reject(RejectReason.EXPIRED, "Message has expired", nonce=parsed.nonce)
        if parsed.not_before is not None and now < parsed.not_before:
            return self._reject(RejectReason.NOT_YET_VALID, "Message is not yet valid", nonce=parsed.nonce)
        return None

    def _reject(self, reason: RejectReason, detail: str, nonce: Optional[str] = None) -> Rejected:
        logger.warning("siwe_verification_rejected", reason=reason.value, detail=detail, nonce=nonce)
        return Rejected(reason=reason, detail=detail)
