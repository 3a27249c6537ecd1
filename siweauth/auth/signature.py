"""
Signature recovery schemes.

A scheme turns ``(message, signature)`` into the address that produced the
signature. The verifier only depends on this interface, so other account
families can be added as new schemes.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_hex_address, to_checksum_address

from .models import SignatureRecoveryError


_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


class SignatureScheme(ABC):
    name: str

    @abstractmethod
    def recover_address(self, message: str, signature: str) -> str:
        """Return the signer's normalized address or raise SignatureRecoveryError."""

    @abstractmethod
    def normalize_address(self, address: str) -> str:
        """Canonical form used for equality checks. Raises ValueError if invalid."""

    def addresses_match(self, left: str, right: str) -> bool:
        try:
            return self.normalize_address(left) == self.normalize_address(right)
        except ValueError:
            return False


class EthereumPersonalSignScheme(SignatureScheme):
    """
    EIP-191 ``personal_sign`` over secp256k1.

    The wallet signs ``"\\x19Ethereum Signed Message:\\n" + len(message) + message``;
    the 65-byte ``r || s || v`` signature carries the recovery id in ``v``
    (27/28 or 0/1).
    """

    name = "eip191"
    SIGNATURE_LENGTH = 65

    def recover_address(self, message: str, signature: str) -> str:
        signature_bytes = decode_hex_signature(signature)
        if len(signature_bytes) != self.SIGNATURE_LENGTH:
            raise SignatureRecoveryError(
                f"Expected {self.SIGNATURE_LENGTH}-byte signature, got {len(signature_bytes)}"
            )
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature_bytes)
        except Exception as exc:  # noqa: BLE001
            raise SignatureRecoveryError(f"Signature recovery failed: {exc}") from exc
        return to_checksum_address(recovered)

    def normalize_address(self, address: str) -> str:
        if not is_hex_address(address):
            raise ValueError(f"Invalid Ethereum address {address!r}")
        return to_checksum_address(address)


def decode_hex_signature(signature: str) -> bytes:
    candidate = (signature or "").strip()
    if candidate[:2] in ("0x", "0X"):
        candidate = candidate[2:]
    if not candidate:
        raise SignatureRecoveryError("Signature is empty")
    if not _HEX_RE.fullmatch(candidate):
        raise SignatureRecoveryError("Signature is not valid hex")
    try:
        return bytes.fromhex(candidate)
    except ValueError as exc:
        raise SignatureRecoveryError("Signature is not valid hex") from exc
