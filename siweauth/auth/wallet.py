"""
Wallet collaborator and the client side of the sign-in flow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct

from .message import create_message, format_message


logger = structlog.stdlib.get_logger(__name__)


class Wallet(ABC):
    """Whatever holds the user's key: a browser extension, a mobile app, a local key."""

    @abstractmethod
    async def get_address(self) -> str:
        ...

    @abstractmethod
    async def get_chain_id(self) -> int:
        ...

    @abstractmethod
    async def sign_message(self, data: bytes) -> str:
        """Sign ``data`` with EIP-191 personal_sign and return 0x-prefixed hex."""


class LocalAccountWallet(Wallet):
    """Wallet backed by a private key held in process (CLI and tests)."""

    def __init__(self, private_key: str | bytes, chain_id: int = 1):
        self._account = Account.from_key(private_key)
        self._chain_id = chain_id

    @classmethod
    def generate(cls, chain_id: int = 1) -> "LocalAccountWallet":
        account = Account.create()
        return cls(account.key, chain_id=chain_id)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def private_key_hex(self) -> str:
        return "0x" + bytes(self._account.key).hex()

    async def get_address(self) -> str:
        return self.address

    async def get_chain_id(self) -> int:
        return self._chain_id

    async def sign_message(self, data: bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=data))
        return "0x" + bytes(signed.signature).hex()


@dataclass(frozen=True)
class SignInPayload:
    message: str
    signature: str
    address: str
    chain_id: int


async def sign_in(
    wallet: Wallet,
    *,
    domain: str,
    uri: str,
    nonce: str,
    statement: Optional[str] = None,
    issued_at: Optional[datetime] = None,
    expiration_time: Optional[datetime] = None,
    not_before: Optional[datetime] = None,
    request_id: Optional[str] = None,
    resources: Iterable[str] = (),
) -> SignInPayload:
    """
    Ask ``wallet`` for its account, build the message with a server-issued
    ``nonce`` and have the wallet sign it.
    """
    address = await wallet.get_address()
    chain_id = await wallet.get_chain_id()
    message = create_message(
        domain=domain,
        address=address,
        uri=uri,
        chain_id=chain_id,
        statement=statement,
        nonce=nonce,
        issued_at=issued_at,
        expiration_time=expiration_time,
        not_before=not_before,
        request_id=request_id,
        resources=resources,
    )
    text = format_message(message)
    signature = await wallet.sign_message(text.encode("utf-8"))
    logger.debug("siwe_message_signed", address=message.address, chain_id=chain_id, domain=domain)
    return SignInPayload(message=text, signature=signature, address=message.address, chain_id=chain_id)
