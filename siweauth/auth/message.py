"""
EIP-4361 message construction and parsing.

Canonical layout:
    <domain> wants you to sign in with your Ethereum account:
    <address>

    <statement>

    URI: <uri>
    Version: <version>
    Chain ID: <chain-id>
    Nonce: <nonce>
    Issued At: <timestamp>
    Expiration Time: <timestamp>
    Not Before: <timestamp>
    Request ID: <request-id>
    Resources:
    - <resource>

The statement line and every field after "Issued At" are omitted when absent.
Rendering and grammar parsing are done by the ``siwe`` package; this module
converts between its model and the immutable ``SiweMessage`` used here.
"""

from __future__ import annotations

import math
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import urlsplit

import siwe
import structlog
from eth_utils import is_checksum_address, is_hex_address, to_checksum_address
from pydantic import ValidationError

from .models import InvalidFieldError, MalformedMessageError, SiweMessage
from .nonce_store import NonceStore


logger = structlog.stdlib.get_logger(__name__)

SIWE_VERSION = "1"
NONCE_BYTES = 16
DEFAULT_NONCE_TTL_SECONDS = 600
MIN_MESSAGE_LINES = 8

_AUTHORITY_RE = re.compile(r"^(?:[^\s/?#@]+@)?[^\s/?#@]+$")
_NONCE_RE = re.compile(r"^[A-Za-z0-9]{8,}$")

# siwe reports validation errors under camelCase aliases
_FIELD_ALIASES = {
    "chainId": "chain_id",
    "issuedAt": "issued_at",
    "expirationTime": "expiration_time",
    "notBefore": "not_before",
    "requestId": "request_id",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_nonce() -> str:
    """128 bits from the OS CSPRNG, hex encoded (alphanumeric and URL-safe)."""
    return secrets.token_hex(NONCE_BYTES)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    candidate = value.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp {value!r} has no UTC offset")
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise ValueError(f"timestamp {value!r} is out of range") from exc


def format_message(message: SiweMessage) -> str:
    """Serialize a SiweMessage into its canonical signing text."""
    return _to_library(message).prepare_message()


def parse_message(text: str) -> SiweMessage:
    """
    Parse signing text back into a SiweMessage.

    The grammar is enforced by ``siwe.SiweMessage.from_message``. The one
    tolerated variation is the compact no-statement form (a single blank line
    before "URI:") that some wallet libraries emit.
    """
    if not text:
        raise MalformedMessageError("Empty sign-in message")
    lines = text.split("\n")
    if len(lines) < MIN_MESSAGE_LINES:
        raise MalformedMessageError("Sign-in message is truncated")
    if lines[2] == "" and lines[3].startswith("URI: "):
        lines.insert(3, "")

    try:
        parsed = siwe.SiweMessage.from_message("\n".join(lines))
    # the ABNF parser raises its own error types next to pydantic's
    except Exception as exc:  # noqa: BLE001
        raise MalformedMessageError("Sign-in message does not follow EIP-4361") from exc

    try:
        message = _from_library(parsed)
    except ValueError as exc:
        raise MalformedMessageError(str(exc)) from exc

    if message.version != SIWE_VERSION:
        raise MalformedMessageError(f"Unsupported version {message.version!r}")
    if message.chain_id < 1:
        raise MalformedMessageError("Chain ID must be a positive integer")
    if not is_checksum_address(message.address):
        raise MalformedMessageError("Address is not an EIP-55 checksummed address")
    if not _NONCE_RE.match(message.nonce):
        raise MalformedMessageError("Nonce must be at least 8 alphanumeric characters")
    if (
        message.expiration_time is not None
        and message.not_before is not None
        and message.not_before > message.expiration_time
    ):
        raise MalformedMessageError("Not Before is later than Expiration Time")
    return message


def create_message(
    *,
    domain: str,
    address: str,
    uri: str,
    chain_id: int,
    statement: Optional[str] = None,
    version: str = SIWE_VERSION,
    nonce: Optional[str] = None,
    issued_at: Optional[datetime] = None,
    expiration_time: Optional[datetime] = None,
    not_before: Optional[datetime] = None,
    request_id: Optional[str] = None,
    resources: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> SiweMessage:
    """Validate fields and assemble a SiweMessage without touching any store."""
    if not domain or not _AUTHORITY_RE.match(domain):
        raise InvalidFieldError("domain", "must be a non-empty RFC 3986 authority")
    if not uri or not _is_uri(uri):
        raise InvalidFieldError("uri", "must be an absolute URI")
    if not address or not is_hex_address(address):
        raise InvalidFieldError("address", "must be a 20-byte hex address")
    if version != SIWE_VERSION:
        raise InvalidFieldError("version", f"only version {SIWE_VERSION} is supported")
    if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id < 1:
        raise InvalidFieldError("chain_id", "must be a positive integer")

    if statement == "":
        statement = None
    if statement is not None:
        if "\n" in statement or "\r" in statement:
            raise InvalidFieldError("statement", "must be a single line")
        if statement.startswith("URI: "):
            raise InvalidFieldError("statement", "must not start with a URI label")

    if nonce is None:
        nonce = generate_nonce()
    elif not _NONCE_RE.match(nonce):
        raise InvalidFieldError("nonce", "must be at least 8 alphanumeric characters")

    if request_id == "":
        request_id = None
    if request_id is not None and ("\n" in request_id or "\r" in request_id):
        raise InvalidFieldError("request_id", "must be a single line")
    resource_list: Tuple[str, ...] = tuple(resources)
    for resource in resource_list:
        if not _is_uri(resource):
            raise InvalidFieldError("resources", f"{resource!r} is not an absolute URI")

    issued = _truncate(issued_at or now or utc_now(), "issued_at")
    expires = _truncate(expiration_time, "expiration_time") if expiration_time is not None else None
    valid_from = _truncate(not_before, "not_before") if not_before is not None else None
    if expires is not None and valid_from is not None and valid_from > expires:
        raise InvalidFieldError("not_before", "must not be later than expiration_time")

    draft = SiweMessage(
        domain=domain,
        address=to_checksum_address(address),
        statement=statement,
        uri=uri,
        version=version,
        chain_id=chain_id,
        nonce=nonce,
        issued_at=issued,
        expiration_time=expires,
        not_before=valid_from,
        request_id=request_id,
        resources=resource_list,
    )
    try:
        # round-trip through siwe so the stored fields match the signed text
        return _from_library(_to_library(draft))
    except ValidationError as exc:
        raise InvalidFieldError(_error_field(exc), "rejected by EIP-4361 validation") from exc


class MessageBuilder:
    """
    Builds canonical sign-in messages and registers their nonces.

    Each build issues exactly one nonce. Its TTL runs until the message's
    expiration time, or for ``default_ttl_seconds`` when the message does not
    expire.
    """

    def __init__(
        self,
        nonce_store: NonceStore,
        *,
        default_ttl_seconds: int = DEFAULT_NONCE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.nonce_store = nonce_store
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    async def build(self, **fields) -> Tuple[str, SiweMessage]:
        """
        Validate ``fields`` (see ``create_message``), register the nonce and
        return ``(canonical_text, message)``.
        """
        now = self._clock()
        message = create_message(now=now, **fields)
        ttl = self._nonce_ttl(message, now)
        await self.nonce_store.issue(message.nonce, ttl)
        logger.info(
            "siwe_message_built",
            domain=message.domain,
            address=message.address,
            chain_id=message.chain_id,
            nonce_ttl_seconds=ttl,
        )
        return format_message(message), message

    def _nonce_ttl(self, message: SiweMessage, now: datetime) -> int:
        if message.expiration_time is None:
            # the nonce must still be live once the message becomes valid
            if message.not_before is not None:
                lead = (message.not_before - now).total_seconds()
                if lead >= self.default_ttl_seconds:
                    raise InvalidFieldError(
                        "not_before",
                        f"must be less than {self.default_ttl_seconds}s away when the message does not expire",
                    )
            return self.default_ttl_seconds
        remaining = (message.expiration_time - now).total_seconds()
        if remaining <= 0:
            raise InvalidFieldError("expiration_time", "must be in the future")
        return max(1, math.ceil(remaining))


def _to_library(message: SiweMessage) -> siwe.SiweMessage:
    fields: Dict[str, Any] = {
        "domain": message.domain,
        "address": message.address,
        "uri": message.uri,
        "version": message.version,
        "chain_id": message.chain_id,
        "nonce": message.nonce,
        "issued_at": format_timestamp(message.issued_at),
    }
    if message.statement is not None:
        fields["statement"] = message.statement
    if message.expiration_time is not None:
        fields["expiration_time"] = format_timestamp(message.expiration_time)
    if message.not_before is not None:
        fields["not_before"] = format_timestamp(message.not_before)
    if message.request_id is not None:
        fields["request_id"] = message.request_id
    if message.resources:
        fields["resources"] = list(message.resources)
    return siwe.SiweMessage(**fields)


def _from_library(parsed: siwe.SiweMessage) -> SiweMessage:
    return SiweMessage(
        domain=parsed.domain,
        address=str(parsed.address),
        statement=parsed.statement or None,
        uri=str(parsed.uri),
        version=str(getattr(parsed.version, "value", parsed.version)),
        chain_id=int(parsed.chain_id),
        nonce=parsed.nonce,
        issued_at=parse_timestamp(str(parsed.issued_at)),
        expiration_time=_optional_timestamp(parsed.expiration_time),
        not_before=_optional_timestamp(parsed.not_before),
        request_id=parsed.request_id or None,
        resources=tuple(str(resource) for resource in parsed.resources or ()),
    )


def _optional_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return parse_timestamp(str(value))


def _error_field(exc: ValidationError) -> str:
    for error in exc.errors():
        loc = error.get("loc") or ()
        if loc:
            name = str(loc[0])
            return _FIELD_ALIASES.get(name, name)
    return "message"


def _is_uri(value: str) -> bool:
    if not value or any(ch.isspace() for ch in value):
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc or parts.path)


def _truncate(value: datetime, field_name: str) -> datetime:
    if value.tzinfo is None:
        raise InvalidFieldError(field_name, "must be timezone-aware")
    return value.astimezone(timezone.utc).replace(microsecond=0)
