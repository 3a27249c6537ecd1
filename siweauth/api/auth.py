"""
Sign-In with Ethereum API endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, status

import structlog

from ..auth import (
    AuthService,
    get_auth_service,
    InvalidFieldError,
    NonceStoreError,
    Rejected,
)
from ..auth.models import (
    MessageRequest,
    MessageResponse,
    NonceResponse,
    RejectionResponse,
    VerifyRequest,
    VerifyResponse,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.stdlib.get_logger(__name__)


def _store_unavailable(exc: NonceStoreError) -> HTTPException:
    logger.error("nonce_store_error", error=str(exc))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Nonce store unavailable",
    )


@router.post("/nonce", response_model=NonceResponse)
async def get_nonce(
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Issue a single-use nonce for a client-built sign-in message.
    """
    try:
        result = await auth_service.issue_nonce()
    except NonceStoreError as e:
        raise _store_unavailable(e)
    return NonceResponse(nonce=result["nonce"], expires_at=result["expires_at"])


@router.post("/message", response_model=MessageResponse)
async def prepare_message(
    request: MessageRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Prepare the canonical message the wallet should sign.

    The message is bound to this service's domain and chain and expires
    together with its nonce.
    """
    try:
        text, message = await auth_service.prepare_message(
            request.address,
            chain_id=request.chain_id,
            statement=request.statement,
            request_id=request.request_id,
            resources=request.resources,
        )
    except InvalidFieldError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    except NonceStoreError as e:
        raise _store_unavailable(e)

    return MessageResponse(
        message=text,
        nonce=message.nonce,
        issued_at=message.issued_at,
        expiration_time=message.expiration_time,
    )


@router.post(
    "/verify",
    response_model=VerifyResponse,
    responses={status.HTTP_401_UNAUTHORIZED: {"model": RejectionResponse}},
)
async def verify_signature(
    request: VerifyRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Verify a signed sign-in message.

    Each message can be verified once. Any failure is final for that message;
    the client must fetch a new nonce and sign again.
    """
    try:
        result = await auth_service.verify_signature(
            message=request.message,
            signature=request.signature,
            claimed_address=request.address,
        )
    except NonceStoreError as e:
        raise _store_unavailable(e)

    if isinstance(result, Rejected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=RejectionResponse(reason=result.reason, detail=result.detail).model_dump(mode="json"),
        )

    return VerifyResponse(address=result.address, chain_id=result.chain_id)
