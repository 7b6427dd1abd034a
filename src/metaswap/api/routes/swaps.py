"""Relayer endpoints: digest computation, swap execution, balances."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from metaswap.config import get_settings
from metaswap.errors import AlreadyConsumed, BadSignature, Expired, SwapError, TransferFailed
from metaswap.ledger.database import get_db
from metaswap.ledger.repository import LedgerRepository
from metaswap.swap.factory import get_swap_executor
from metaswap.terms import UINT256_MAX, Digest, ExchangeTerms, normalize_address

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    BadSignature: status.HTTP_401_UNAUTHORIZED,
    AlreadyConsumed: status.HTTP_409_CONFLICT,
    Expired: status.HTTP_410_GONE,
    TransferFailed: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _validate_uint256(v: str) -> str:
    v = v.strip()
    if not v.isdigit():
        raise ValueError(f"Invalid amount format: {v}")
    if int(v) > UINT256_MAX:
        raise ValueError("Amount exceeds uint256")
    return str(int(v))


def _validate_address(v: str) -> str:
    return normalize_address(v.strip())


class TermsPayload(BaseModel):
    """Exchange terms as signed by the authorizer.

    Amounts are decimal strings; uint256 does not fit a JSON number.
    """

    asset_a: str = Field(..., description="Asset the authorizer gives")
    amount_a: str = Field(..., description="Amount of asset_a (uint256 decimal string)")
    asset_b: str = Field(..., description="Asset the authorizer receives")
    amount_b: str = Field(..., description="Amount of asset_b (uint256 decimal string)")
    deadline: int = Field(..., ge=0, description="Unix timestamp after which terms expire")

    @field_validator("asset_a", "asset_b")
    @classmethod
    def validate_asset(cls, v: str) -> str:
        """Normalize asset addresses to checksum form."""
        return _validate_address(v)

    @field_validator("amount_a", "amount_b")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Validate amount is a uint256 decimal string."""
        return _validate_uint256(v)

    def to_terms(self) -> ExchangeTerms:
        return ExchangeTerms(
            asset_a=self.asset_a,
            amount_a=int(self.amount_a),
            asset_b=self.asset_b,
            amount_b=int(self.amount_b),
            deadline=self.deadline,
        )


class ExecuteSwapRequest(BaseModel):
    """Request from a relayer to settle signed terms."""

    terms: TermsPayload
    signature: str = Field(..., description="65-byte r||s||v signature as hex")
    authorizer: str = Field(..., description="Address that signed the terms")
    caller: str = Field(..., description="Relayer address receiving asset_a")
    digest: Optional[str] = Field(None, description="Digest the relayer believes it holds")


class DigestResponse(BaseModel):
    digest: str
    terms: dict


class ReceiptResponse(BaseModel):
    success: bool
    digest: str
    terms: dict
    authorizer: str
    relayer: str
    executed_at: int


class SwapStatusResponse(BaseModel):
    digest: str
    consumed: bool
    receipt: Optional[dict] = None


class ReceiptListResponse(BaseModel):
    authorizer: str
    receipts: list[dict]


class BalanceResponse(BaseModel):
    asset: str
    holder: str
    amount: str


class MintRequest(BaseModel):
    """Credit units on a ledger (development only)."""

    asset: str
    holder: str
    amount: str

    @field_validator("asset", "holder")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _validate_address(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return _validate_uint256(v)


def _swap_error(e: SwapError) -> HTTPException:
    code = ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail={"code": e.code, "reason": e.reason})


@router.post("/digests", response_model=DigestResponse)
async def compute_digest(payload: TermsPayload):
    """Canonical digest an authorizer must sign for these terms."""
    terms = payload.to_terms()
    digest = get_swap_executor().digest_of(terms)
    return DigestResponse(digest=digest.hex, terms=terms.to_dict())


@router.post("/swaps/execute", response_model=ReceiptResponse)
async def execute_swap(request: ExecuteSwapRequest):
    """Settle signed terms. Any principal may relay."""
    executor = get_swap_executor()

    claimed = None
    if request.digest:
        try:
            claimed = Digest.from_hex(request.digest)
        except ValueError:
            logger.warning(f"Ignoring unparsable claimed digest {request.digest!r}")

    try:
        receipt = await executor.execute(
            request.terms.to_terms(),
            request.signature,
            authorizer=request.authorizer,
            caller=request.caller,
            claimed_digest=claimed,
        )
    except SwapError as e:
        raise _swap_error(e)

    return ReceiptResponse(success=True, **receipt.to_dict())


@router.get("/swaps/{digest}", response_model=SwapStatusResponse)
async def get_swap_status(digest: str):
    """Whether a digest has been consumed, with its receipt."""
    try:
        parsed = Digest.from_hex(digest)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid digest")

    store = get_swap_executor().store
    receipt = await store.get_receipt(parsed)
    consumed = receipt is not None or await store.has_been_consumed(parsed)
    return SwapStatusResponse(
        digest=parsed.hex,
        consumed=consumed,
        receipt=receipt.to_dict() if receipt else None,
    )


@router.get("/authorizers/{authorizer}/swaps", response_model=ReceiptListResponse)
async def list_authorizer_swaps(
    authorizer: str,
    limit: int = 20,
    offset: int = 0,
):
    """Settled swaps signed by an authorizer, newest first."""
    try:
        authorizer = normalize_address(authorizer)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if limit < 1 or limit > 100 or offset < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid page")

    receipts = await get_swap_executor().store.list_receipts(authorizer, limit=limit, offset=offset)
    return ReceiptListResponse(
        authorizer=authorizer,
        receipts=[receipt.to_dict() for receipt in receipts],
    )


@router.get("/balances/{asset}/{holder}", response_model=BalanceResponse)
async def get_balance(asset: str, holder: str):
    """Balance of holder on an asset ledger."""
    try:
        asset = normalize_address(asset)
        holder = normalize_address(holder)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    async with get_db() as session:
        amount = await LedgerRepository(session).balance_of(holder, asset)
    return BalanceResponse(asset=asset, holder=holder, amount=str(amount))


@router.post("/ledger/mint", response_model=BalanceResponse)
async def mint(request: MintRequest):
    """Credit units to a holder. Disabled unless minting is enabled."""
    if not get_settings().mint_enabled:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Minting is disabled")

    async with get_db() as session:
        balance = await LedgerRepository(session).credit_balance(
            request.holder, request.asset, int(request.amount)
        )
        amount = balance.amount

    logger.info(f"Minted {request.amount} of {request.asset} to {request.holder}")
    return BalanceResponse(asset=request.asset, holder=request.holder, amount=amount)
