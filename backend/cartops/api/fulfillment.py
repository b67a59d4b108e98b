"""
CARTOPS - Cart Fulfillment API Routes
Cleaning reconciliation, bottle control and phase completion endpoints

RULES:
- Ledger and status are written before a response reports them
- Collaborator failures are recoverable: 502/503, the cart stays as it was
"""

import base64
import binascii
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status

from cartops.core.exceptions import (
    CartNotFoundError,
    CollaboratorError,
    FulfillmentError,
    PairNotFoundError,
    PersistenceError,
    PhaseTransitionError,
    RateLimitedError,
    SessionClosedError,
)
from cartops.models.bottles import MatchedBottle, SessionSnapshot
from cartops.models.cart import Cart, LedgerEntry, PhaseResult, ReconciliationResult
from cartops.models.requests import (
    CollectedRequest,
    FrameUploadRequest,
    ManualEntryRequest,
    TranscriptRequest,
)
from cartops.services.frames import Frame
from cartops.services.fulfillment.engine import FulfillmentEngine, fulfillment_engine

router = APIRouter(prefix="/carts", tags=["Cart Fulfillment"])


def get_engine() -> FulfillmentEngine:
    return fulfillment_engine


def raise_http(e: Exception) -> NoReturn:
    """Map engine errors to HTTP responses."""
    if isinstance(e, (CartNotFoundError, PairNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (PhaseTransitionError, SessionClosedError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, RateLimitedError):
        headers = {"Retry-After": str(int(e.retry_after_seconds))} if e.retry_after_seconds else None
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e), headers=headers)
    if isinstance(e, CollaboratorError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    if isinstance(e, PersistenceError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(e, ValueError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


# =============================================================================
# CART
# =============================================================================

@router.get("/{cart_id}", response_model=Cart)
async def get_cart(cart_id: str, refresh: bool = False, engine: FulfillmentEngine = Depends(get_engine)) -> Cart:
    """Load a cart (line items, ledger, status)."""
    try:
        return await engine.open_cart(cart_id, refresh=refresh)
    except FulfillmentError as e:
        raise_http(e)


@router.get("/{cart_id}/phase")
async def get_phase(cart_id: str, engine: FulfillmentEngine = Depends(get_engine)) -> dict:
    try:
        cart = await engine.open_cart(cart_id)
        phase = await engine.get_phase(cart_id)
    except FulfillmentError as e:
        raise_http(e)
    return {
        "cart_id": cart_id,
        "phase": phase.value,
        "status": cart.status.value,
        "ledger_is_clear": cart.ledger_is_clear,
        "expected_total": str(cart.expected_total),
        "missing_total": str(cart.missing_total),
    }


@router.post("/{cart_id}/phase/complete", response_model=PhaseResult)
async def complete_phase(cart_id: str, engine: FulfillmentEngine = Depends(get_engine)) -> PhaseResult:
    """
    Leave the current phase.

    cleaning -> bottle-control (alcohol on cart) or finished.
    bottle-control -> finished, closing the camera session first.
    """
    try:
        return await engine.complete_phase(cart_id)
    except FulfillmentError as e:
        raise_http(e)


# =============================================================================
# MISSING-ITEMS LEDGER
# =============================================================================

@router.post("/{cart_id}/cleaning/reconcile", response_model=ReconciliationResult)
async def reconcile_cleaning(
    cart_id: str,
    request: TranscriptRequest,
    engine: FulfillmentEngine = Depends(get_engine),
) -> ReconciliationResult:
    """Interpret what the operator said is present and update the ledger."""
    try:
        return await engine.start_cleaning_reconciliation(cart_id, request.transcript)
    except FulfillmentError as e:
        raise_http(e)


@router.post("/{cart_id}/cleaning/correction", response_model=list[LedgerEntry])
async def correct_ledger(
    cart_id: str,
    request: TranscriptRequest,
    engine: FulfillmentEngine = Depends(get_engine),
) -> list[LedgerEntry]:
    """Replace the ledger from a dictated correction (idempotent)."""
    try:
        return await engine.apply_correction(cart_id, request.transcript)
    except FulfillmentError as e:
        raise_http(e)


@router.post("/{cart_id}/missing", response_model=list[LedgerEntry])
async def add_missing(
    cart_id: str,
    request: ManualEntryRequest,
    engine: FulfillmentEngine = Depends(get_engine),
) -> list[LedgerEntry]:
    """Add to a product's missing quantity."""
    try:
        return await engine.apply_manual_missing_entry(cart_id, request.product_id, request.quantity)
    except (FulfillmentError, ValueError) as e:
        raise_http(e)


@router.delete("/{cart_id}/missing", response_model=list[LedgerEntry])
async def clear_missing(cart_id: str, engine: FulfillmentEngine = Depends(get_engine)) -> list[LedgerEntry]:
    """Empty the ledger. Allowed in every phase."""
    try:
        return await engine.clear_ledger(cart_id)
    except FulfillmentError as e:
        raise_http(e)


@router.post("/{cart_id}/missing/collected", response_model=list[LedgerEntry])
async def mark_collected(
    cart_id: str,
    request: CollectedRequest,
    engine: FulfillmentEngine = Depends(get_engine),
) -> list[LedgerEntry]:
    """Pick-and-pack: remove collected products from the ledger."""
    try:
        return await engine.mark_collected(cart_id, request.product_ids)
    except FulfillmentError as e:
        raise_http(e)


# =============================================================================
# BOTTLE CONTROL
# =============================================================================

@router.post("/{cart_id}/bottle-control/session", response_model=SessionSnapshot)
async def start_bottle_control(cart_id: str, engine: FulfillmentEngine = Depends(get_engine)) -> SessionSnapshot:
    """Open the bottle-control session (frames arrive via upload)."""
    try:
        session = await engine.start_bottle_control_session(cart_id)
    except FulfillmentError as e:
        raise_http(e)
    return session.snapshot()


@router.delete("/{cart_id}/bottle-control/session", status_code=status.HTTP_204_NO_CONTENT)
async def stop_bottle_control(cart_id: str, engine: FulfillmentEngine = Depends(get_engine)) -> None:
    """Close the session and release the camera. Idempotent."""
    await engine.stop_bottle_control_session(cart_id)


@router.get("/{cart_id}/bottle-control", response_model=SessionSnapshot)
async def get_bottle_control(cart_id: str, engine: FulfillmentEngine = Depends(get_engine)) -> SessionSnapshot:
    """Working set, pending pairs and stats."""
    try:
        return await engine.bottle_control_snapshot(cart_id)
    except FulfillmentError as e:
        raise_http(e)


@router.post("/{cart_id}/bottle-control/frames", response_model=SessionSnapshot)
async def submit_frame(
    cart_id: str,
    request: FrameUploadRequest,
    engine: FulfillmentEngine = Depends(get_engine),
) -> SessionSnapshot:
    """
    Submit one camera frame.

    Rate limited: a frame arriving inside the detection interval or during a
    cooldown is queued and the snapshot comes back with skipped=true.
    """
    encoded = request.image_base64
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="image_base64 is not valid base64")

    try:
        return await engine.submit_frame(cart_id, Frame(data=data, mime_type=request.mime_type))
    except FulfillmentError as e:
        raise_http(e)


@router.post("/{cart_id}/bottle-control/pairs/{pair_id}/merge", response_model=list[MatchedBottle])
async def merge_pair(
    cart_id: str,
    pair_id: str,
    engine: FulfillmentEngine = Depends(get_engine),
) -> list[MatchedBottle]:
    """Apply a proposed pair. Returns the updated working set."""
    try:
        return await engine.apply_bottle_pair_merge(cart_id, pair_id)
    except FulfillmentError as e:
        raise_http(e)
