"""
CARTOPS - Fulfillment Engine
Orchestrates cleaning reconciliation, bottle control and phase completion
for the carts an operator has open.

RULES:
- Each cart's ledger is owned by one engine context at a time
- Every ledger/status write is awaited BEFORE in-memory state changes
- A failed write leaves the context exactly as it was
"""

import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import AsyncIterator, Callable, Iterable, Optional

from cartops.core.exceptions import PhaseTransitionError, SessionClosedError
from cartops.models.bottles import MatchedBottle, SessionSnapshot
from cartops.models.cart import (
    Cart,
    CartLineItem,
    LedgerEntry,
    PhaseResult,
    ProcessPhase,
    ReconciliationResult,
    VoiceReport,
)
from cartops.services.frames import BufferedFrameSource, Frame, FrameSource
from cartops.services.fulfillment.bottle_session import BottleControlSession, Clock
from cartops.services.fulfillment.phase_fsm import CartPhaseMachine, cart_has_alcohol, is_alcohol_item
from cartops.services.fulfillment.reconciler import MissingItemReconciler, missing_item_reconciler
from cartops.services.persistence.repository import CartRepository

logger = logging.getLogger(__name__)


@dataclass
class CartContext:
    """Live state for one open cart."""
    cart: Cart
    machine: CartPhaseMachine
    session: Optional[BottleControlSession] = None


def find_discard_line_item(
    line_items: list[CartLineItem],
    bottle: MatchedBottle,
) -> Optional[CartLineItem]:
    """Cart line item a discarded bottle replaces: catalog id first, then brand/name."""
    catalog_id = bottle.catalog_type_id
    if catalog_id is None:
        return None

    for item in line_items:
        if item.catalog_bottle_id == catalog_id or item.product_id == catalog_id:
            return item

    catalog = bottle.catalog_bottle
    brand = (catalog.brand or "").lower().strip()
    name = (catalog.name or "").lower().strip()
    for item in line_items:
        if not is_alcohol_item(item):
            continue
        item_text = f"{item.product_name} {item.brand}".lower()
        if brand and brand in item_text:
            return item
        if name and name in item_text:
            return item
    return None


class FulfillmentEngine:
    """
    Outbound interface used by the API and orchestration.

    Collaborators are resolved lazily so importing the module never touches
    Firestore or Gemini.
    """

    def __init__(
        self,
        repository: Optional[CartRepository] = None,
        voice=None,
        vision=None,
        reconciler: Optional[MissingItemReconciler] = None,
        clock: Clock = time.monotonic,
        frame_source_factory: Callable[[], FrameSource] = BufferedFrameSource,
    ) -> None:
        self._repository = repository
        self._voice = voice
        self._vision = vision
        self.reconciler = reconciler or missing_item_reconciler
        self.clock = clock
        self.frame_source_factory = frame_source_factory
        self._contexts: dict[str, CartContext] = {}

    # =========================================================================
    # COLLABORATORS
    # =========================================================================

    @property
    def repository(self) -> CartRepository:
        if self._repository is None:
            from cartops.services.persistence import get_repository
            self._repository = get_repository()
        return self._repository

    @property
    def voice(self):
        if self._voice is None:
            from cartops.services.gemini.voice import voice_service
            self._voice = voice_service
        return self._voice

    @property
    def vision(self):
        if self._vision is None:
            from cartops.services.gemini.vision import vision_service
            self._vision = vision_service
        return self._vision

    # =========================================================================
    # CART CONTEXT
    # =========================================================================

    async def open_cart(self, cart_id: str, refresh: bool = False) -> Cart:
        """Load a cart into the engine. Raises CartNotFoundError."""
        ctx = self._contexts.get(cart_id)
        if ctx is not None and not refresh:
            return ctx.cart.model_copy(deep=True)

        if ctx is not None and ctx.session is not None:
            await ctx.session.close()

        cart = await self.repository.get_cart(cart_id)
        machine = CartPhaseMachine(
            cart_id=cart.cart_id,
            status=cart.status,
            has_alcohol=cart_has_alcohol(cart.line_items),
            repository=self.repository,
        )
        self._contexts[cart_id] = CartContext(cart=cart, machine=machine)
        logger.info(f"Opened cart {cart_id} in phase {machine.phase.value}")
        return cart.model_copy(deep=True)

    async def _context(self, cart_id: str) -> CartContext:
        if cart_id not in self._contexts:
            await self.open_cart(cart_id)
        return self._contexts[cart_id]

    async def get_phase(self, cart_id: str) -> ProcessPhase:
        return (await self._context(cart_id)).machine.phase

    async def _write_ledger(self, ctx: CartContext, ledger: list[LedgerEntry], reason: str) -> list[LedgerEntry]:
        await self.repository.save_ledger(ctx.cart.cart_id, ledger)
        ctx.cart = ctx.cart.model_copy(update={"ledger": ledger})
        logger.info(f"Cart {ctx.cart.cart_id}: ledger {reason} ({len(ledger)} entries)")
        return [entry.model_copy() for entry in ledger]

    # =========================================================================
    # CLEANING
    # =========================================================================

    async def start_cleaning_reconciliation(self, cart_id: str, transcript: str) -> ReconciliationResult:
        """Interpret a cleaning transcript and reconcile it into the ledger."""
        ctx = await self._context(cart_id)
        ctx.machine.require(ProcessPhase.CLEANING)

        report = await self.voice.interpret_report(transcript, ctx.cart.line_items)
        return await self.apply_report(cart_id, report)

    async def apply_report(self, cart_id: str, report: VoiceReport) -> ReconciliationResult:
        """Reconcile an already-interpreted report."""
        ctx = await self._context(cart_id)
        ctx.machine.require(ProcessPhase.CLEANING)

        ledger = self.reconciler.reconcile_from_report(ctx.cart.line_items, report.products, ctx.cart.ledger)
        ledger = await self._write_ledger(ctx, ledger, "reconciled")
        return ReconciliationResult(cart_id=cart_id, ledger=ledger, unknown=list(report.unknown))

    async def apply_correction(self, cart_id: str, transcript: str) -> list[LedgerEntry]:
        """Replace the ledger from a correction transcript."""
        ctx = await self._context(cart_id)
        ctx.machine.require(ProcessPhase.CLEANING, ProcessPhase.BOTTLE_CONTROL)

        corrected = await self.voice.interpret_correction(transcript, ctx.cart.line_items, ctx.cart.ledger)
        ledger = self.reconciler.apply_correction(ctx.cart.line_items, corrected)
        return await self._write_ledger(ctx, ledger, "corrected")

    async def apply_manual_missing_entry(self, cart_id: str, product_id: str, quantity: int) -> list[LedgerEntry]:
        """Add to one product's missing quantity. Raises ValueError for bad input."""
        ctx = await self._context(cart_id)
        ledger = self.reconciler.apply_manual_entry(ctx.cart.line_items, ctx.cart.ledger, product_id, quantity)
        return await self._write_ledger(ctx, ledger, f"manual +{quantity} {product_id}")

    async def clear_ledger(self, cart_id: str) -> list[LedgerEntry]:
        """Empty the ledger. Allowed in every phase."""
        ctx = await self._context(cart_id)
        return await self._write_ledger(ctx, self.reconciler.clear(), "cleared")

    async def mark_collected(self, cart_id: str, product_ids: Iterable[str]) -> list[LedgerEntry]:
        """Pick-and-pack: drop products the operator has collected."""
        ctx = await self._context(cart_id)
        ctx.machine.require(ProcessPhase.FINISHED)
        ledger = self.reconciler.mark_collected(ctx.cart.ledger, product_ids)
        return await self._write_ledger(ctx, ledger, "collected")

    # =========================================================================
    # BOTTLE CONTROL
    # =========================================================================

    async def start_bottle_control_session(
        self,
        cart_id: str,
        frame_source: Optional[FrameSource] = None,
    ) -> BottleControlSession:
        """Open (or return the already open) bottle-control session."""
        ctx = await self._context(cart_id)
        ctx.machine.require(ProcessPhase.BOTTLE_CONTROL)

        if ctx.session is not None and ctx.session.is_open:
            return ctx.session

        catalog = await self.repository.list_catalog()
        session = BottleControlSession(
            cart_id=cart_id,
            frame_source=frame_source or self.frame_source_factory(),
            catalog=catalog,
            vision=self.vision,
            on_discard=partial(self._record_discard, cart_id),
            clock=self.clock,
        )
        await session.open()
        ctx.session = session
        return session

    async def bottle_control_stream(
        self,
        cart_id: str,
        frame_source: Optional[FrameSource] = None,
    ) -> AsyncIterator[SessionSnapshot]:
        """Open a session and yield (working set, pending pairs) snapshots per tick."""
        session = await self.start_bottle_control_session(cart_id, frame_source)
        async for snapshot in session.stream():
            yield snapshot

    async def _session(self, cart_id: str) -> BottleControlSession:
        ctx = await self._context(cart_id)
        if ctx.session is None or not ctx.session.is_open:
            raise SessionClosedError(f"No bottle-control session open for cart {cart_id}")
        return ctx.session

    async def poll_bottle_control(self, cart_id: str) -> SessionSnapshot:
        return await (await self._session(cart_id)).poll()

    async def submit_frame(self, cart_id: str, frame: Frame) -> SessionSnapshot:
        """Push an uploaded frame into the session and poll once."""
        session = await self._session(cart_id)
        if not isinstance(session.frame_source, BufferedFrameSource):
            raise PhaseTransitionError(f"Cart {cart_id} session does not accept uploaded frames")
        session.frame_source.push(frame)
        return await session.poll()

    async def bottle_control_snapshot(self, cart_id: str) -> SessionSnapshot:
        return (await self._session(cart_id)).snapshot()

    async def stop_bottle_control_session(self, cart_id: str) -> None:
        """Close the cart's session if any. Idempotent."""
        ctx = self._contexts.get(cart_id)
        if ctx is None or ctx.session is None:
            return
        await ctx.session.close()

    async def apply_bottle_pair_merge(self, cart_id: str, pair_id: str) -> list[MatchedBottle]:
        """Merge a pending pair; returns the updated working set."""
        session = await self._session(cart_id)
        session.merge(pair_id)
        return [bottle.model_copy(deep=True) for bottle in session.working_set]

    async def _record_discard(self, cart_id: str, bottle: MatchedBottle) -> None:
        """A discarded bottle needs a replacement: +1 missing on its line item, capped at expected."""
        ctx = await self._context(cart_id)
        item = find_discard_line_item(ctx.cart.line_items, bottle)
        if item is None:
            logger.warning(
                f"Cart {cart_id}: discarded {bottle.catalog_type_id} matches no cart line item"
            )
            return

        # The same bottle is re-detected every tick; never exceed what the cart expects
        entry = self.reconciler.find_entry(ctx.cart.ledger, item.product_id)
        missing = entry.missing if entry is not None else 0
        if missing >= item.expected_quantity:
            logger.info(
                f"Cart {cart_id}: {item.product_id} already missing {missing}/{item.expected_quantity}, "
                f"discard not recorded"
            )
            return

        ledger = self.reconciler.apply_manual_entry(ctx.cart.line_items, ctx.cart.ledger, item.product_id, 1)
        await self._write_ledger(ctx, ledger, f"discard +1 {item.product_id}")

    # =========================================================================
    # PHASES
    # =========================================================================

    async def complete_phase(self, cart_id: str) -> PhaseResult:
        """Advance the cart; the bottle session is torn down before leaving bottle-control."""
        ctx = await self._context(cart_id)
        result = await ctx.machine.complete_phase(
            teardown=partial(self.stop_bottle_control_session, cart_id),
        )
        if result.changed:
            ctx.cart = ctx.cart.model_copy(update={"status": result.status})
        return result

    async def close_cart(self, cart_id: str) -> None:
        """Tear down the cart's session and forget its context."""
        await self.stop_bottle_control_session(cart_id)
        self._contexts.pop(cart_id, None)


# Singleton instance
fulfillment_engine = FulfillmentEngine()
