"""CARTOPS Phase FSM - Cart fulfillment phases

Phase Flow:
cleaning -> bottle-control -> finished     (cart has alcohol items)
cleaning -> finished                       (no alcohol items)

Persisted status mirror:
Cleaning -> Weighing -> PickAndPack
Cleaning -> PickAndPack

Airborne is set outside this package and reads as finished.
The status write happens first; the in-memory phase only advances once it
succeeded.
"""
import logging
import re
from datetime import datetime
from typing import Awaitable, Callable, Optional

from cartops.core.exceptions import PhaseTransitionError
from cartops.models.cart import (
    CartLineItem,
    CartStatus,
    PhaseResult,
    PhaseTransition,
    ProcessPhase,
)
from cartops.services.persistence.repository import CartRepository

logger = logging.getLogger(__name__)


ALCOHOL_TAG = "botella_alcohol"

ALCOHOL_KEYWORDS = frozenset({
    "cerveza", "beer", "vino", "wine", "whisky", "whiskey", "vodka", "ron", "rum",
    "tequila", "gin", "ginebra", "brandy", "cognac", "licor", "liqueur", "champagne",
})

_WORD_RE = re.compile(r"\w+")

# Plural forms on product names: "Cervezas", "Vinos", "Licores"
PLURAL_SUFFIXES = ("es", "s")


def _is_alcohol_word(word: str) -> bool:
    if word in ALCOHOL_KEYWORDS:
        return True
    return any(
        word.endswith(suffix) and word[: -len(suffix)] in ALCOHOL_KEYWORDS
        for suffix in PLURAL_SUFFIXES
    )


def is_alcohol_item(item: CartLineItem) -> bool:
    """Tagged botella_alcohol, or a word of name/brand is an alcohol keyword.

    Whole words (or their plurals) only: "Jugo de Toronja" is not rum,
    "Ginger Ale" is not gin.
    """
    if (item.tag or "").lower() == ALCOHOL_TAG:
        return True
    words = _WORD_RE.findall(f"{item.product_name} {item.brand}".lower())
    return any(_is_alcohol_word(word) for word in words)


def cart_has_alcohol(line_items: list[CartLineItem]) -> bool:
    return any(is_alcohol_item(item) for item in line_items)


def derive_phase(status: CartStatus, has_alcohol: bool) -> ProcessPhase:
    """Phase is computed from persisted status and cart contents, never stored."""
    if status == CartStatus.CLEANING:
        return ProcessPhase.CLEANING
    if status == CartStatus.WEIGHING and has_alcohol:
        return ProcessPhase.BOTTLE_CONTROL
    return ProcessPhase.FINISHED


class CartPhaseMachine:
    """Drives one cart through its fulfillment phases."""

    # Valid phase transitions
    TRANSITIONS: dict[ProcessPhase, list[ProcessPhase]] = {
        ProcessPhase.CLEANING: [ProcessPhase.BOTTLE_CONTROL, ProcessPhase.FINISHED],
        ProcessPhase.BOTTLE_CONTROL: [ProcessPhase.FINISHED],
        ProcessPhase.FINISHED: [],  # Terminal state
    }

    # Status persisted on entering a phase
    PHASE_STATUS: dict[ProcessPhase, CartStatus] = {
        ProcessPhase.CLEANING: CartStatus.CLEANING,
        ProcessPhase.BOTTLE_CONTROL: CartStatus.WEIGHING,
        ProcessPhase.FINISHED: CartStatus.PICK_AND_PACK,
    }

    def __init__(
        self,
        cart_id: str,
        status: CartStatus,
        has_alcohol: bool,
        repository: CartRepository,
    ):
        self.cart_id = cart_id
        self.status = status
        self.has_alcohol = has_alcohol
        self.repository = repository
        self.phase = derive_phase(status, has_alcohol)
        self.history: list[PhaseTransition] = []

    def can_transition(self, current: ProcessPhase, target: ProcessPhase) -> bool:
        """Check if a transition is valid."""
        return target in self.TRANSITIONS.get(current, [])

    def next_phase(self) -> Optional[ProcessPhase]:
        """Phase completePhase would move to, None when finished."""
        if self.phase == ProcessPhase.CLEANING:
            return ProcessPhase.BOTTLE_CONTROL if self.has_alcohol else ProcessPhase.FINISHED
        if self.phase == ProcessPhase.BOTTLE_CONTROL:
            return ProcessPhase.FINISHED
        return None

    def require(self, *phases: ProcessPhase) -> None:
        """Raise unless the cart is in one of `phases`."""
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise PhaseTransitionError(
                f"Cart {self.cart_id} is in phase {self.phase.value}; requires {allowed}"
            )

    async def complete_phase(
        self,
        teardown: Optional[Callable[[], Awaitable[None]]] = None,
        trigger_event: str = "operator_complete",
    ) -> PhaseResult:
        """
        Leave the current phase.

        Args:
            teardown: Awaited before leaving bottle-control (closes the session)
            trigger_event: Recorded in the transition log

        Returns:
            PhaseResult; changed=False when already finished

        Raises:
            PersistenceError: status write failed, phase unchanged
        """
        target = self.next_phase()
        if target is None:
            return PhaseResult(
                cart_id=self.cart_id,
                phase=self.phase,
                status=self.status,
                changed=False,
                message="Cart already finished",
            )

        if not self.can_transition(self.phase, target):
            raise PhaseTransitionError(
                f"Invalid transition: {self.phase.value} -> {target.value}"
            )

        if self.phase == ProcessPhase.BOTTLE_CONTROL and teardown is not None:
            await teardown()

        status = self.PHASE_STATUS[target]
        await self.repository.save_status(self.cart_id, status)

        previous = self.phase
        self.phase = target
        self.status = status
        self.history.append(PhaseTransition(
            previous_phase=previous,
            current_phase=target,
            status=status,
            trigger_event=trigger_event,
            timestamp=datetime.utcnow(),
        ))

        logger.info(f"Cart {self.cart_id}: {previous.value} -> {target.value} (status {status.value})")
        return PhaseResult(
            cart_id=self.cart_id,
            phase=target,
            status=status,
            changed=True,
            message=f"{previous.value} -> {target.value}",
        )
