"""
CARTOPS - Bottle-Control Session
One camera/detection session for the bottle-control phase.

Lifecycle: open -> poll* -> close (or ``async with`` / ``stream()``).

Per tick, strictly in order:
    1. Rate-limit gate (in-flight guard, minimum interval, cooldown)
    2. Vision detection on one frame
    3. Catalog match (strict) -> liquid level -> disposition
    4. Discards feed the ledger callback; the rest join the working set
    5. Pair proposals over the working set

A collaborator failure skips the whole tick: nothing from a failed cycle is
applied. A rate-limit signal starts a timed cooldown after which detection
resumes on its own. close() is idempotent, releases the frame source and
cancels every timer the session started.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

from cartops.core.config import settings
from cartops.core.exceptions import (
    CollaboratorError,
    FulfillmentError,
    RateLimitedError,
    SessionClosedError,
)
from cartops.models.bottles import (
    BottlePair,
    CatalogBottleType,
    DetectionFrame,
    Disposition,
    MatchedBottle,
    SessionSnapshot,
    SessionStats,
)
from cartops.services.frames import FrameSource
from cartops.services.fulfillment.catalog_matcher import CatalogMatcher, catalog_matcher
from cartops.services.fulfillment.disposition import DispositionClassifier, disposition_classifier
from cartops.services.fulfillment.liquid_level import LiquidLevelCalculator, liquid_level_calculator
from cartops.services.fulfillment.pairing_engine import PairingEngine, pairing_engine
from cartops.services.gemini.vision import VisionService

logger = logging.getLogger(__name__)


DiscardCallback = Callable[[MatchedBottle], Awaitable[None]]
Clock = Callable[[], float]


class BottleControlSession:
    """Explicit owner of the camera stream, detection timers and working set."""

    def __init__(
        self,
        cart_id: str,
        frame_source: FrameSource,
        catalog: list[CatalogBottleType],
        vision: Optional[VisionService] = None,
        on_discard: Optional[DiscardCallback] = None,
        clock: Clock = time.monotonic,
        interval_seconds: Optional[float] = None,
        backoff_seconds: Optional[float] = None,
        matcher: Optional[CatalogMatcher] = None,
        calculator: Optional[LiquidLevelCalculator] = None,
        classifier: Optional[DispositionClassifier] = None,
        pairing: Optional[PairingEngine] = None,
    ) -> None:
        if vision is None:
            from cartops.services.gemini.vision import vision_service
            vision = vision_service

        self.cart_id = cart_id
        self.frame_source = frame_source
        self.catalog = list(catalog)
        self.vision = vision
        self.on_discard = on_discard
        self.clock = clock
        self.interval = interval_seconds if interval_seconds is not None else settings.DETECTION_INTERVAL_SECONDS
        self.backoff = backoff_seconds if backoff_seconds is not None else settings.RATE_LIMIT_BACKOFF_SECONDS

        self.matcher = matcher or catalog_matcher
        self.calculator = calculator or liquid_level_calculator
        self.classifier = classifier or disposition_classifier
        self.pairing = pairing or pairing_engine

        # Session state
        self.tick = 0
        self.detected: list[MatchedBottle] = []
        self.working_set: list[MatchedBottle] = []
        self.pending_pairs: list[BottlePair] = []
        self.stats = SessionStats()
        self.notice: Optional[str] = None

        self._opened = False
        self._closed = False
        self._in_flight = 0
        self._last_request_at: Optional[float] = None
        self._cooldown_until: Optional[float] = None
        self._notice_handle: Optional[asyncio.TimerHandle] = None
        self._sleep_task: Optional[asyncio.Task] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    @property
    def has_pending_timers(self) -> bool:
        return self._notice_handle is not None or self._sleep_task is not None

    async def open(self) -> "BottleControlSession":
        if self._closed:
            raise SessionClosedError(f"Bottle session for cart {self.cart_id} is closed")
        if not self._opened:
            await self.frame_source.open()
            self._opened = True
            logger.info(f"Bottle session opened for cart {self.cart_id} ({len(self.catalog)} catalog types)")
        return self

    async def close(self) -> None:
        """Release the stream and cancel timers. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        if self._notice_handle is not None:
            self._notice_handle.cancel()
            self._notice_handle = None
        if self._sleep_task is not None:
            self._sleep_task.cancel()
            self._sleep_task = None

        try:
            await self.frame_source.release()
        finally:
            logger.info(
                f"Bottle session closed for cart {self.cart_id}: "
                f"processed={self.stats.processed} reused={self.stats.reused} "
                f"completed={self.stats.completed} discarded={self.stats.discarded} "
                f"merged={self.stats.merged}"
            )

    async def __aenter__(self) -> "BottleControlSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # RATE LIMIT / NOTICES
    # =========================================================================

    def cooldown_remaining(self) -> Optional[float]:
        if self._cooldown_until is None:
            return None
        return max(0.0, self._cooldown_until - self.clock())

    def _gate(self, now: float) -> Optional[str]:
        """Reason to skip this tick, or None to detect."""
        if self._cooldown_until is not None:
            if now < self._cooldown_until:
                return "cooldown"
            self._cooldown_until = None
            self._clear_notice()
            logger.info(f"Cart {self.cart_id}: rate-limit cooldown over, detection resumes")

        if self._last_request_at is not None:
            elapsed = now - self._last_request_at
            if elapsed < self.interval:
                return "in-flight" if self._in_flight else "interval"
        elif self._in_flight:
            return "in-flight"
        return None

    def _set_notice(self, message: str, ttl: Optional[float] = None) -> None:
        if self._notice_handle is not None:
            self._notice_handle.cancel()
            self._notice_handle = None
        self.notice = message
        if ttl:
            loop = asyncio.get_running_loop()
            self._notice_handle = loop.call_later(ttl, self._clear_notice)

    def _clear_notice(self) -> None:
        if self._notice_handle is not None:
            self._notice_handle.cancel()
        self._notice_handle = None
        self.notice = None

    # =========================================================================
    # DETECTION
    # =========================================================================

    async def poll(self) -> SessionSnapshot:
        """
        Run one detection tick if the rate limit allows.

        Returns:
            SessionSnapshot; skipped=True when no detection was applied

        Raises:
            SessionClosedError: session not open
        """
        if not self.is_open:
            raise SessionClosedError(f"Bottle session for cart {self.cart_id} is not open")

        self.tick += 1
        now = self.clock()

        reason = self._gate(now)
        if reason is not None:
            logger.debug(f"Cart {self.cart_id} tick {self.tick} skipped: {reason}")
            return self.snapshot(skipped=True)

        frame = await self.frame_source.read_frame()
        if frame is None:
            return self.snapshot(skipped=True)

        self._in_flight += 1
        self._last_request_at = now
        try:
            detection = await self.vision.detect(frame)
        except RateLimitedError as e:
            delay = e.retry_after_seconds or self.backoff
            self._cooldown_until = self.clock() + delay
            logger.warning(f"Cart {self.cart_id}: vision rate limited, pausing detection for {delay:.0f}s")
            self._set_notice(f"Detection paused by rate limit; retrying in {delay:.0f}s", ttl=delay)
            return self.snapshot(skipped=True)
        except CollaboratorError as e:
            logger.error(f"Cart {self.cart_id}: detection failed, skipping cycle: {e}")
            self._set_notice(f"Detection failed, retrying next cycle: {e}")
            return self.snapshot(skipped=True)
        finally:
            self._in_flight -= 1

        if self._closed:
            # Closed while the request was in flight
            return self.snapshot(skipped=True)

        if self.notice and self._notice_handle is None:
            self._clear_notice()

        await self._process(detection)
        self.pending_pairs = self.pairing.find_pairs(self.working_set, self.pending_pairs)
        return self.snapshot()

    def evaluate(self, detection: DetectionFrame) -> list[MatchedBottle]:
        """Match, measure and classify every observation of one frame."""
        bottles = []
        for observation in detection.observations:
            match = self.matcher.match_observation(observation, self.catalog, strict=True)
            scale_weight = observation.scale_weight_g or detection.scale_weight_g
            percentage, remaining = self.calculator.measure(match.bottle, scale_weight)

            disposition = None
            if match.bottle is not None and percentage is not None:
                disposition = self.classifier.classify(percentage)

            bottles.append(MatchedBottle(
                **observation.model_dump(exclude={"scale_weight_g"}),
                scale_weight_g=scale_weight,
                catalog_bottle=match.bottle,
                match_score=match.score,
                percentage=percentage,
                remaining_ml=remaining,
                disposition=disposition,
            ))
        return bottles

    async def _process(self, detection: DetectionFrame) -> None:
        self.detected = self.evaluate(detection)

        for bottle in self.detected:
            if bottle.catalog_bottle is None:
                continue

            if bottle.disposition is None:
                # Matched, level unknown: keep it visible, never pair it
                self.working_set.append(bottle)
                continue

            self.stats.processed += 1
            if bottle.disposition == Disposition.REUSE:
                self.stats.reused += 1
                self.working_set.append(bottle)
            elif bottle.disposition == Disposition.COMPLETE:
                self.stats.completed += 1
                self.working_set.append(bottle)
            else:
                self.stats.discarded += 1
                await self._discard(bottle)

    async def _discard(self, bottle: MatchedBottle) -> None:
        logger.info(
            f"Cart {self.cart_id}: discarding {bottle.catalog_bottle.name} at {bottle.percentage}%"
        )
        if self.on_discard is None:
            return
        try:
            await self.on_discard(bottle)
        except FulfillmentError as e:
            logger.error(f"Cart {self.cart_id}: could not record discarded bottle: {e}")
            self._set_notice(f"Could not record discarded bottle: {e}")

    # =========================================================================
    # MERGE / VIEW
    # =========================================================================

    def merge(self, pair_id: str) -> MatchedBottle:
        """Apply a pending pair. Raises PairNotFoundError for unknown pairs."""
        if self._closed:
            raise SessionClosedError(f"Bottle session for cart {self.cart_id} is closed")
        self.working_set, self.pending_pairs, merged = self.pairing.apply_merge(
            pair_id, self.working_set, self.pending_pairs
        )
        self.stats.merged += 1
        return merged.model_copy(deep=True)

    def snapshot(self, skipped: bool = False) -> SessionSnapshot:
        return SessionSnapshot(
            cart_id=self.cart_id,
            tick=self.tick,
            skipped=skipped,
            detected=[b.model_copy(deep=True) for b in self.detected] if not skipped else [],
            working_set=[b.model_copy(deep=True) for b in self.working_set],
            pending_pairs=[p.model_copy(deep=True) for p in self.pending_pairs],
            stats=self.stats.model_copy(),
            notice=self.notice,
            cooldown_remaining_seconds=self.cooldown_remaining(),
        )

    async def stream(self) -> AsyncIterator[SessionSnapshot]:
        """
        Poll every interval until closed, yielding one snapshot per tick.

        The session is closed on every exit path, including the consumer
        breaking out of the loop.
        """
        await self.open()
        try:
            while self.is_open:
                yield await self.poll()
                if not self.is_open:
                    break
                self._sleep_task = asyncio.ensure_future(asyncio.sleep(self.interval))
                try:
                    await self._sleep_task
                except asyncio.CancelledError:
                    if self._closed:
                        break
                    raise
                finally:
                    self._sleep_task = None
        finally:
            await self.close()
