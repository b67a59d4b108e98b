"""Bottle Vision Service - Gemini vision for bottle-control scanning

Reads bottle labels and the digital scale display from one camera frame.
Produces observations only; matching, levels and dispositions happen in
the fulfillment pipeline.
"""
import logging
from decimal import Decimal
from typing import Any, Optional

from cartops.core.config import settings
from cartops.core.exceptions import CollaboratorError
from cartops.core.types import round_half_up, to_decimal
from cartops.models.bottles import BoundingBox, DetectedBottleObservation, DetectionFrame
from cartops.services.frames import Frame
from cartops.services.gemini.client import GeminiClient

logger = logging.getLogger(__name__)


class VisionService:
    """Service for AI-powered bottle and scale recognition using Gemini."""

    PROMPT = """IMAGE ANALYSIS. Look for exactly TWO things.

PRIORITY 1: WEIGHT ON THE SCALE DISPLAY
- Any number shown on a digital display, LCD screen or electronic scale
- Usually 3-4 digits (e.g. 950, 1200, 475), possibly followed by "g", "gr" or "grams"
- Report it in "scaleWeight" even if unsure

PRIORITY 2: ALCOHOL BOTTLES
For each bottle read the label and identify:
- brand (e.g. Jack Daniel's, Johnnie Walker, Absolut)
- product name (e.g. Old No. 7, Black Label)
- liquor type (whiskey, vodka, rum, tequila, gin, wine, spirits)
- volume if visible (e.g. 750ml, 1L)

Respond ONLY with valid JSON in this exact format:
{
  "scaleWeight": 950.5,
  "bottles": [
    {
      "label": "full label description",
      "brand": "Absolut",
      "productName": "Vodka",
      "type": "vodka",
      "volume": "750ml",
      "confidence": 85,
      "box": {"x": 0, "y": 0, "width": 0, "height": 0}
    }
  ]
}

scaleWeight is grams or null. If nothing is visible: {"scaleWeight": null, "bottles": []}
"""

    def __init__(self, client: Optional[GeminiClient] = None, model: Optional[str] = None):
        self.client = client or GeminiClient()
        self.model = model or settings.GEMINI_VISION_MODEL

    async def detect(self, frame: Frame) -> DetectionFrame:
        """
        Analyze one frame.

        Returns:
            DetectionFrame; one scale reading shared by every bottle in it

        Raises:
            RateLimitedError / CollaboratorError from the client or parsing
        """
        if not self.client.configured:
            return self._mock_response()

        data = await self.client.generate_json(
            self.model,
            self.PROMPT,
            image=frame.data,
            mime_type=frame.mime_type,
        )
        return self.parse(data)

    def parse(self, data: Any) -> DetectionFrame:
        """Convert the model's JSON into a DetectionFrame."""
        if not isinstance(data, dict):
            raise CollaboratorError("Vision response is not a JSON object")

        scale_weight = to_decimal(data.get("scaleWeight"))
        if scale_weight is not None and scale_weight <= 0:
            scale_weight = None

        bottles = data.get("bottles") or []
        if not isinstance(bottles, list):
            raise CollaboratorError("Vision response 'bottles' is not a list")

        observations = []
        for raw in bottles:
            if not isinstance(raw, dict):
                continue
            observations.append(DetectedBottleObservation(
                label=str(raw.get("label") or ""),
                brand=raw.get("brand") or None,
                product_name=raw.get("productName") or None,
                liquor_type=raw.get("type") or None,
                volume=raw.get("volume") or None,
                confidence=self._confidence(raw.get("confidence")),
                box=self._box(raw.get("box")),
                scale_weight_g=scale_weight,
            ))

        if scale_weight is not None:
            logger.info(f"Scale reading {scale_weight} g, {len(observations)} bottle(s)")
        else:
            logger.warning(f"No scale reading in frame, {len(observations)} bottle(s)")

        return DetectionFrame(observations=observations, scale_weight_g=scale_weight)

    def _confidence(self, value: Any) -> int:
        dec = to_decimal(value)
        if dec is None:
            return 0
        # Some responses use 0-1 instead of 0-100
        if Decimal("0") < dec <= Decimal("1") and "." in str(value):
            dec = dec * 100
        return max(0, min(100, round_half_up(dec)))

    def _box(self, value: Any) -> Optional[BoundingBox]:
        if not isinstance(value, dict):
            return None
        coords = {}
        for key in ("x", "y", "width", "height"):
            dec = to_decimal(value.get(key))
            coords[key] = round_half_up(dec) if dec is not None else 0
        return BoundingBox(**coords)

    def _mock_response(self) -> DetectionFrame:
        """Return mock data when no API key is configured."""
        scale_weight = Decimal("950")
        return DetectionFrame(
            observations=[
                DetectedBottleObservation(
                    label="Absolut Vodka 750ml",
                    brand="Absolut",
                    product_name="Vodka",
                    liquor_type="vodka",
                    volume="750ml",
                    confidence=85,
                    scale_weight_g=scale_weight,
                ),
            ],
            scale_weight_g=scale_weight,
            mock=True,
        )


# Singleton instance
vision_service = VisionService()
