"""Voice Interpretation Service - transcript -> structured quantities

Two modes:
    interpret_report      cleaning transcript -> {products, unknown}
    interpret_correction  correction transcript + current ledger -> full ledger
"""
import json
import logging
from typing import Any, Optional

from cartops.core.config import settings
from cartops.core.exceptions import CollaboratorError
from cartops.core.types import to_decimal
from cartops.models.cart import CartLineItem, LedgerEntry, ReportedQuantity, VoiceReport
from cartops.services.gemini.client import GeminiClient

logger = logging.getLogger(__name__)


def _product_list(expected_items: list[CartLineItem]) -> list[dict[str, Any]]:
    return [
        {
            "product_id": item.product_id,
            "product_brand": item.brand,
            "product_name": item.product_name,
            "product_presentation": item.presentation,
            "unit_price": str(item.unit_price),
        }
        for item in expected_items
    ]


def _quantity(value: Any) -> Optional[int]:
    dec = to_decimal(value)
    if dec is None or dec < 0:
        return None
    return int(dec)


class VoiceInterpretationService:
    """Matches spoken product mentions against a cart's expected items."""

    REPORT_PROMPT = """You are a natural-language assistant for retail inventory, expert at matching
spoken mentions (transcripts) against a predefined product list.

Your task:
1. Analyze the TRANSCRIPT below.
2. Match every product mention against PRODUCT_LIST.
3. Infer the quantity mentioned for each product ("one", "two", "tres", or an explicit number).
   If the quantity is unclear, assume 1.
4. Put any phrase that does not correspond to a listed product in "unknown".

Respond ONLY with JSON in this exact format:
{{"products": [{{"product_id": "<id from the list>", "quantity_mentioned": 2}}], "unknown": ["..."]}}

PRODUCT_LIST:
{products}

TRANSCRIPT:
"{transcript}"
"""

    CORRECTION_PROMPT = """You maintain the list of products MISSING from a catering cart.

CURRENT_MISSING is the list as it stands. The operator dictated a CORRECTION.
Apply the correction and return the COMPLETE corrected list, not a delta.
- "ya no faltan 3 de Coca-Cola" / "the Coca-Cola is all here" removes or reduces that product
- "faltan 2 más de agua" adds to that product
- Products the correction does not mention keep their current quantity
- Only use product_id values from PRODUCT_LIST
- Leave out products with nothing missing

Respond ONLY with JSON in this exact format:
{{"missing": [{{"product_id": "<id from the list>", "missing": 3}}]}}

PRODUCT_LIST:
{products}

CURRENT_MISSING:
{ledger}

CORRECTION:
"{transcript}"
"""

    def __init__(self, client: Optional[GeminiClient] = None, model: Optional[str] = None):
        self.client = client or GeminiClient()
        self.model = model or settings.GEMINI_VOICE_MODEL

    async def interpret_report(
        self,
        transcript: str,
        expected_items: list[CartLineItem],
    ) -> VoiceReport:
        """
        Interpret a cleaning transcript.

        Raises:
            RateLimitedError / CollaboratorError
        """
        if not self.client.configured:
            logger.warning("GEMINI_API_KEY not set, voice report left uninterpreted")
            return VoiceReport(unknown=[transcript] if transcript else [])

        prompt = self.REPORT_PROMPT.format(
            products=json.dumps(_product_list(expected_items), indent=2, ensure_ascii=False),
            transcript=transcript,
        )
        data = await self.client.generate_json(self.model, prompt)
        return self.parse_report(data)

    def parse_report(self, data: Any) -> VoiceReport:
        if not isinstance(data, dict):
            raise CollaboratorError("Voice response is not a JSON object")

        products = []
        for raw in data.get("products") or []:
            if not isinstance(raw, dict) or not raw.get("product_id"):
                continue
            quantity = _quantity(raw.get("quantity_mentioned"))
            if quantity is None:
                logger.warning(f"Skipping mention of {raw.get('product_id')} with bad quantity")
                continue
            products.append(ReportedQuantity(product_id=str(raw["product_id"]), quantity_mentioned=quantity))

        unknown = [str(phrase) for phrase in data.get("unknown") or [] if phrase]
        logger.info(f"Voice report: {len(products)} product(s), {len(unknown)} unknown phrase(s)")
        return VoiceReport(products=products, unknown=unknown)

    async def interpret_correction(
        self,
        transcript: str,
        expected_items: list[CartLineItem],
        current_ledger: list[LedgerEntry],
    ) -> list[LedgerEntry]:
        """
        Interpret a correction transcript into a full replacement ledger.

        Entries for products not on the cart, or with nothing missing, are
        dropped.
        """
        if not self.client.configured:
            logger.warning("GEMINI_API_KEY not set, correction leaves ledger unchanged")
            return [entry.model_copy() for entry in current_ledger]

        ledger_doc = [
            {"product_id": entry.product_id, "product_name": entry.product_name, "missing": entry.missing}
            for entry in current_ledger
        ]
        prompt = self.CORRECTION_PROMPT.format(
            products=json.dumps(_product_list(expected_items), indent=2, ensure_ascii=False),
            ledger=json.dumps(ledger_doc, indent=2, ensure_ascii=False),
            transcript=transcript,
        )
        data = await self.client.generate_json(self.model, prompt)
        return self.parse_correction(data, expected_items)

    def parse_correction(self, data: Any, expected_items: list[CartLineItem]) -> list[LedgerEntry]:
        if not isinstance(data, dict) or not isinstance(data.get("missing", []), list):
            raise CollaboratorError("Correction response is not {\"missing\": [...]}")

        expected = {item.product_id: item for item in expected_items}
        entries = []
        for raw in data.get("missing") or []:
            if not isinstance(raw, dict):
                continue
            item = expected.get(str(raw.get("product_id", "")))
            missing = _quantity(raw.get("missing"))
            if item is None or not missing:
                continue
            entries.append(LedgerEntry(
                product_id=item.product_id,
                product_name=item.product_name,
                brand=item.brand,
                presentation=item.presentation,
                missing=missing,
                found=max(item.expected_quantity - missing, 0),
            ))

        logger.info(f"Correction interpreted: {len(entries)} missing entries")
        return entries


# Singleton instance
voice_service = VoiceInterpretationService()
