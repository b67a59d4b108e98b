"""
CARTOPS - Gemini Client / Vision / Voice Tests

HTTP is served by httpx.MockTransport; no network access.
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from cartops.core.exceptions import CollaboratorError, RateLimitedError
from cartops.services.frames import Frame
from cartops.services.gemini.client import GeminiClient, parse_retry_after, strip_code_fences
from cartops.services.gemini.vision import VisionService
from cartops.services.gemini.voice import VoiceInterpretationService


def candidate(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def client_for(handler, api_key="test-key") -> GeminiClient:
    return GeminiClient(
        api_key=api_key,
        base_url="https://gemini.test/v1beta",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestHelpers:

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'

    def test_parse_retry_after(self):
        assert parse_retry_after("Quota exceeded. Please retry in 12.5s.") == 12.5
        assert parse_retry_after('{"retryDelay": "30s"}') == 30.0
        assert parse_retry_after("Quota exceeded") is None


class TestGenerateJson:
    """Request shape and error mapping."""

    def test_request_and_fenced_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=candidate('```json\n{"bottles": []}\n```'))

        client = client_for(handler)
        result = asyncio.run(client.generate_json("gemini-2.0-flash", "look", image=b"jpeg"))

        assert result == {"bottles": []}
        assert seen["url"] == "https://gemini.test/v1beta/models/gemini-2.0-flash:generateContent"
        assert seen["key"] == "test-key"
        parts = seen["body"]["contents"][0]["parts"]
        assert parts[0] == {"text": "look"}
        assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"
        assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"

    def test_429_is_rate_limited(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "Quota exceeded. Please retry in 12.5s."}})

        with pytest.raises(RateLimitedError) as exc:
            asyncio.run(client_for(handler).generate_json("m", "p"))
        assert exc.value.retry_after_seconds == 12.5

    def test_quota_message_on_other_status(self):
        def handler(request):
            return httpx.Response(403, text="RESOURCE_EXHAUSTED: quota for this project")

        with pytest.raises(RateLimitedError) as exc:
            asyncio.run(client_for(handler).generate_json("m", "p"))
        assert exc.value.retry_after_seconds is None

    def test_server_error(self):
        def handler(request):
            return httpx.Response(500, text="internal")

        with pytest.raises(CollaboratorError) as exc:
            asyncio.run(client_for(handler).generate_json("m", "p"))
        assert not isinstance(exc.value, RateLimitedError)
        assert "HTTP 500" in str(exc.value)

    def test_non_json_candidate(self):
        def handler(request):
            return httpx.Response(200, json=candidate("I see two bottles"))

        with pytest.raises(CollaboratorError):
            asyncio.run(client_for(handler).generate_json("m", "p"))

    def test_missing_candidates(self):
        def handler(request):
            return httpx.Response(200, json={"promptFeedback": {}})

        with pytest.raises(CollaboratorError):
            asyncio.run(client_for(handler).generate_json("m", "p"))

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CollaboratorError):
            asyncio.run(client_for(handler).generate_json("m", "p"))


class TestVision:

    def test_detect_parses_scale_and_bottles(self):
        body = {
            "scaleWeight": 950.5,
            "bottles": [
                {
                    "label": "Absolut Vodka 750ml",
                    "brand": "Absolut",
                    "productName": "Vodka",
                    "type": "vodka",
                    "volume": "750ml",
                    "confidence": 0.85,
                    "box": {"x": 10.4, "y": 20, "width": 100, "height": 300},
                }
            ],
        }

        def handler(request):
            return httpx.Response(200, json=candidate(json.dumps(body)))

        service = VisionService(client=client_for(handler), model="vision-model")
        frame = asyncio.run(service.detect(Frame(data=b"jpeg")))

        assert frame.scale_weight_g == Decimal("950.5")
        assert not frame.mock
        observation = frame.observations[0]
        assert observation.brand == "Absolut"
        assert observation.liquor_type == "vodka"
        assert observation.confidence == 85
        assert observation.box.x == 10
        assert observation.scale_weight_g == Decimal("950.5")

    def test_parse_without_scale(self):
        frame = VisionService(client=client_for(lambda r: None)).parse({"scaleWeight": None, "bottles": []})
        assert frame.scale_weight_g is None
        assert frame.observations == []

    def test_parse_rejects_bad_shape(self):
        service = VisionService(client=client_for(lambda r: None))
        with pytest.raises(CollaboratorError):
            service.parse([])
        with pytest.raises(CollaboratorError):
            service.parse({"bottles": "Absolut"})

    def test_mock_mode_without_api_key(self):
        service = VisionService(client=GeminiClient(api_key=""))
        frame = asyncio.run(service.detect(Frame(data=b"jpeg")))

        assert frame.mock
        assert frame.scale_weight_g == Decimal("950")
        assert frame.observations[0].brand == "Absolut"


class TestVoice:

    def test_interpret_report(self, coca_cola, water):
        seen = {}

        def handler(request):
            seen["prompt"] = json.loads(request.content)["contents"][0]["parts"][0]["text"]
            return httpx.Response(200, json=candidate(json.dumps({
                "products": [{"product_id": coca_cola.product_id, "quantity_mentioned": 7}],
                "unknown": ["dos pepsis"],
            })))

        service = VoiceInterpretationService(client=client_for(handler), model="voice-model")
        report = asyncio.run(service.interpret_report("siete coca colas y dos pepsis", [coca_cola, water]))

        assert report.products[0].product_id == coca_cola.product_id
        assert report.products[0].quantity_mentioned == 7
        assert report.unknown == ["dos pepsis"]
        assert coca_cola.product_id in seen["prompt"]
        assert "siete coca colas" in seen["prompt"]

    def test_parse_report_skips_bad_quantities(self):
        service = VoiceInterpretationService(client=GeminiClient(api_key=""))
        report = service.parse_report({
            "products": [
                {"product_id": "a", "quantity_mentioned": "dos"},
                {"product_id": "b", "quantity_mentioned": -1},
                {"quantity_mentioned": 3},
                {"product_id": "c", "quantity_mentioned": 2},
            ]
        })
        assert [(p.product_id, p.quantity_mentioned) for p in report.products] == [("c", 2)]

    def test_parse_correction(self, coca_cola, water):
        service = VoiceInterpretationService(client=GeminiClient(api_key=""))
        ledger = service.parse_correction(
            {"missing": [
                {"product_id": water.product_id, "missing": 2},
                {"product_id": "pepsi", "missing": 1},
                {"product_id": coca_cola.product_id, "missing": 0},
            ]},
            [coca_cola, water],
        )

        assert len(ledger) == 1
        assert ledger[0].product_id == water.product_id
        assert ledger[0].missing == 2
        assert ledger[0].found == 3
        assert ledger[0].brand == "Ciel"

    def test_parse_correction_rejects_bad_shape(self, coca_cola):
        service = VoiceInterpretationService(client=GeminiClient(api_key=""))
        with pytest.raises(CollaboratorError):
            service.parse_correction({"missing": "nothing"}, [coca_cola])

    def test_mock_mode_keeps_ledger(self, coca_cola):
        from cartops.models.cart import LedgerEntry

        service = VoiceInterpretationService(client=GeminiClient(api_key=""))
        current = [LedgerEntry(product_id=coca_cola.product_id, missing=3, found=7)]

        report = asyncio.run(service.interpret_report("diez coca colas", [coca_cola]))
        corrected = asyncio.run(service.interpret_correction("ya están", [coca_cola], current))

        assert report.products == []
        assert report.unknown == ["diez coca colas"]
        assert corrected == current
